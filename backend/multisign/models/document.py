from sqlalchemy import Column, Integer, Text
from sqlalchemy.orm import relationship
from multisign.database import Base


class Document(Base):
    __tablename__ = "documents"

    id = Column(Text, primary_key=True)
    owner_id = Column(Text, nullable=False)
    file_name = Column(Text, nullable=False)
    mime_type = Column(Text)
    file_size_bytes = Column(Integer, nullable=False)
    stored_ref = Column(Text, nullable=False)
    signed_ref = Column(Text)
    original_hash = Column(Text, nullable=False)
    signed_hash = Column(Text)
    status = Column(Text, nullable=False, default="uploaded")
    metadata_json = Column(Text)
    created_at = Column(Text, nullable=False)
    updated_at = Column(Text, nullable=False)

    signing_request = relationship("SigningRequest", back_populates="document", uselist=False)
