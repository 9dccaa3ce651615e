from sqlalchemy import Column, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship
from multisign.database import Base


class Signer(Base):
    __tablename__ = "signers"

    id = Column(Text, primary_key=True)
    request_id = Column(Text, ForeignKey("signing_requests.id", ondelete="CASCADE"), nullable=False)
    signer_id = Column(Text, nullable=False)
    signing_order = Column(Integer, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    signature = Column(Text)
    signed_at = Column(Text)
    signature_metadata_json = Column(Text)
    decline_reason = Column(Text)

    request = relationship("SigningRequest", back_populates="signers")
