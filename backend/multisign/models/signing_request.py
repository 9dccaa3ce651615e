from sqlalchemy import Column, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship
from multisign.database import Base


class SigningRequest(Base):
    __tablename__ = "signing_requests"

    id = Column(Text, primary_key=True)
    document_id = Column(Text, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, unique=True)
    initiator_id = Column(Text, nullable=False)
    description = Column(Text)
    signing_type = Column(Text, nullable=False, default="sequential")
    status = Column(Text, nullable=False, default="pending")
    current_signer_index = Column(Integer, nullable=False, default=0)
    required_signers = Column(Integer, nullable=False)
    current_signers = Column(Integer, nullable=False, default=0)
    created_at = Column(Text, nullable=False)
    completed_at = Column(Text)

    document = relationship("Document", back_populates="signing_request")
    signers = relationship(
        "Signer",
        back_populates="request",
        order_by="Signer.signing_order",
        cascade="all, delete-orphan",
    )
