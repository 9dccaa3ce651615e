from sqlalchemy import Boolean, Column, ForeignKey, Text
from multisign.database import Base


class VerificationAttempt(Base):
    __tablename__ = "verification_attempts"

    id = Column(Text, primary_key=True)
    document_id = Column(Text, ForeignKey("documents.id", ondelete="SET NULL"))
    lookup_hash = Column(Text, nullable=False)
    verifier_id = Column(Text)
    is_valid = Column(Boolean, nullable=False)
    details_json = Column(Text)
    verified_at = Column(Text, nullable=False)
