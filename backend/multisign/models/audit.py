from sqlalchemy import Column, Integer, Text
from multisign.database import Base


class AuditEntry(Base):
    __tablename__ = "audit_entries"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(Text, nullable=False, unique=True)
    document_id = Column(Text)
    request_id = Column(Text)
    actor_id = Column(Text, nullable=False)
    action = Column(Text, nullable=False)
    details_json = Column(Text, nullable=False)
    occurred_at = Column(Text, nullable=False)
