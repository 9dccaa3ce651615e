import logging
import uuid

from sqlalchemy.orm import Session

from multisign.models.audit import AuditEntry
from multisign.schemas.metadata import AuditDetails
from multisign.utils.timestamps import utc_now

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class AuditLog:
    """Append-only ledger of workflow transitions.

    ``append`` only stages the row on the caller's session so the entry commits
    (or rolls back) together with the transition it describes.
    """

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        details: AuditDetails,
        actor_id: str,
        document_id: str | None = None,
        request_id: str | None = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            id=str(uuid.uuid4()),
            document_id=document_id,
            request_id=request_id,
            actor_id=actor_id,
            action=details.kind,
            details_json=details.model_dump_json(),
            occurred_at=utc_now(),
        )
        self.db.add(entry)
        logger.debug("audit %s request=%s actor=%s", details.kind, request_id, actor_id)
        return entry

    def for_request(self, request_id: str) -> list[AuditEntry]:
        return (
            self.db.query(AuditEntry)
            .filter(AuditEntry.request_id == request_id)
            .order_by(AuditEntry.seq.asc())
            .all()
        )

    def for_document(self, document_id: str) -> list[AuditEntry]:
        return (
            self.db.query(AuditEntry)
            .filter(AuditEntry.document_id == document_id)
            .order_by(AuditEntry.seq.asc())
            .all()
        )
