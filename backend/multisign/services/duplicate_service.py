import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from multisign.models.document import Document
from multisign.models.status import DocumentStatus
from multisign.schemas.document import DuplicateCheckResult, ExistingDocumentSummary
from multisign.services.registry_service import normalize_signer_id

logger = logging.getLogger(__name__)

NO_DUPLICATE = "no_duplicate"
DUPLICATE = "duplicate"

ALLOW = "allow"
BLOCKING = "blocking"
CONFIRMABLE = "confirmable"


def _summary(doc: Document, owner_id: str) -> ExistingDocumentSummary:
    return ExistingDocumentSummary(
        id=doc.id,
        file_name=doc.file_name,
        status=doc.status,
        owner_id=doc.owner_id,
        created_at=doc.created_at,
        same_owner=doc.owner_id == owner_id,
    )


class DuplicateDetector:
    def __init__(self, db: Session):
        self.db = db

    def check(self, new_hash: str, owner_id: str) -> DuplicateCheckResult:
        """Classify a content hash against every stored document.

        Matches on either side of the hash chain, so re-uploading a rendered
        evidence file is caught as well as re-uploading the original.
        """
        owner_id = normalize_signer_id(owner_id)
        matches = (
            self.db.query(Document)
            .filter(or_(Document.original_hash == new_hash, Document.signed_hash == new_hash))
            .order_by(Document.created_at.desc())
            .all()
        )
        if not matches:
            return DuplicateCheckResult(
                kind=NO_DUPLICATE,
                action=ALLOW,
                message="Document is unique. Ready to upload.",
            )

        completed = [d for d in matches if DocumentStatus(d.status) is DocumentStatus.COMPLETED]
        if completed:
            existing = completed[0]
            logger.info("Blocking duplicate of completed document %s", existing.id)
            return DuplicateCheckResult(
                kind=DUPLICATE,
                action=BLOCKING,
                message=(
                    f"This document has already been signed and completed as document {existing.id} "
                    f"('{existing.file_name}'). Please upload a new document instead."
                ),
                existing_document=_summary(existing, owner_id),
            )

        existing = matches[0]
        if existing.owner_id == owner_id:
            message = (
                f"You have already uploaded this document as {existing.id} (status: {existing.status}). "
                "Confirm to start another signing workflow."
            )
        else:
            message = (
                f"This document is already in a signing workflow as {existing.id} "
                f"(status: {existing.status}). Confirm to proceed with a new one."
            )
        return DuplicateCheckResult(
            kind=DUPLICATE,
            action=CONFIRMABLE,
            message=message,
            existing_document=_summary(existing, owner_id),
        )
