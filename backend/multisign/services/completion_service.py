"""Advance-or-complete decision for a signing request.

Runs inside the caller's transaction, right after a signer slot was marked
signed. The request row is updated with a single compare-and-swap on
``(status, current_signer_index, current_signers)``; if another transaction
moved the request first, the swap matches no row and the whole transaction is
rolled back by the caller.
"""
import logging
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.orm import Session

from multisign.errors import ConflictError
from multisign.models.document import Document
from multisign.models.signer import Signer
from multisign.models.signing_request import SigningRequest
from multisign.models.status import (
    DocumentStatus,
    RequestStatus,
    SignerStatus,
    SigningType,
    check_transition,
)
from multisign.schemas.metadata import RequestCompletedDetails, SignerAdvancedDetails
from multisign.services.audit_service import AuditLog
from multisign.utils.timestamps import utc_now

logger = logging.getLogger(__name__)


@dataclass
class AdvanceResult:
    completed: bool
    next_signer: Signer | None


def swap_request_state(
    db: Session,
    request_id: str,
    expected_index: int,
    expected_count: int,
    **values,
) -> None:
    result = db.execute(
        update(SigningRequest)
        .where(
            SigningRequest.id == request_id,
            SigningRequest.status == RequestStatus.PENDING.value,
            SigningRequest.current_signer_index == expected_index,
            SigningRequest.current_signers == expected_count,
        )
        .values(**values)
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount != 1:
        raise ConflictError(
            "Signing request changed concurrently; reload it and retry",
            details={"request_id": request_id, "expected_index": expected_index},
        )


def _move_document(db: Session, document_id: str, allowed_from: list[DocumentStatus], to: DocumentStatus) -> None:
    for status in allowed_from:
        check_transition(status, to)
    db.execute(
        update(Document)
        .where(Document.id == document_id, Document.status.in_([s.value for s in allowed_from]))
        .values(status=to.value, updated_at=utc_now())
        .execution_options(synchronize_session="evaluate")
    )


class CompletionDetector:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLog(db)

    def on_signed(
        self,
        request: SigningRequest,
        expected_index: int,
        expected_count: int,
        actor_id: str,
    ) -> AdvanceResult:
        self.db.flush()
        signers = (
            self.db.query(Signer)
            .filter(Signer.request_id == request.id)
            .order_by(Signer.signing_order.asc())
            .execution_options(populate_existing=True)
            .all()
        )
        signed = [s for s in signers if SignerStatus(s.status) is SignerStatus.SIGNED]
        if len(signed) != expected_count + 1:
            raise ConflictError(
                "Signed count does not match the request counter",
                details={"request_id": request.id, "signed": len(signed), "expected": expected_count + 1},
            )

        if len(signed) == len(signers):
            return self._complete(request, len(signers), expected_index, expected_count, actor_id)

        next_signer = None
        next_index = expected_index
        if SigningType(request.signing_type) is SigningType.SEQUENTIAL:
            next_index = expected_index + 1
            next_signer = next((s for s in signers if s.signing_order == next_index), None)
            if next_signer is None:
                raise ConflictError(
                    f"No signer at position {next_index}; the signing order has a gap",
                    details={"request_id": request.id, "missing_order": next_index},
                )
            if SignerStatus(next_signer.status) is not SignerStatus.PENDING:
                raise ConflictError(
                    f"Signer at position {next_index} is already {next_signer.status}",
                    details={"request_id": request.id, "order": next_index},
                )

        swap_request_state(
            self.db,
            request.id,
            expected_index,
            expected_count,
            current_signer_index=next_index,
            current_signers=expected_count + 1,
        )
        _move_document(self.db, request.document_id, [DocumentStatus.UPLOADED], DocumentStatus.ACCEPTED)
        self.audit.append(
            SignerAdvancedDetails(
                from_index=expected_index,
                to_index=next_index,
                next_signer_id=next_signer.signer_id if next_signer else None,
                current_signers=expected_count + 1,
            ),
            actor_id=actor_id,
            document_id=request.document_id,
            request_id=request.id,
        )
        logger.info("Request %s advanced to position %d", request.id, next_index)
        return AdvanceResult(completed=False, next_signer=next_signer)

    def _complete(
        self,
        request: SigningRequest,
        total: int,
        expected_index: int,
        expected_count: int,
        actor_id: str,
    ) -> AdvanceResult:
        check_transition(RequestStatus(request.status), RequestStatus.COMPLETED)
        completed_at = utc_now()
        swap_request_state(
            self.db,
            request.id,
            expected_index,
            expected_count,
            status=RequestStatus.COMPLETED.value,
            completed_at=completed_at,
            current_signers=total,
        )
        _move_document(
            self.db,
            request.document_id,
            [DocumentStatus.UPLOADED, DocumentStatus.ACCEPTED],
            DocumentStatus.SIGNED,
        )
        self.audit.append(
            RequestCompletedDetails(required_signers=total, completed_at=completed_at),
            actor_id=actor_id,
            document_id=request.document_id,
            request_id=request.id,
        )
        logger.info("Request %s collected all %d signatures", request.id, total)
        return AdvanceResult(completed=True, next_signer=None)
