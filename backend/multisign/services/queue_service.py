import logging
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.orm import Session

from multisign.errors import (
    AuthorizationError,
    ConflictError,
    RenderError,
    StorageError,
    ValidationError,
)
from multisign.models.signer import Signer
from multisign.models.signing_request import SigningRequest
from multisign.models.status import RequestStatus, SignerStatus, SigningType, check_transition
from multisign.schemas.metadata import (
    Ed25519SignatureMetadata,
    SignatureRecordedDetails,
    SignerDeclinedDetails,
    dump_signature_metadata,
    parse_signature_metadata,
)
from multisign.services.audit_service import AuditLog
from multisign.services.completion_service import CompletionDetector, swap_request_state
from multisign.services.evidence_service import EvidenceRenderer
from multisign.services.finalize_service import FinalizeService
from multisign.services.notification_service import (
    Notifier,
    dispatch,
    request_completed_notification,
    request_declined_notification,
    signer_turn_notification,
)
from multisign.services.registry_service import SigningRequestRegistry, normalize_signer_id
from multisign.services.storage_service import ObjectStorage
from multisign.services.transaction import atomic
from multisign.utils.signatures import verify_ed25519
from multisign.utils.timestamps import utc_now

logger = logging.getLogger(__name__)


@dataclass
class SubmissionOutcome:
    request: SigningRequest
    signer: Signer
    completed: bool
    next_signer: Signer | None
    finalized: bool
    finalize_error: str | None = None


class SignerQueueController:
    """Gatekeeper for signer actions on a request.

    Only the slot whose order equals ``current_signer_index`` may act on a
    sequential request; on a parallel request any pending slot may act.
    """

    def __init__(
        self,
        db: Session,
        storage: ObjectStorage,
        renderer: EvidenceRenderer,
        notifier: Notifier,
    ):
        self.db = db
        self.registry = SigningRequestRegistry(db)
        self.finalizer = FinalizeService(db, storage, renderer)
        self.notifier = notifier
        self.audit = AuditLog(db)

    def current_signer(self, request_id: str) -> Signer | None:
        request = self.registry.get(request_id)
        if RequestStatus(request.status) is not RequestStatus.PENDING:
            return None
        if SigningType(request.signing_type) is not SigningType.SEQUENTIAL:
            return None
        return (
            self.db.query(Signer)
            .filter(
                Signer.request_id == request.id,
                Signer.signing_order == request.current_signer_index,
                Signer.status == SignerStatus.PENDING.value,
            )
            .first()
        )

    def pending_signers(self, request_id: str) -> list[Signer]:
        request = self.registry.get(request_id)
        if RequestStatus(request.status) is not RequestStatus.PENDING:
            return []
        return (
            self.db.query(Signer)
            .filter(Signer.request_id == request.id, Signer.status == SignerStatus.PENDING.value)
            .order_by(Signer.signing_order.asc())
            .all()
        )

    def _slot_for(self, request: SigningRequest, actor: str) -> Signer:
        if SigningType(request.signing_type) is SigningType.PARALLEL:
            slot = (
                self.db.query(Signer)
                .filter(Signer.request_id == request.id, Signer.signer_id == actor)
                .first()
            )
            if not slot:
                raise AuthorizationError(f"{actor} is not a signer on this request", details={"signer_id": actor})
            if SignerStatus(slot.status) is not SignerStatus.PENDING:
                raise AuthorizationError(
                    f"{actor} has already acted on this request ({slot.status})",
                    details={"signer_id": actor, "status": slot.status},
                )
            return slot

        index = request.current_signer_index
        slot = (
            self.db.query(Signer)
            .filter(Signer.request_id == request.id, Signer.signing_order == index)
            .first()
        )
        if not slot:
            raise ConflictError(
                f"No signer slot at position {index}",
                details={"request_id": request.id, "current_signer_index": index},
            )
        if slot.signer_id != actor:
            raise AuthorizationError(
                f"It is {slot.signer_id}'s turn to sign (position {index + 1} of {request.required_signers})",
                details={"current_signer_id": slot.signer_id, "current_signer_index": index},
            )
        if SignerStatus(slot.status) is not SignerStatus.PENDING:
            raise AuthorizationError(
                f"Signer slot at position {index + 1} is already {slot.status}",
                details={"current_signer_index": index, "status": slot.status},
            )
        return slot

    def _load_pending(self, request_id: str) -> SigningRequest:
        request = self.registry.get(request_id)
        status = RequestStatus(request.status)
        if status is not RequestStatus.PENDING:
            raise ConflictError(
                f"Signing request is {status.value}, not pending",
                details={"request_id": request_id, "status": status.value},
            )
        return request

    def submit_signature(
        self,
        request_id: str,
        signer_id: str,
        signature: str,
        metadata: dict | None = None,
    ) -> SubmissionOutcome:
        if not signature or not signature.strip():
            raise ValidationError("Signature must not be empty")
        actor = normalize_signer_id(signer_id)
        request = self._load_pending(request_id)
        slot = self._slot_for(request, actor)
        meta = parse_signature_metadata(metadata, request.document.original_hash)
        if isinstance(meta, Ed25519SignatureMetadata) and not verify_ed25519(
            meta.public_key, signature.strip(), request.document.original_hash.encode("utf-8")
        ):
            logger.warning("Rejected ed25519 signature from %s on request %s", actor, request.id)
            raise ValidationError(
                "Ed25519 signature does not verify against the document hash",
                details={"signer_id": actor, "algorithm": meta.algorithm},
            )

        expected_index = request.current_signer_index
        expected_count = request.current_signers
        old_status = SignerStatus(slot.status)

        with atomic(self.db, "Recording signature"):
            check_transition(old_status, SignerStatus.SIGNED)
            result = self.db.execute(
                update(Signer)
                .where(Signer.id == slot.id, Signer.status == SignerStatus.PENDING.value)
                .values(
                    status=SignerStatus.SIGNED.value,
                    signature=signature.strip(),
                    signed_at=utc_now(),
                    signature_metadata_json=dump_signature_metadata(meta),
                )
                .execution_options(synchronize_session="evaluate")
            )
            if result.rowcount != 1:
                raise ConflictError(
                    "Signer slot was used by a concurrent submission",
                    details={"request_id": request.id, "signer_id": actor},
                )
            self.audit.append(
                SignatureRecordedDetails(
                    signer_id=actor,
                    signing_order=slot.signing_order,
                    old_status=old_status.value,
                    new_status=SignerStatus.SIGNED.value,
                    algorithm=meta.algorithm,
                ),
                actor_id=actor,
                document_id=request.document_id,
                request_id=request.id,
            )
            advance = CompletionDetector(self.db).on_signed(request, expected_index, expected_count, actor)

        self.db.refresh(request)
        self.db.refresh(slot)
        logger.info("Signature by %s recorded on request %s", actor, request.id)

        outcome = SubmissionOutcome(
            request=request,
            signer=slot,
            completed=advance.completed,
            next_signer=advance.next_signer,
            finalized=False,
        )
        if advance.completed:
            self._notify_completed(request)
            try:
                self.finalizer.finalize(request, actor_id=actor)
                outcome.finalized = True
            except (RenderError, StorageError) as exc:
                # Signatures are safely recorded; finalize_retry picks this up.
                logger.error("Finalize of request %s failed after completion: %s", request.id, exc.message)
                outcome.finalize_error = exc.message
            self.db.refresh(request)
        elif advance.next_signer is not None:
            dispatch(self.notifier, [
                signer_turn_notification(
                    advance.next_signer.signer_id,
                    request.id,
                    request.document.file_name,
                    advance.next_signer.signing_order,
                )
            ])
        return outcome

    def decline(self, request_id: str, signer_id: str, reason: str | None = None) -> SigningRequest:
        actor = normalize_signer_id(signer_id)
        request = self._load_pending(request_id)
        slot = self._slot_for(request, actor)

        with atomic(self.db, "Declining signing request"):
            check_transition(SignerStatus(slot.status), SignerStatus.REJECTED)
            check_transition(RequestStatus(request.status), RequestStatus.REJECTED)
            result = self.db.execute(
                update(Signer)
                .where(Signer.id == slot.id, Signer.status == SignerStatus.PENDING.value)
                .values(status=SignerStatus.REJECTED.value, decline_reason=reason)
                .execution_options(synchronize_session="evaluate")
            )
            if result.rowcount != 1:
                raise ConflictError(
                    "Signer slot was used by a concurrent submission",
                    details={"request_id": request.id, "signer_id": actor},
                )
            swap_request_state(
                self.db,
                request.id,
                request.current_signer_index,
                request.current_signers,
                status=RequestStatus.REJECTED.value,
            )
            self.audit.append(
                SignerDeclinedDetails(signer_id=actor, signing_order=slot.signing_order, reason=reason),
                actor_id=actor,
                document_id=request.document_id,
                request_id=request.id,
            )

        self.db.refresh(request)
        self.db.refresh(slot)
        logger.info("Request %s declined by %s", request.id, actor)
        dispatch(self.notifier, [
            request_declined_notification(request.initiator_id, request.id, request.document.file_name, actor)
        ])
        return request

    def _notify_completed(self, request: SigningRequest) -> None:
        recipients = [request.initiator_id] + [
            s.signer_id for s in request.signers if s.signer_id != request.initiator_id
        ]
        dispatch(self.notifier, [
            request_completed_notification(recipient, request.id, request.document.file_name)
            for recipient in recipients
        ])
