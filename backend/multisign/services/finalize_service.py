import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from multisign.errors import ConflictError, NotFoundError, RenderError, StorageError
from multisign.models.document import Document
from multisign.models.signing_request import SigningRequest
from multisign.models.status import DocumentStatus, RequestStatus, SignerStatus, check_transition
from multisign.schemas.metadata import (
    FinalizeAttemptedDetails,
    FinalizeFailedDetails,
    FinalizeSucceededDetails,
    load_signature_metadata,
)
from multisign.schemas.signing import StuckFinalizeOutcome
from multisign.services.audit_service import SYSTEM_ACTOR, AuditLog
from multisign.services.evidence_service import EvidenceRenderer, EvidenceSignature
from multisign.services.storage_service import ObjectStorage
from multisign.services.transaction import atomic
from multisign.utils.hashing import sha256_bytes
from multisign.utils.timestamps import utc_now

logger = logging.getLogger(__name__)


def evidence_signatures(request: SigningRequest) -> list[EvidenceSignature]:
    signatures = []
    for signer in request.signers:
        if SignerStatus(signer.status) is not SignerStatus.SIGNED:
            continue
        meta = load_signature_metadata(signer.signature_metadata_json)
        signatures.append(EvidenceSignature(
            order=signer.signing_order,
            signer_id=signer.signer_id,
            signature=signer.signature,
            signed_at=signer.signed_at,
            algorithm=meta.algorithm if meta else "opaque",
        ))
    return sorted(signatures, key=lambda s: s.order)


class FinalizeService:
    """Renders the evidence file for a completed request and moves the document
    from ``signed`` to ``completed``.

    Any render or storage failure leaves the document ``signed`` so the
    operation can be retried; the outcome of every attempt is audited.
    """

    def __init__(self, db: Session, storage: ObjectStorage, renderer: EvidenceRenderer):
        self.db = db
        self.storage = storage
        self.renderer = renderer
        self.audit = AuditLog(db)

    def finalize(self, request: SigningRequest, actor_id: str = SYSTEM_ACTOR) -> Document:
        doc = request.document
        self.db.refresh(doc)
        if DocumentStatus(doc.status) is DocumentStatus.COMPLETED:
            return doc
        if RequestStatus(request.status) is not RequestStatus.COMPLETED:
            raise ConflictError(
                "Signing request is not completed yet",
                details={"request_id": request.id, "status": request.status},
            )
        if DocumentStatus(doc.status) is not DocumentStatus.SIGNED:
            raise ConflictError(
                f"Document is {doc.status}, expected signed",
                details={"document_id": doc.id, "status": doc.status},
            )

        signatures = evidence_signatures(request)
        with atomic(self.db, "Recording finalize attempt"):
            self.audit.append(
                FinalizeAttemptedDetails(original_hash=doc.original_hash, signature_count=len(signatures)),
                actor_id=actor_id,
                document_id=doc.id,
                request_id=request.id,
            )

        try:
            signed_hash, signed_ref = self._render_and_store(doc, signatures)
            with atomic(self.db, "Finalizing document"):
                check_transition(DocumentStatus.SIGNED, DocumentStatus.COMPLETED)
                result = self.db.execute(
                    update(Document)
                    .where(Document.id == doc.id, Document.status == DocumentStatus.SIGNED.value)
                    .values(
                        status=DocumentStatus.COMPLETED.value,
                        signed_hash=signed_hash,
                        signed_ref=signed_ref,
                        updated_at=utc_now(),
                    )
                    .execution_options(synchronize_session=False)
                )
                won = result.rowcount == 1
                if won:
                    self.audit.append(
                        FinalizeSucceededDetails(
                            original_hash=doc.original_hash,
                            signed_hash=signed_hash,
                            signed_ref=signed_ref,
                        ),
                        actor_id=actor_id,
                        document_id=doc.id,
                        request_id=request.id,
                    )
        except (RenderError, StorageError) as exc:
            logger.error("Finalize of document %s failed: %s", doc.id, exc.message)
            with atomic(self.db, "Recording finalize failure"):
                self.audit.append(
                    FinalizeFailedDetails(error_kind=exc.kind, message=exc.message),
                    actor_id=actor_id,
                    document_id=doc.id,
                    request_id=request.id,
                )
            raise

        self.db.refresh(doc)
        if not won:
            if DocumentStatus(doc.status) is DocumentStatus.COMPLETED:
                logger.info("Document %s was finalized by a concurrent attempt", doc.id)
                return doc
            raise ConflictError(
                f"Document is {doc.status}, expected signed",
                details={"document_id": doc.id, "status": doc.status},
            )
        logger.info("Finalized document %s (%s -> %s)", doc.id, doc.original_hash[:12], signed_hash[:12])
        return doc

    def _render_and_store(self, doc: Document, signatures: list[EvidenceSignature]) -> tuple[str, str]:
        original = self.storage.get(doc.stored_ref)
        if sha256_bytes(original) != doc.original_hash:
            raise RenderError(
                "Stored original does not match its recorded hash",
                details={"document_id": doc.id},
            )
        try:
            rendered = self.renderer.embed(original, signatures)
        except RenderError:
            raise
        except Exception as exc:
            raise RenderError("Evidence renderer failed", details={"reason": str(exc)}) from exc

        signed_hash = sha256_bytes(rendered)
        if signed_hash == doc.original_hash:
            raise RenderError(
                "Renderer returned the original bytes unchanged",
                details={"document_id": doc.id},
            )
        signed_ref = self.storage.put(rendered, f"signed_{doc.file_name}")
        return signed_hash, signed_ref

    def finalize_retry(self, request_id: str, actor_id: str = SYSTEM_ACTOR) -> tuple[Document, bool]:
        """Re-run finalize for a completed request. Returns ``(document, already_finalized)``."""
        request = self.db.query(SigningRequest).filter(SigningRequest.id == request_id).first()
        if not request:
            raise NotFoundError("Signing request not found", details={"request_id": request_id})
        if RequestStatus(request.status) is not RequestStatus.COMPLETED:
            raise ConflictError(
                "Only completed requests can be finalized",
                details={"request_id": request_id, "status": request.status},
            )
        self.db.refresh(request.document)
        if DocumentStatus(request.document.status) is DocumentStatus.COMPLETED:
            return request.document, True
        return self.finalize(request, actor_id), False

    def retry_stuck(self, actor_id: str = SYSTEM_ACTOR) -> list[StuckFinalizeOutcome]:
        stuck = (
            self.db.query(SigningRequest)
            .join(Document, SigningRequest.document_id == Document.id)
            .filter(
                SigningRequest.status == RequestStatus.COMPLETED.value,
                Document.status == DocumentStatus.SIGNED.value,
            )
            .order_by(SigningRequest.completed_at.asc())
            .all()
        )
        outcomes = []
        for request in stuck:
            try:
                self.finalize(request, actor_id)
                outcomes.append(StuckFinalizeOutcome(request_id=request.id, finalized=True))
            except (RenderError, StorageError, ConflictError) as exc:
                outcomes.append(StuckFinalizeOutcome(request_id=request.id, finalized=False, error=exc.message))
        if stuck:
            logger.info(
                "Stuck finalize sweep: %d of %d requests finalized",
                sum(1 for o in outcomes if o.finalized), len(stuck),
            )
        return outcomes
