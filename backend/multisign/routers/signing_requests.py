import json
import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from multisign.config import Settings
from multisign.database import get_db
from multisign.dependencies import get_queue, get_renderer, get_settings, get_storage, require_actor
from multisign.errors import DuplicateConfirmationRequired, DuplicateDocumentError, SigningError, ValidationError
from multisign.models.signer import Signer
from multisign.models.signing_request import SigningRequest
from multisign.models.status import RequestStatus, SignerStatus, SigningType
from multisign.routers.documents import _doc_to_response, read_upload
from multisign.schemas.metadata import load_signature_metadata
from multisign.schemas.signing import (
    AuditEntryResponse,
    CurrentSignerResponse,
    DeclineSubmission,
    FinalizeResponse,
    ProgressSummary,
    SignatureSubmission,
    SignerInput,
    SignerResponse,
    SigningRequestResponse,
    StatusResponse,
    StuckFinalizeOutcome,
    SubmissionResponse,
    TimelineItem,
)
from multisign.services.audit_service import AuditLog
from multisign.services.duplicate_service import DuplicateDetector
from multisign.services.evidence_service import EvidenceRenderer, require_pdf
from multisign.services.finalize_service import FinalizeService
from multisign.services.queue_service import SignerQueueController
from multisign.services.registry_service import NewDocument, SigningRequestRegistry, order_signers
from multisign.services.storage_service import ObjectStorage
from multisign.utils.hashing import sha256_bytes

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/signing-requests", tags=["signing-requests"])

_signer_list = TypeAdapter(list[SignerInput])


def _signer_to_response(signer: Signer) -> SignerResponse:
    meta = load_signature_metadata(signer.signature_metadata_json)
    return SignerResponse(
        id=signer.id,
        signer_id=signer.signer_id,
        order=signer.signing_order,
        status=signer.status,
        signed_at=signer.signed_at,
        has_signature=bool(signer.signature),
        algorithm=meta.algorithm if meta else None,
        decline_reason=signer.decline_reason,
    )


def _request_to_response(request: SigningRequest) -> SigningRequestResponse:
    return SigningRequestResponse(
        id=request.id,
        document_id=request.document_id,
        initiator_id=request.initiator_id,
        description=request.description,
        signing_type=request.signing_type,
        status=request.status,
        current_signer_index=request.current_signer_index,
        required_signers=request.required_signers,
        current_signers=request.current_signers,
        created_at=request.created_at,
        completed_at=request.completed_at,
        signers=[_signer_to_response(s) for s in request.signers],
        document=_doc_to_response(request.document),
    )


def _parse_signers(raw: str) -> list[SignerInput]:
    try:
        items = json.loads(raw)
        if not isinstance(items, list):
            raise HTTPException(status_code=400, detail="signers must be a JSON list")
        items = [{"signer_id": item} if isinstance(item, str) else item for item in items]
        return _signer_list.validate_python(items)
    except (json.JSONDecodeError, PydanticValidationError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid signers: {exc}")


@router.post("", response_model=SigningRequestResponse, status_code=201)
async def create_signing_request(
    file: UploadFile = File(...),
    signers: str = Form(...),
    signing_type: str = Form("sequential"),
    description: str | None = Form(None),
    force: bool = Form(False),
    actor: str = Depends(require_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
):
    signer_inputs = _parse_signers(signers)
    try:
        kind = SigningType(signing_type)
    except ValueError:
        raise ValidationError(
            f"Invalid signing_type. Must be one of: {[t.value for t in SigningType]}",
            details={"signing_type": signing_type},
        )
    order_signers(signer_inputs, settings.max_signers)

    content = await read_upload(file, settings.max_upload_bytes)
    require_pdf(content)
    file_hash = sha256_bytes(content)

    duplicate = DuplicateDetector(db).check(file_hash, actor)
    if duplicate.is_blocking:
        raise DuplicateDocumentError(duplicate.message, details=duplicate.model_dump())
    if duplicate.is_duplicate and not force:
        raise DuplicateConfirmationRequired(duplicate.message, details=duplicate.model_dump())

    file_name = file.filename or "document"
    stored_ref = storage.put(content, file_name)
    try:
        request = SigningRequestRegistry(db, settings.max_signers).create(
            NewDocument(
                owner_id=actor,
                file_name=file_name,
                mime_type=file.content_type,
                file_size_bytes=len(content),
                stored_ref=stored_ref,
                original_hash=file_hash,
                description=description,
            ),
            signer_inputs,
            kind,
        )
    except SigningError:
        # Stored objects are write-once; the upload stays behind unreferenced.
        logger.warning("Upload %s left unreferenced: signing request was not created", stored_ref)
        raise
    return _request_to_response(request)


@router.get("", response_model=list[SigningRequestResponse])
async def list_my_requests(actor: str = Depends(require_actor), db: Session = Depends(get_db)):
    return [_request_to_response(r) for r in SigningRequestRegistry(db).list_for_participant(actor)]


@router.post("/finalize-stuck", response_model=list[StuckFinalizeOutcome])
async def finalize_stuck(
    actor: str = Depends(require_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    renderer: EvidenceRenderer = Depends(get_renderer),
):
    """Retry finalize for every completed request whose document never got its evidence file."""
    return FinalizeService(db, storage, renderer).retry_stuck(actor)


@router.get("/{request_id}", response_model=SigningRequestResponse)
async def get_signing_request(request_id: str, actor: str = Depends(require_actor), db: Session = Depends(get_db)):
    return _request_to_response(SigningRequestRegistry(db).get(request_id))


@router.get("/{request_id}/current-signer", response_model=CurrentSignerResponse)
async def get_current_signer(
    request_id: str,
    actor: str = Depends(require_actor),
    queue: SignerQueueController = Depends(get_queue),
):
    request = queue.registry.get(request_id)
    current = queue.current_signer(request_id)
    return CurrentSignerResponse(
        request_id=request.id,
        request_status=request.status,
        signing_type=request.signing_type,
        current_signer=_signer_to_response(current) if current else None,
        pending_signers=[_signer_to_response(s) for s in queue.pending_signers(request_id)],
    )


@router.post("/{request_id}/signatures", response_model=SubmissionResponse)
async def submit_signature(
    request_id: str,
    req: SignatureSubmission,
    actor: str = Depends(require_actor),
    queue: SignerQueueController = Depends(get_queue),
):
    outcome = queue.submit_signature(request_id, actor, req.signature, req.metadata)
    request = outcome.request
    if outcome.completed and outcome.finalized:
        message = "All signatures collected; signed document is ready."
    elif outcome.completed:
        message = "All signatures collected; the signed document will be produced on retry."
    elif outcome.next_signer is not None:
        message = f"Signature recorded. Next signer: {outcome.next_signer.signer_id}."
    else:
        message = f"Signature recorded. {request.current_signers} of {request.required_signers} collected."
    return SubmissionResponse(
        request_id=request.id,
        status=request.status,
        current_signer_index=request.current_signer_index,
        current_signers=request.current_signers,
        required_signers=request.required_signers,
        is_completed=outcome.completed,
        next_signer=_signer_to_response(outcome.next_signer) if outcome.next_signer else None,
        finalized=outcome.finalized,
        finalize_error=outcome.finalize_error,
        message=message,
    )


@router.post("/{request_id}/decline", response_model=SigningRequestResponse)
async def decline_request(
    request_id: str,
    req: DeclineSubmission,
    actor: str = Depends(require_actor),
    queue: SignerQueueController = Depends(get_queue),
):
    return _request_to_response(queue.decline(request_id, actor, req.reason))


@router.get("/{request_id}/status", response_model=StatusResponse)
async def get_status(
    request_id: str,
    actor: str = Depends(require_actor),
    queue: SignerQueueController = Depends(get_queue),
):
    request = queue.registry.get(request_id)
    total = request.required_signers
    completed = sum(1 for s in request.signers if SignerStatus(s.status) is SignerStatus.SIGNED)
    current = queue.current_signer(request_id)
    pending = queue.pending_signers(request_id)
    sequential = SigningType(request.signing_type) is SigningType.SEQUENTIAL
    next_signers = [s for s in pending if not current or s.signing_order > current.signing_order]

    return StatusResponse(
        id=request.id,
        status=request.status,
        signing_type=request.signing_type,
        document_status=request.document.status,
        progress=ProgressSummary(
            completed=completed,
            total=total,
            percentage=round(completed * 100 / total) if total else 0,
        ),
        current_signer=_signer_to_response(current) if current else None,
        next_signers=[_signer_to_response(s) for s in next_signers],
        timeline=[
            TimelineItem(
                order=s.signing_order,
                signer_id=s.signer_id,
                status=s.status,
                signed_at=s.signed_at,
                is_current=(
                    sequential
                    and RequestStatus(request.status) is RequestStatus.PENDING
                    and s.signing_order == request.current_signer_index
                ),
            )
            for s in request.signers
        ],
        created_at=request.created_at,
        completed_at=request.completed_at,
    )


@router.post("/{request_id}/finalize", response_model=FinalizeResponse)
async def finalize_request(
    request_id: str,
    actor: str = Depends(require_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    renderer: EvidenceRenderer = Depends(get_renderer),
):
    doc, already = FinalizeService(db, storage, renderer).finalize_retry(request_id, actor)
    return FinalizeResponse(
        request_id=request_id,
        document_id=doc.id,
        document_status=doc.status,
        original_hash=doc.original_hash,
        signed_hash=doc.signed_hash,
        already_finalized=already,
    )


@router.get("/{request_id}/audit", response_model=list[AuditEntryResponse])
async def get_audit_trail(request_id: str, actor: str = Depends(require_actor), db: Session = Depends(get_db)):
    request = SigningRequestRegistry(db).get(request_id)
    return [
        AuditEntryResponse(
            id=entry.id,
            document_id=entry.document_id,
            request_id=entry.request_id,
            actor_id=entry.actor_id,
            action=entry.action,
            details=json.loads(entry.details_json),
            occurred_at=entry.occurred_at,
        )
        for entry in AuditLog(db).for_request(request.id)
    ]
