from fastapi import APIRouter, Depends, HTTPException, Query, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from multisign.database import get_db
from multisign.dependencies import get_storage, require_actor
from multisign.errors import NotFoundError, ValidationError
from multisign.models.document import Document
from multisign.schemas.document import DocumentResponse, DuplicateCheckRequest, DuplicateCheckResult
from multisign.schemas.metadata import DocumentMetadata
from multisign.services.duplicate_service import DuplicateDetector
from multisign.services.registry_service import SigningRequestRegistry
from multisign.services.storage_service import ObjectStorage
from multisign.utils.filesystem import sanitize_filename
from multisign.utils.hashing import normalize_hash

router = APIRouter(prefix="/documents", tags=["documents"])


def _doc_to_response(doc: Document) -> DocumentResponse:
    meta = DocumentMetadata.model_validate_json(doc.metadata_json) if doc.metadata_json else None
    return DocumentResponse(
        id=doc.id,
        owner_id=doc.owner_id,
        file_name=doc.file_name,
        mime_type=doc.mime_type,
        file_size_bytes=doc.file_size_bytes,
        original_hash=doc.original_hash,
        signed_hash=doc.signed_hash,
        status=doc.status,
        description=meta.description if meta else None,
        created_at=doc.created_at,
        updated_at=doc.updated_at,
    )


async def read_upload(file: UploadFile, max_bytes: int) -> bytes:
    size = 0
    chunks: list[bytes] = []
    while True:
        chunk = await file.read(1024 * 1024)
        if not chunk:
            break
        size += len(chunk)
        if size > max_bytes:
            raise HTTPException(status_code=413, detail=f"File too large (max {max_bytes} bytes)")
        chunks.append(chunk)

    content = b"".join(chunks)
    if not content:
        raise HTTPException(status_code=400, detail="Empty file")
    return content


@router.post("/duplicate-check", response_model=DuplicateCheckResult)
async def check_duplicate(
    req: DuplicateCheckRequest,
    actor: str = Depends(require_actor),
    db: Session = Depends(get_db),
):
    file_hash = normalize_hash(req.hash)
    if file_hash is None:
        raise ValidationError("Not a SHA-256 hex digest", details={"hash": req.hash})
    return DuplicateDetector(db).check(file_hash, actor)


@router.get("/{doc_id}", response_model=DocumentResponse)
async def get_document(doc_id: str, actor: str = Depends(require_actor), db: Session = Depends(get_db)):
    return _doc_to_response(SigningRequestRegistry(db).get_document(doc_id))


@router.get("/{doc_id}/download")
async def download_document(
    doc_id: str,
    variant: str = Query("original", pattern="^(original|signed)$"),
    actor: str = Depends(require_actor),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    doc = SigningRequestRegistry(db).get_document(doc_id)
    if variant == "signed":
        if not doc.signed_ref:
            raise NotFoundError("Document has no signed version yet", details={"document_id": doc_id})
        content = storage.get(doc.signed_ref)
        filename = f"signed_{doc.file_name}"
        media_type = "application/pdf"
    else:
        content = storage.get(doc.stored_ref)
        filename = doc.file_name
        media_type = doc.mime_type or "application/octet-stream"

    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{sanitize_filename(filename)}"'},
    )
