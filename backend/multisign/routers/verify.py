import json

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, UploadFile
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from multisign.config import Settings
from multisign.database import get_db
from multisign.dependencies import get_settings
from multisign.routers.documents import read_upload
from multisign.schemas.verification import ClaimedSignature, VerificationResult
from multisign.services.verification_service import VerificationService

# Verification is public: anyone holding a file may check it.
router = APIRouter(prefix="/verify", tags=["verify"])

_claims = TypeAdapter(list[ClaimedSignature])


def _parse_claims(raw: str | None) -> list[ClaimedSignature] | None:
    if not raw:
        return None
    try:
        return _claims.validate_python(json.loads(raw))
    except (json.JSONDecodeError, PydanticValidationError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid claimed_signatures: {exc}")


@router.post("", response_model=VerificationResult)
async def verify_file(
    file: UploadFile = File(...),
    claimed_signatures: str | None = Form(None),
    x_actor_id: str | None = Header(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    claims = _parse_claims(claimed_signatures)
    content = await read_upload(file, settings.max_upload_bytes)
    return VerificationService(db).verify(content=content, claimed=claims, verifier_id=x_actor_id)


@router.get("/{document_hash}", response_model=VerificationResult)
async def verify_hash(
    document_hash: str,
    x_actor_id: str | None = Header(None),
    db: Session = Depends(get_db),
):
    return VerificationService(db).verify(document_hash=document_hash, verifier_id=x_actor_id)
