"""Tagged records stored as JSON columns.

Signature metadata is discriminated on ``algorithm``; audit details on
``kind``. Both are parsed at the service boundary, so a row never holds a
shape the code cannot read back.
"""
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from multisign.errors import ValidationError


# --- signature metadata ---------------------------------------------------

class OpaqueSignatureMetadata(BaseModel):
    algorithm: Literal["opaque"] = "opaque"
    document_hash: str


class Ed25519SignatureMetadata(BaseModel):
    algorithm: Literal["ed25519"]
    document_hash: str
    public_key: str  # base64, raw 32-byte key


class EthPersonalSignMetadata(BaseModel):
    algorithm: Literal["eth-personal-sign"]
    document_hash: str
    signer_address: str


SignatureMetadata = Annotated[
    Union[OpaqueSignatureMetadata, Ed25519SignatureMetadata, EthPersonalSignMetadata],
    Field(discriminator="algorithm"),
]

_signature_metadata = TypeAdapter(SignatureMetadata)


def parse_signature_metadata(raw: dict | None, document_hash: str) -> SignatureMetadata:
    data = dict(raw or {})
    data.setdefault("algorithm", "opaque")
    data.setdefault("document_hash", document_hash)
    try:
        meta = _signature_metadata.validate_python(data)
    except PydanticValidationError as exc:
        raise ValidationError("Invalid signature metadata", details={"errors": exc.errors(include_url=False)})
    if meta.document_hash.lower() != document_hash:
        raise ValidationError(
            "Signature metadata references a different document hash",
            details={"expected": document_hash, "got": meta.document_hash},
        )
    return meta


def load_signature_metadata(raw_json: str | None) -> SignatureMetadata | None:
    if not raw_json:
        return None
    return _signature_metadata.validate_json(raw_json)


def dump_signature_metadata(meta: SignatureMetadata) -> str:
    return _signature_metadata.dump_json(meta).decode("utf-8")


# --- audit details --------------------------------------------------------

class RequestCreatedDetails(BaseModel):
    kind: Literal["request_created"] = "request_created"
    original_hash: str
    signing_type: str
    signer_ids: list[str]


class SignatureRecordedDetails(BaseModel):
    kind: Literal["signature_recorded"] = "signature_recorded"
    signer_id: str
    signing_order: int
    old_status: str
    new_status: str
    algorithm: str


class SignerAdvancedDetails(BaseModel):
    kind: Literal["signer_advanced"] = "signer_advanced"
    from_index: int
    to_index: int
    next_signer_id: str | None
    current_signers: int


class RequestCompletedDetails(BaseModel):
    kind: Literal["request_completed"] = "request_completed"
    required_signers: int
    completed_at: str


class SignerDeclinedDetails(BaseModel):
    kind: Literal["signer_declined"] = "signer_declined"
    signer_id: str
    signing_order: int
    reason: str | None


class FinalizeAttemptedDetails(BaseModel):
    kind: Literal["finalize_attempted"] = "finalize_attempted"
    original_hash: str
    signature_count: int


class FinalizeSucceededDetails(BaseModel):
    kind: Literal["finalize_succeeded"] = "finalize_succeeded"
    original_hash: str
    signed_hash: str
    signed_ref: str


class FinalizeFailedDetails(BaseModel):
    kind: Literal["finalize_failed"] = "finalize_failed"
    error_kind: str
    message: str


class VerificationAttemptedDetails(BaseModel):
    kind: Literal["verification_attempted"] = "verification_attempted"
    lookup_hash: str
    matched_on: str | None
    is_valid: bool


AuditDetails = Annotated[
    Union[
        RequestCreatedDetails,
        SignatureRecordedDetails,
        SignerAdvancedDetails,
        RequestCompletedDetails,
        SignerDeclinedDetails,
        FinalizeAttemptedDetails,
        FinalizeSucceededDetails,
        FinalizeFailedDetails,
        VerificationAttemptedDetails,
    ],
    Field(discriminator="kind"),
]

audit_details_adapter = TypeAdapter(AuditDetails)


# --- document metadata ----------------------------------------------------

class DocumentMetadata(BaseModel):
    description: str | None = None
    source: Literal["multi-signature"] = "multi-signature"
    signer_count: int
