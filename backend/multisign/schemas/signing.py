from pydantic import BaseModel, Field

from multisign.schemas.document import DocumentResponse


class SignerInput(BaseModel):
    signer_id: str
    order: int | None = None


class SignerResponse(BaseModel):
    id: str
    signer_id: str
    order: int
    status: str
    signed_at: str | None
    has_signature: bool
    algorithm: str | None
    decline_reason: str | None


class SigningRequestResponse(BaseModel):
    id: str
    document_id: str
    initiator_id: str
    description: str | None
    signing_type: str
    status: str
    current_signer_index: int
    required_signers: int
    current_signers: int
    created_at: str
    completed_at: str | None
    signers: list[SignerResponse]
    document: DocumentResponse


class CurrentSignerResponse(BaseModel):
    request_id: str
    request_status: str
    signing_type: str
    current_signer: SignerResponse | None
    pending_signers: list[SignerResponse]


class SignatureSubmission(BaseModel):
    signature: str
    metadata: dict | None = None


class DeclineSubmission(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class SubmissionResponse(BaseModel):
    request_id: str
    status: str
    current_signer_index: int
    current_signers: int
    required_signers: int
    is_completed: bool
    next_signer: SignerResponse | None
    finalized: bool
    finalize_error: str | None = None
    message: str


class ProgressSummary(BaseModel):
    completed: int
    total: int
    percentage: int


class TimelineItem(BaseModel):
    order: int
    signer_id: str
    status: str
    signed_at: str | None
    is_current: bool


class StatusResponse(BaseModel):
    id: str
    status: str
    signing_type: str
    document_status: str
    progress: ProgressSummary
    current_signer: SignerResponse | None
    next_signers: list[SignerResponse]
    timeline: list[TimelineItem]
    created_at: str
    completed_at: str | None


class FinalizeResponse(BaseModel):
    request_id: str
    document_id: str
    document_status: str
    original_hash: str
    signed_hash: str | None
    already_finalized: bool


class StuckFinalizeOutcome(BaseModel):
    request_id: str
    finalized: bool
    error: str | None = None


class AuditEntryResponse(BaseModel):
    id: str
    document_id: str | None
    request_id: str | None
    actor_id: str
    action: str
    details: dict
    occurred_at: str
