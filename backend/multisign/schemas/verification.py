from pydantic import BaseModel


class ClaimedSignature(BaseModel):
    signer_id: str
    signature: str


class SignerVerification(BaseModel):
    order: int
    signer_id: str
    status: str
    signed_at: str | None
    algorithm: str | None
    signature_digest: str | None  # sha256 of the stored signature, never the signature itself
    crypto_check: str  # "valid" | "invalid" | "not_applicable"
    claim_matched: bool | None = None


class VerificationResult(BaseModel):
    found: bool
    is_valid: bool
    lookup_hash: str
    matched_on: str | None = None  # "original" | "signed"
    document_id: str | None = None
    file_name: str | None = None
    document_status: str | None = None
    original_hash: str | None = None
    signed_hash: str | None = None
    hash_chain_intact: bool | None = None
    request_id: str | None = None
    request_status: str | None = None
    signing_type: str | None = None
    required_signers: int = 0
    signed_count: int = 0
    signers: list[SignerVerification] = []
    problems: list[str] = []
    verified_at: str
