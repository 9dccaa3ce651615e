from pydantic import BaseModel


class DocumentResponse(BaseModel):
    id: str
    owner_id: str
    file_name: str
    mime_type: str | None
    file_size_bytes: int
    original_hash: str
    signed_hash: str | None
    status: str
    description: str | None
    created_at: str
    updated_at: str


class ExistingDocumentSummary(BaseModel):
    id: str
    file_name: str
    status: str
    owner_id: str
    created_at: str
    same_owner: bool


class DuplicateCheckResult(BaseModel):
    kind: str  # "no_duplicate" | "duplicate"
    action: str  # "allow" | "blocking" | "confirmable"
    message: str
    existing_document: ExistingDocumentSummary | None = None

    @property
    def is_duplicate(self) -> bool:
        return self.kind == "duplicate"

    @property
    def is_blocking(self) -> bool:
        return self.action == "blocking"


class DuplicateCheckRequest(BaseModel):
    hash: str
