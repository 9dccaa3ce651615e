"""Error taxonomy for the signing workflow.

Every service raises one of these; the HTTP layer maps them to a status code
in ``main.create_app``. ``StorageError`` and ``RenderError`` are the only kinds
an operator tool is expected to retry.
"""


class SigningError(Exception):
    kind = "signing_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(SigningError):
    kind = "validation_error"
    status_code = 400


class AuthorizationError(SigningError):
    kind = "authorization_error"
    status_code = 403


class NotFoundError(SigningError):
    kind = "not_found"
    status_code = 404


class ConflictError(SigningError):
    kind = "conflict"
    status_code = 409


class StorageError(SigningError):
    kind = "storage_error"
    status_code = 503
    retryable = True


class RenderError(SigningError):
    kind = "render_error"
    status_code = 502
    retryable = True


class DuplicateDocumentError(ConflictError):
    kind = "duplicate_document"


class DuplicateConfirmationRequired(ConflictError):
    kind = "duplicate_confirmation_required"
