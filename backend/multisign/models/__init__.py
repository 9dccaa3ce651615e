from multisign.models.document import Document
from multisign.models.signing_request import SigningRequest
from multisign.models.signer import Signer
from multisign.models.audit import AuditEntry
from multisign.models.verification import VerificationAttempt

__all__ = ["Document", "SigningRequest", "Signer", "AuditEntry", "VerificationAttempt"]
