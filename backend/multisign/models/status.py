"""Closed state vocabularies and their allowed transitions.

Each state machine gets its own enum; ``check_transition`` is called before
every status write so an illegal move never reaches the database.
"""
from enum import Enum

from multisign.errors import ConflictError


class DocumentStatus(str, Enum):
    UPLOADED = "uploaded"
    ACCEPTED = "accepted"
    SIGNED = "signed"
    COMPLETED = "completed"


class RequestStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"


class SignerStatus(str, Enum):
    PENDING = "pending"
    SIGNED = "signed"
    REJECTED = "rejected"


class SigningType(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


DOCUMENT_TRANSITIONS: dict[DocumentStatus, set[DocumentStatus]] = {
    DocumentStatus.UPLOADED: {DocumentStatus.ACCEPTED, DocumentStatus.SIGNED},
    DocumentStatus.ACCEPTED: {DocumentStatus.SIGNED},
    DocumentStatus.SIGNED: {DocumentStatus.COMPLETED},
    DocumentStatus.COMPLETED: set(),
}

REQUEST_TRANSITIONS: dict[RequestStatus, set[RequestStatus]] = {
    RequestStatus.PENDING: {RequestStatus.COMPLETED, RequestStatus.REJECTED},
    RequestStatus.COMPLETED: set(),
    RequestStatus.REJECTED: set(),
}

SIGNER_TRANSITIONS: dict[SignerStatus, set[SignerStatus]] = {
    SignerStatus.PENDING: {SignerStatus.SIGNED, SignerStatus.REJECTED},
    SignerStatus.SIGNED: set(),
    SignerStatus.REJECTED: set(),
}

_TABLES = {
    DocumentStatus: DOCUMENT_TRANSITIONS,
    RequestStatus: REQUEST_TRANSITIONS,
    SignerStatus: SIGNER_TRANSITIONS,
}


def check_transition(current: Enum, new: Enum) -> None:
    table = _TABLES[type(current)]
    if new not in table[current]:
        raise ConflictError(
            f"Illegal {type(current).__name__} transition {current.value} -> {new.value}",
            details={"from": current.value, "to": new.value},
        )
