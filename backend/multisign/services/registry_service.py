import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import or_
from sqlalchemy.orm import Session

from multisign.errors import NotFoundError, ValidationError
from multisign.models.document import Document
from multisign.models.signer import Signer
from multisign.models.signing_request import SigningRequest
from multisign.models.status import DocumentStatus, RequestStatus, SignerStatus, SigningType
from multisign.schemas.metadata import DocumentMetadata, RequestCreatedDetails
from multisign.schemas.signing import SignerInput
from multisign.services.audit_service import AuditLog
from multisign.services.transaction import atomic
from multisign.utils.timestamps import utc_now

logger = logging.getLogger(__name__)


@dataclass
class NewDocument:
    owner_id: str
    file_name: str
    mime_type: str | None
    file_size_bytes: int
    stored_ref: str
    original_hash: str
    description: str | None = None


def normalize_signer_id(signer_id: str) -> str:
    return signer_id.strip().lower()


def order_signers(signers: list[SignerInput], max_signers: int) -> list[str]:
    """Validate a signer list and return signer ids in signing order.

    Caller-supplied order values only need to be unique; they are re-numbered
    to a contiguous ``0..n-1`` range. Entries without an order keep their
    position in the list.
    """
    if not signers:
        raise ValidationError("At least one signer is required")
    if len(signers) > max_signers:
        raise ValidationError(f"At most {max_signers} signers are allowed", details={"count": len(signers)})

    seen_ids: set[str] = set()
    seen_orders: set[int] = set()
    keyed: list[tuple[int, int, str]] = []
    for position, signer in enumerate(signers):
        signer_id = normalize_signer_id(signer.signer_id)
        if not signer_id:
            raise ValidationError("Signer id must not be empty", details={"position": position})
        if signer_id in seen_ids:
            raise ValidationError(f"Duplicate signer '{signer_id}'", details={"signer_id": signer_id})
        seen_ids.add(signer_id)

        order = position if signer.order is None else signer.order
        if order in seen_orders:
            raise ValidationError(f"Duplicate signing order {order}", details={"order": order})
        seen_orders.add(order)
        keyed.append((order, position, signer_id))

    return [signer_id for _, _, signer_id in sorted(keyed)]


class SigningRequestRegistry:
    def __init__(self, db: Session, max_signers: int = 50):
        self.db = db
        self.max_signers = max_signers

    def create(
        self,
        document: NewDocument,
        signers: list[SignerInput],
        signing_type: SigningType = SigningType.SEQUENTIAL,
    ) -> SigningRequest:
        ordered_ids = order_signers(signers, self.max_signers)
        owner = normalize_signer_id(document.owner_id)
        now = utc_now()

        doc = Document(
            id=str(uuid.uuid4()),
            owner_id=owner,
            file_name=document.file_name,
            mime_type=document.mime_type,
            file_size_bytes=document.file_size_bytes,
            stored_ref=document.stored_ref,
            original_hash=document.original_hash,
            status=DocumentStatus.UPLOADED.value,
            metadata_json=DocumentMetadata(
                description=document.description,
                signer_count=len(ordered_ids),
            ).model_dump_json(),
            created_at=now,
            updated_at=now,
        )
        request = SigningRequest(
            id=str(uuid.uuid4()),
            document_id=doc.id,
            initiator_id=owner,
            description=document.description,
            signing_type=signing_type.value,
            status=RequestStatus.PENDING.value,
            current_signer_index=0,
            required_signers=len(ordered_ids),
            current_signers=0,
            created_at=now,
        )
        rows = [
            Signer(
                id=str(uuid.uuid4()),
                request_id=request.id,
                signer_id=signer_id,
                signing_order=order,
                status=SignerStatus.PENDING.value,
            )
            for order, signer_id in enumerate(ordered_ids)
        ]

        with atomic(self.db, "Creating signing request"):
            self.db.add(doc)
            self.db.flush()
            self.db.add(request)
            self.db.flush()
            self.db.add_all(rows)
            AuditLog(self.db).append(
                RequestCreatedDetails(
                    original_hash=doc.original_hash,
                    signing_type=request.signing_type,
                    signer_ids=ordered_ids,
                ),
                actor_id=owner,
                document_id=doc.id,
                request_id=request.id,
            )

        logger.info(
            "Created %s signing request %s for document %s with %d signers",
            request.signing_type, request.id, doc.id, len(rows),
        )
        self.db.refresh(request)
        return request

    def get(self, request_id: str) -> SigningRequest:
        request = self.db.query(SigningRequest).filter(SigningRequest.id == request_id).first()
        if not request:
            raise NotFoundError("Signing request not found", details={"request_id": request_id})
        return request

    def get_document(self, document_id: str) -> Document:
        doc = self.db.query(Document).filter(Document.id == document_id).first()
        if not doc:
            raise NotFoundError("Document not found", details={"document_id": document_id})
        return doc

    def list_for_participant(self, actor_id: str) -> list[SigningRequest]:
        actor = normalize_signer_id(actor_id)
        signer_of = self.db.query(Signer.request_id).filter(Signer.signer_id == actor)
        return (
            self.db.query(SigningRequest)
            .filter(or_(SigningRequest.initiator_id == actor, SigningRequest.id.in_(signer_of)))
            .order_by(SigningRequest.created_at.desc())
            .all()
        )
