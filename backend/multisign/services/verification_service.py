import json
import logging
import uuid

from sqlalchemy import or_
from sqlalchemy.orm import Session

from multisign.errors import StorageError, ValidationError
from multisign.models.document import Document
from multisign.models.signer import Signer
from multisign.models.status import DocumentStatus, RequestStatus, SignerStatus
from multisign.models.verification import VerificationAttempt
from multisign.schemas.metadata import (
    Ed25519SignatureMetadata,
    VerificationAttemptedDetails,
    load_signature_metadata,
)
from multisign.schemas.verification import ClaimedSignature, SignerVerification, VerificationResult
from multisign.services.audit_service import SYSTEM_ACTOR, AuditLog
from multisign.services.registry_service import normalize_signer_id
from multisign.services.transaction import atomic
from multisign.utils.hashing import normalize_hash, sha256_bytes, sha256_text
from multisign.utils.signatures import verify_ed25519
from multisign.utils.timestamps import utc_now

logger = logging.getLogger(__name__)

VALID = "valid"
INVALID = "invalid"
NOT_APPLICABLE = "not_applicable"


def _crypto_check(signer: Signer, original_hash: str) -> tuple[str | None, str]:
    meta = load_signature_metadata(signer.signature_metadata_json)
    if meta is None:
        return None, NOT_APPLICABLE
    if isinstance(meta, Ed25519SignatureMetadata):
        ok = verify_ed25519(meta.public_key, signer.signature, original_hash.encode("utf-8"))
        return meta.algorithm, VALID if ok else INVALID
    return meta.algorithm, NOT_APPLICABLE


class VerificationService:
    """Answers whether a file (or its hash) carries a complete, intact set of signatures."""

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLog(db)

    def _find_document(self, lookup_hash: str) -> tuple[Document | None, str | None]:
        matches = (
            self.db.query(Document)
            .filter(or_(Document.original_hash == lookup_hash, Document.signed_hash == lookup_hash))
            .order_by(Document.created_at.desc())
            .all()
        )
        if not matches:
            return None, None
        for doc in matches:
            if doc.signed_hash == lookup_hash:
                return doc, "signed"
        for doc in matches:
            if DocumentStatus(doc.status) is DocumentStatus.COMPLETED:
                return doc, "original"
        return matches[0], "original"

    def verify(
        self,
        content: bytes | None = None,
        document_hash: str | None = None,
        claimed: list[ClaimedSignature] | None = None,
        verifier_id: str | None = None,
    ) -> VerificationResult:
        if content is not None:
            if not content:
                raise ValidationError("File is empty")
            lookup_hash = sha256_bytes(content)
        elif document_hash:
            lookup_hash = normalize_hash(document_hash)
            if lookup_hash is None:
                raise ValidationError("Not a SHA-256 hex digest", details={"hash": document_hash})
        else:
            raise ValidationError("Provide a file or a document hash")

        now = utc_now()
        doc, matched_on = self._find_document(lookup_hash)
        if doc is None:
            logger.info("Verification of %s: no matching document", lookup_hash[:12])
            result = VerificationResult(
                found=False,
                is_valid=False,
                lookup_hash=lookup_hash,
                problems=["No document matches this hash"],
                verified_at=now,
            )
            self._record(result, None, verifier_id)
            return result

        request = doc.signing_request
        problems: list[str] = []
        signers: list[SignerVerification] = []
        claims = {normalize_signer_id(c.signer_id): c.signature.strip() for c in (claimed or [])}

        if request is None:
            problems.append("Document has no signing request")
        else:
            if RequestStatus(request.status) is not RequestStatus.COMPLETED:
                problems.append(f"Signing request is {request.status}")
            for signer in request.signers:
                signed = SignerStatus(signer.status) is SignerStatus.SIGNED
                has_blob = bool(signer.signature and signer.signature.strip())
                algorithm, crypto = (None, NOT_APPLICABLE)
                if signed and has_blob:
                    algorithm, crypto = _crypto_check(signer, doc.original_hash)
                if not signed:
                    problems.append(f"{signer.signer_id} has not signed ({signer.status})")
                elif not has_blob:
                    problems.append(f"{signer.signer_id} has no recorded signature")
                if crypto == INVALID:
                    problems.append(f"{signer.signer_id}'s {algorithm} signature does not verify")

                claim_matched = None
                if claims and signer.signer_id in claims:
                    claim_matched = has_blob and claims[signer.signer_id] == signer.signature
                    if not claim_matched:
                        problems.append(f"Claimed signature for {signer.signer_id} does not match the record")

                signers.append(SignerVerification(
                    order=signer.signing_order,
                    signer_id=signer.signer_id,
                    status=signer.status,
                    signed_at=signer.signed_at,
                    algorithm=algorithm,
                    signature_digest=sha256_text(signer.signature) if has_blob else None,
                    crypto_check=crypto,
                    claim_matched=claim_matched,
                ))

            recorded = {s.signer_id for s in request.signers}
            for claimed_id in claims:
                if claimed_id not in recorded:
                    problems.append(f"{claimed_id} is not a signer on this document")

        hash_chain_intact = None
        if DocumentStatus(doc.status) is DocumentStatus.COMPLETED:
            hash_chain_intact = bool(doc.signed_hash) and doc.signed_hash != doc.original_hash
            if not hash_chain_intact:
                problems.append("Signed file hash is missing or equals the original")

        result = VerificationResult(
            found=True,
            is_valid=request is not None and not problems,
            lookup_hash=lookup_hash,
            matched_on=matched_on,
            document_id=doc.id,
            file_name=doc.file_name,
            document_status=doc.status,
            original_hash=doc.original_hash,
            signed_hash=doc.signed_hash,
            hash_chain_intact=hash_chain_intact,
            request_id=request.id if request else None,
            request_status=request.status if request else None,
            signing_type=request.signing_type if request else None,
            required_signers=request.required_signers if request else 0,
            signed_count=sum(1 for s in signers if s.status == SignerStatus.SIGNED.value),
            signers=signers,
            problems=problems,
            verified_at=now,
        )
        logger.info(
            "Verification of document %s via %s hash: %s",
            doc.id, matched_on, "valid" if result.is_valid else "invalid",
        )
        self._record(result, doc, verifier_id)
        return result

    def _record(self, result: VerificationResult, doc: Document | None, verifier_id: str | None) -> None:
        attempt = VerificationAttempt(
            id=str(uuid.uuid4()),
            document_id=doc.id if doc else None,
            lookup_hash=result.lookup_hash,
            verifier_id=verifier_id,
            is_valid=result.is_valid,
            details_json=json.dumps({"matched_on": result.matched_on, "problems": result.problems}),
            verified_at=result.verified_at,
        )
        try:
            with atomic(self.db, "Recording verification"):
                self.db.add(attempt)
                if doc is not None:
                    self.audit.append(
                        VerificationAttemptedDetails(
                            lookup_hash=result.lookup_hash,
                            matched_on=result.matched_on,
                            is_valid=result.is_valid,
                        ),
                        actor_id=verifier_id or SYSTEM_ACTOR,
                        document_id=doc.id,
                        request_id=result.request_id,
                    )
        except StorageError as exc:
            # The verdict stands even if the attempt could not be logged.
            logger.warning("Could not record verification of %s: %s", result.lookup_hash[:12], exc.message)
