import pytest

from multisign.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from multisign.models.status import SigningType
from multisign.services.audit_service import AuditLog
from multisign.services.queue_service import SignerQueueController

from conftest import FailingNotifier


class TestSequentialSigning:
    def _sign(self, queue, request, signer_id):
        return queue.submit_signature(request.id, signer_id, f"sig-{signer_id}")

    def test_out_of_turn_signer_rejected(self, queue, create_request):
        request = create_request(["alice", "bob", "carol"])

        with pytest.raises(AuthorizationError) as exc:
            self._sign(queue, request, "bob")

        assert "alice" in exc.value.message
        assert exc.value.details["current_signer_id"] == "alice"
        assert queue.current_signer(request.id).signer_id == "alice"
        assert all(s.status == "pending" for s in request.signers)

    def test_signers_advance_in_order(self, db, queue, create_request):
        request = create_request(["alice", "bob", "carol"])

        outcome = self._sign(queue, request, "alice")
        assert not outcome.completed
        assert outcome.next_signer.signer_id == "bob"
        assert outcome.request.current_signer_index == 1
        assert outcome.request.current_signers == 1
        db.refresh(outcome.request.document)
        assert outcome.request.document.status == "accepted"
        assert queue.current_signer(request.id).signer_id == "bob"

        self._sign(queue, request, "bob")
        outcome = self._sign(queue, request, "carol")

        assert outcome.completed
        assert outcome.finalized
        db.refresh(request)
        assert request.status == "completed"
        assert request.current_signers == request.required_signers == 3
        assert request.completed_at is not None
        assert queue.current_signer(request.id) is None

    def test_signed_at_follows_signing_order(self, queue, create_request):
        request = create_request(["alice", "bob", "carol"])
        for signer in ["alice", "bob", "carol"]:
            self._sign(queue, request, signer)

        signed = sorted(request.signers, key=lambda s: s.signing_order)
        timestamps = [s.signed_at for s in signed]
        assert timestamps == sorted(timestamps)

    def test_signer_ids_are_case_insensitive(self, queue, create_request):
        request = create_request(["alice", "bob"])
        outcome = queue.submit_signature(request.id, "  ALICE ", "sig")
        assert outcome.signer.signer_id == "alice"

    def test_same_signer_cannot_sign_twice(self, queue, create_request):
        request = create_request(["alice", "bob"])
        self._sign(queue, request, "alice")
        with pytest.raises(AuthorizationError):
            self._sign(queue, request, "alice")

    def test_empty_signature_rejected(self, queue, create_request):
        request = create_request(["alice"])
        with pytest.raises(ValidationError):
            queue.submit_signature(request.id, "alice", "   ")

    def test_metadata_for_other_document_rejected(self, queue, create_request):
        request = create_request(["alice"])
        with pytest.raises(ValidationError):
            queue.submit_signature(request.id, "alice", "sig", {"document_hash": "0" * 64})

    def test_unknown_algorithm_rejected(self, queue, create_request):
        request = create_request(["alice"])
        with pytest.raises(ValidationError):
            queue.submit_signature(request.id, "alice", "sig", {"algorithm": "rot13"})

    def test_completed_request_accepts_no_signatures(self, queue, create_request):
        request = create_request(["alice"])
        self._sign(queue, request, "alice")
        with pytest.raises(ConflictError):
            self._sign(queue, request, "alice")

    def test_unknown_request(self, queue):
        with pytest.raises(NotFoundError):
            queue.submit_signature("missing", "alice", "sig")

    def test_ordering_gap_detected_at_advance(self, db, queue, create_request):
        request = create_request(["alice", "bob"])
        # Corrupt the stored order behind the registry's back.
        bob = next(s for s in request.signers if s.signer_id == "bob")
        bob.signing_order = 5
        db.commit()

        with pytest.raises(ConflictError, match="gap"):
            self._sign(queue, request, "alice")

        db.refresh(request)
        assert request.current_signer_index == 0
        assert request.current_signers == 0
        alice = next(s for s in request.signers if s.signer_id == "alice")
        db.refresh(alice)
        assert alice.status == "pending"

    def test_audit_trail_records_each_transition(self, db, queue, create_request):
        request = create_request(["alice", "bob"])
        self._sign(queue, request, "alice")
        self._sign(queue, request, "bob")

        actions = [e.action for e in AuditLog(db).for_request(request.id)]
        assert actions == [
            "request_created",
            "signature_recorded",
            "signer_advanced",
            "signature_recorded",
            "request_completed",
            "finalize_attempted",
            "finalize_succeeded",
        ]


class TestNotifications:
    def test_next_signer_and_completion_notified(self, queue, notifier, create_request):
        request = create_request(["alice", "bob"], owner="owner")
        queue.submit_signature(request.id, "alice", "sig-a")
        assert [n.recipient_id for n in notifier.sent] == ["bob"]

        queue.submit_signature(request.id, "bob", "sig-b")
        completed = [n.recipient_id for n in notifier.sent[1:]]
        assert completed == ["owner", "alice", "bob"]

    def test_notifier_failure_does_not_roll_back(self, db, storage, renderer, create_request):
        queue = SignerQueueController(db, storage, renderer, FailingNotifier())
        request = create_request(["alice", "bob"])

        outcome = queue.submit_signature(request.id, "alice", "sig-a")

        assert outcome.next_signer.signer_id == "bob"
        db.refresh(request)
        assert request.current_signer_index == 1


class TestDecline:
    def test_current_signer_can_decline(self, db, queue, notifier, create_request):
        request = create_request(["alice", "bob"], owner="owner")

        declined = queue.decline(request.id, "alice", "Wrong amount")

        assert declined.status == "rejected"
        alice = next(s for s in declined.signers if s.signer_id == "alice")
        db.refresh(alice)
        assert alice.status == "rejected"
        assert alice.decline_reason == "Wrong amount"
        assert notifier.sent[-1].recipient_id == "owner"
        assert AuditLog(db).for_request(request.id)[-1].action == "signer_declined"

    def test_out_of_turn_decline_rejected(self, queue, create_request):
        request = create_request(["alice", "bob"])
        with pytest.raises(AuthorizationError):
            queue.decline(request.id, "bob")

    def test_rejected_request_accepts_no_signatures(self, queue, create_request):
        request = create_request(["alice", "bob"])
        queue.decline(request.id, "alice")
        with pytest.raises(ConflictError):
            queue.submit_signature(request.id, "alice", "sig")


class TestParallelSigning:
    def test_any_pending_signer_may_sign(self, db, queue, create_request):
        request = create_request(["alice", "bob", "carol"], signing_type=SigningType.PARALLEL)
        assert queue.current_signer(request.id) is None
        assert [s.signer_id for s in queue.pending_signers(request.id)] == ["alice", "bob", "carol"]

        queue.submit_signature(request.id, "carol", "sig-c")
        outcome = queue.submit_signature(request.id, "alice", "sig-a")
        assert not outcome.completed
        assert outcome.request.current_signers == 2
        assert outcome.request.current_signer_index == 0
        assert [s.signer_id for s in queue.pending_signers(request.id)] == ["bob"]

        outcome = queue.submit_signature(request.id, "bob", "sig-b")
        assert outcome.completed
        assert outcome.finalized

    def test_outsider_cannot_sign(self, queue, create_request):
        request = create_request(["alice", "bob"], signing_type=SigningType.PARALLEL)
        with pytest.raises(AuthorizationError):
            queue.submit_signature(request.id, "mallory", "sig")
