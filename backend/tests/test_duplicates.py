from multisign.services.duplicate_service import DuplicateDetector
from multisign.services.queue_service import SignerQueueController
from multisign.utils.hashing import sha256_bytes

from conftest import RecordingNotifier


class TestDuplicateDetector:
    def test_unique_document(self, db):
        result = DuplicateDetector(db).check("a" * 64, "owner@example.com")
        assert result.kind == "no_duplicate"
        assert result.action == "allow"
        assert result.existing_document is None

    def test_in_progress_duplicate_is_confirmable(self, db, create_request):
        request = create_request(["alice"])

        result = DuplicateDetector(db).check(request.document.original_hash, "owner@example.com")

        assert result.is_duplicate
        assert result.action == "confirmable"
        assert result.existing_document.id == request.document_id
        assert result.existing_document.same_owner

    def test_other_owner_sees_different_message(self, db, create_request):
        request = create_request(["alice"])
        mine = DuplicateDetector(db).check(request.document.original_hash, "owner@example.com")
        theirs = DuplicateDetector(db).check(request.document.original_hash, "someone-else")
        assert mine.message != theirs.message
        assert not theirs.existing_document.same_owner

    def test_owner_match_ignores_case(self, db, create_request):
        request = create_request(["alice"])
        mine = DuplicateDetector(db).check(request.document.original_hash, "owner@example.com")

        result = DuplicateDetector(db).check(request.document.original_hash, " OWNER@Example.com")

        assert result.existing_document.same_owner
        assert result.message == mine.message

    def test_completed_duplicate_is_blocking(self, db, storage, renderer, create_request):
        request = create_request(["alice"])
        SignerQueueController(db, storage, renderer, RecordingNotifier()).submit_signature(
            request.id, "alice", "sig"
        )
        db.refresh(request.document)

        result = DuplicateDetector(db).check(request.document.original_hash, "anyone")

        assert result.is_blocking
        assert request.document_id in result.message

    def test_signed_output_is_also_matched(self, db, storage, renderer, create_request):
        request = create_request(["alice"])
        SignerQueueController(db, storage, renderer, RecordingNotifier()).submit_signature(
            request.id, "alice", "sig"
        )
        db.refresh(request.document)
        signed_hash = sha256_bytes(storage.get(request.document.signed_ref))

        result = DuplicateDetector(db).check(signed_hash, "anyone")

        assert result.is_blocking
        assert result.existing_document.id == request.document_id
