import json
import logging

from multisign.errors import StorageError
from multisign.services.evidence_service import PdfEvidenceRenderer
from multisign.services.registry_service import SigningRequestRegistry
from multisign.utils.hashing import sha256_bytes

from conftest import FailingRenderer, make_pdf

PREFIX = "/api/v1/signing-requests"


class TestSigningRequestsApi:
    def _auth(self, actor):
        return {"X-Actor-Id": actor}

    def _create(self, client, content=None, signers=("alice", "bob", "carol"), owner="owner", **data):
        content = make_pdf("Agreement") if content is None else content
        return client.post(
            PREFIX,
            files={"file": ("agreement.pdf", content, "application/pdf")},
            data={"signers": json.dumps(list(signers)), **data},
            headers=self._auth(owner),
        )

    def _sign(self, client, request_id, actor, signature=None):
        return client.post(
            f"{PREFIX}/{request_id}/signatures",
            json={"signature": signature or f"sig-{actor}"},
            headers=self._auth(actor),
        )

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "ok"

    def test_create_request(self, client):
        content = make_pdf("Agreement")
        r = self._create(client, content=content, description="Office lease")
        assert r.status_code == 201
        data = r.json()
        assert data["status"] == "pending"
        assert data["required_signers"] == 3
        assert [s["signer_id"] for s in data["signers"]] == ["alice", "bob", "carol"]
        assert data["document"]["original_hash"] == sha256_bytes(content)
        assert data["document"]["status"] == "uploaded"
        assert data["document"]["description"] == "Office lease"

    def test_create_with_explicit_orders(self, client):
        signers = json.dumps([{"signer_id": "bob", "order": 20}, {"signer_id": "alice", "order": 10}])
        r = client.post(
            PREFIX,
            files={"file": ("a.pdf", make_pdf("Ordered"), "application/pdf")},
            data={"signers": signers},
            headers=self._auth("owner"),
        )
        assert r.status_code == 201
        assert [(s["signer_id"], s["order"]) for s in r.json()["signers"]] == [("alice", 0), ("bob", 1)]

    def test_missing_actor_header(self, client):
        r = client.post(
            PREFIX,
            files={"file": ("a.pdf", make_pdf(), "application/pdf")},
            data={"signers": '["alice"]'},
        )
        assert r.status_code == 422

    def test_invalid_signers(self, client):
        r = self._create(client, signers=())
        assert r.status_code == 400
        assert r.json()["error"] == "validation_error"

        r = client.post(
            PREFIX,
            files={"file": ("a.pdf", make_pdf(), "application/pdf")},
            data={"signers": "not json"},
            headers=self._auth("owner"),
        )
        assert r.status_code == 400

    def test_empty_file_rejected(self, client):
        r = self._create(client, content=b"")
        assert r.status_code == 400

    def test_non_pdf_upload_rejected(self, client, app):
        r = client.post(
            PREFIX,
            files={"file": ("notes.txt", b"just some notes", "text/plain")},
            data={"signers": '["alice"]'},
            headers=self._auth("owner"),
        )
        assert r.status_code == 400
        assert r.json()["error"] == "validation_error"
        assert not any(app.state.storage.root.iterdir())

    def test_failed_create_logs_unreferenced_upload(self, client, monkeypatch, caplog):
        def fail(*args, **kwargs):
            raise StorageError("database is locked")

        monkeypatch.setattr(SigningRequestRegistry, "create", fail)
        with caplog.at_level(logging.WARNING, logger="multisign.routers.signing_requests"):
            r = self._create(client)

        assert r.status_code == 503
        assert r.json()["retryable"] is True
        assert "left unreferenced" in caplog.text

    def test_actor_case_does_not_hide_own_requests(self, client):
        request_id = self._create(client, owner="Owner@Example.com").json()["id"]

        r = client.get(PREFIX, headers=self._auth("owner@example.com"))
        assert [item["id"] for item in r.json()] == [request_id]

    def test_oversized_file_rejected(self, client, app):
        app.state.settings.max_upload_bytes = 10
        r = self._create(client)
        assert r.status_code == 413

    def test_out_of_turn_signature(self, client):
        request_id = self._create(client).json()["id"]

        r = self._sign(client, request_id, "bob")

        assert r.status_code == 403
        body = r.json()
        assert body["error"] == "authorization_error"
        assert "alice" in body["message"]
        assert body["retryable"] is False

    def test_full_sequential_flow(self, client):
        request_id = self._create(client).json()["id"]

        r = client.get(f"{PREFIX}/{request_id}/current-signer", headers=self._auth("owner"))
        assert r.json()["current_signer"]["signer_id"] == "alice"

        r = self._sign(client, request_id, "alice")
        assert r.status_code == 200
        assert r.json()["next_signer"]["signer_id"] == "bob"
        assert not r.json()["is_completed"]

        r = client.get(f"{PREFIX}/{request_id}/status", headers=self._auth("owner"))
        status = r.json()
        assert status["progress"] == {"completed": 1, "total": 3, "percentage": 33}
        assert status["current_signer"]["signer_id"] == "bob"
        assert [s["signer_id"] for s in status["next_signers"]] == ["carol"]
        assert [t["is_current"] for t in status["timeline"]] == [False, True, False]
        assert status["document_status"] == "accepted"

        self._sign(client, request_id, "bob")
        r = self._sign(client, request_id, "carol")
        data = r.json()
        assert data["is_completed"]
        assert data["finalized"]
        assert data["status"] == "completed"

        r = client.get(f"{PREFIX}/{request_id}", headers=self._auth("owner"))
        doc = r.json()["document"]
        assert doc["status"] == "completed"

        r = client.get(
            f"/api/v1/documents/{doc['id']}/download",
            params={"variant": "signed"},
            headers=self._auth("owner"),
        )
        assert r.status_code == 200
        assert sha256_bytes(r.content) == doc["signed_hash"]

        r = client.get(f"{PREFIX}/{request_id}/audit", headers=self._auth("owner"))
        actions = [e["action"] for e in r.json()]
        assert actions[0] == "request_created"
        assert actions[-1] == "finalize_succeeded"
        assert r.json()[0]["details"]["kind"] == "request_created"

    def test_list_my_requests(self, client):
        request_id = self._create(client).json()["id"]
        self._create(client, content=make_pdf("Other"), signers=("dave",), owner="erin")

        r = client.get(PREFIX, headers=self._auth("bob"))
        assert [item["id"] for item in r.json()] == [request_id]

    def test_decline(self, client):
        request_id = self._create(client).json()["id"]

        r = client.post(f"{PREFIX}/{request_id}/decline", json={"reason": "Not my deal"}, headers=self._auth("alice"))

        assert r.status_code == 200
        assert r.json()["status"] == "rejected"
        assert r.json()["signers"][0]["decline_reason"] == "Not my deal"
        assert self._sign(client, request_id, "alice").status_code == 409

    def test_render_failure_then_retry(self, client, app):
        app.state.renderer = FailingRenderer()
        request_id = self._create(client, signers=("alice",)).json()["id"]

        r = self._sign(client, request_id, "alice")
        assert r.status_code == 200
        assert r.json()["is_completed"]
        assert not r.json()["finalized"]
        assert r.json()["finalize_error"]

        r = client.post(f"{PREFIX}/{request_id}/finalize", headers=self._auth("owner"))
        assert r.status_code == 502
        assert r.json()["retryable"] is True

        app.state.renderer = PdfEvidenceRenderer()
        r = client.post(f"{PREFIX}/{request_id}/finalize", headers=self._auth("owner"))
        assert r.status_code == 200
        assert r.json()["document_status"] == "completed"
        assert not r.json()["already_finalized"]

        r = client.post(f"{PREFIX}/{request_id}/finalize", headers=self._auth("owner"))
        assert r.json()["already_finalized"]

    def test_finalize_stuck(self, client, app):
        app.state.renderer = FailingRenderer()
        request_id = self._create(client, signers=("alice",)).json()["id"]
        self._sign(client, request_id, "alice")

        r = client.post(f"{PREFIX}/finalize-stuck", headers=self._auth("operator"))
        assert r.status_code == 200
        assert r.json() == [{"request_id": request_id, "finalized": False, "error": "Renderer offline"}]

    def test_unknown_request(self, client):
        r = client.get(f"{PREFIX}/missing", headers=self._auth("owner"))
        assert r.status_code == 404
        assert r.json()["error"] == "not_found"


class TestDuplicateUploadApi:
    def _upload(self, client, content, owner="owner", force=None):
        data = {"signers": '["alice"]'}
        if force is not None:
            data["force"] = str(force).lower()
        return client.post(
            PREFIX,
            files={"file": ("contract.pdf", content, "application/pdf")},
            data=data,
            headers={"X-Actor-Id": owner},
        )

    def test_confirmable_duplicate_needs_force(self, client):
        content = make_pdf("Duplicate me")
        first = self._upload(client, content).json()

        r = self._upload(client, content)
        assert r.status_code == 409
        body = r.json()
        assert body["error"] == "duplicate_confirmation_required"
        assert body["details"]["existing_document"]["id"] == first["document_id"]

        r = self._upload(client, content, force=True)
        assert r.status_code == 201

    def test_completed_duplicate_is_blocked(self, client):
        content = make_pdf("Blocked")
        request_id = self._upload(client, content).json()["id"]
        client.post(
            f"{PREFIX}/{request_id}/signatures",
            json={"signature": "sig"},
            headers={"X-Actor-Id": "alice"},
        )

        r = self._upload(client, content, owner="someone-else", force=True)
        assert r.status_code == 409
        assert r.json()["error"] == "duplicate_document"

    def test_duplicate_check_endpoint(self, client):
        content = make_pdf("Check me")
        self._upload(client, content)

        r = client.post(
            "/api/v1/documents/duplicate-check",
            json={"hash": sha256_bytes(content)},
            headers={"X-Actor-Id": "owner"},
        )
        assert r.status_code == 200
        assert r.json()["action"] == "confirmable"

        r = client.post(
            "/api/v1/documents/duplicate-check",
            json={"hash": "zz"},
            headers={"X-Actor-Id": "owner"},
        )
        assert r.status_code == 400


class TestVerifyApi:
    def test_verify_signed_file(self, client):
        r = client.post(
            PREFIX,
            files={"file": ("a.pdf", make_pdf("Verify"), "application/pdf")},
            data={"signers": '["alice"]'},
            headers={"X-Actor-Id": "owner"},
        )
        request = r.json()
        client.post(
            f"{PREFIX}/{request['id']}/signatures",
            json={"signature": "sig"},
            headers={"X-Actor-Id": "alice"},
        )
        signed = client.get(
            f"/api/v1/documents/{request['document_id']}/download",
            params={"variant": "signed"},
            headers={"X-Actor-Id": "owner"},
        ).content

        r = client.post(
            "/api/v1/verify",
            files={"file": ("signed.pdf", signed, "application/pdf")},
            data={"claimed_signatures": json.dumps([{"signer_id": "alice", "signature": "sig"}])},
        )
        assert r.status_code == 200
        assert r.json()["is_valid"]
        assert r.json()["matched_on"] == "signed"

    def test_verify_unknown_hash(self, client):
        r = client.get(f"/api/v1/verify/{'0' * 64}")
        assert r.status_code == 200
        assert r.json()["found"] is False
