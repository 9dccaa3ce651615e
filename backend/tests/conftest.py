import pytest
from fastapi.testclient import TestClient
from fpdf import FPDF

from multisign.config import Settings
from multisign.database import get_engine, init_db, make_session_factory
from multisign.errors import RenderError
from multisign.main import create_app
from multisign.schemas.signing import SignerInput
from multisign.services.evidence_service import PdfEvidenceRenderer
from multisign.services.queue_service import SignerQueueController
from multisign.services.registry_service import NewDocument, SigningRequestRegistry
from multisign.services.storage_service import LocalObjectStorage
from multisign.models.status import SigningType
from multisign.utils.hashing import sha256_bytes


def make_pdf(text: str = "Contract") -> bytes:
    pdf = FPDF()
    pdf.add_page()
    pdf.set_font("Helvetica", "", 12)
    pdf.cell(0, 10, text)
    return bytes(pdf.output())


class FailingRenderer:
    def __init__(self):
        self.calls = 0

    def embed(self, original, signatures):
        self.calls += 1
        raise RenderError("Renderer offline")


class SwitchableRenderer:
    """Fails until ``healthy`` is set, then delegates to the PDF renderer."""

    def __init__(self):
        self.healthy = False
        self.inner = PdfEvidenceRenderer()

    def embed(self, original, signatures):
        if not self.healthy:
            raise RenderError("Renderer offline")
        return self.inner.embed(original, signatures)


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send(self, notification):
        self.sent.append(notification)


class FailingNotifier:
    def send(self, notification):
        raise RuntimeError("mail server down")


@pytest.fixture
def settings(tmp_path):
    return Settings(data_dir=tmp_path / "MultiSign", sqlite_busy_timeout_seconds=2.0)


@pytest.fixture
def session_factory(settings):
    init_db(settings.db_path)
    engine = get_engine(settings.db_path, settings.sqlite_busy_timeout_seconds)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def storage(settings):
    return LocalObjectStorage(settings.storage_dir)


@pytest.fixture
def renderer():
    return PdfEvidenceRenderer()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def queue(db, storage, renderer, notifier):
    return SignerQueueController(db, storage, renderer, notifier)


@pytest.fixture
def create_request(db, storage):
    """Store a PDF and open a signing request for it."""

    def _create(signers, text="Contract", owner="owner@example.com", signing_type=SigningType.SEQUENTIAL):
        content = make_pdf(text)
        ref = storage.put(content, f"{text}.pdf")
        inputs = [s if isinstance(s, SignerInput) else SignerInput(signer_id=s) for s in signers]
        return SigningRequestRegistry(db).create(
            NewDocument(
                owner_id=owner,
                file_name=f"{text}.pdf",
                mime_type="application/pdf",
                file_size_bytes=len(content),
                stored_ref=ref,
                original_hash=sha256_bytes(content),
            ),
            inputs,
            signing_type,
        )

    return _create


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
