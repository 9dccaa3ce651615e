import sqlite3
from pathlib import Path

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker


class Base(DeclarativeBase):
    pass


def _set_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(db_path: Path, busy_timeout_seconds: float = 5.0):
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": busy_timeout_seconds},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def make_session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


SCHEMA_SQL = """\
-- ============================================================
-- DOCUMENTS
-- ============================================================
CREATE TABLE IF NOT EXISTS documents (
    id              TEXT PRIMARY KEY,
    owner_id        TEXT NOT NULL,
    file_name       TEXT NOT NULL,
    mime_type       TEXT,
    file_size_bytes INTEGER NOT NULL,
    stored_ref      TEXT NOT NULL,
    signed_ref      TEXT,
    original_hash   TEXT NOT NULL,
    signed_hash     TEXT,
    status          TEXT NOT NULL DEFAULT 'uploaded'
                    CHECK(status IN ('uploaded','accepted','signed','completed')),
    metadata_json   TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL,
    CHECK(signed_hash IS NULL OR signed_hash <> original_hash)
);

CREATE INDEX IF NOT EXISTS idx_documents_owner ON documents(owner_id);
CREATE INDEX IF NOT EXISTS idx_documents_original_hash ON documents(original_hash);
CREATE INDEX IF NOT EXISTS idx_documents_signed_hash ON documents(signed_hash);

-- ============================================================
-- SIGNING REQUESTS
-- ============================================================
CREATE TABLE IF NOT EXISTS signing_requests (
    id                   TEXT PRIMARY KEY,
    document_id          TEXT NOT NULL UNIQUE REFERENCES documents(id) ON DELETE CASCADE,
    initiator_id         TEXT NOT NULL,
    description          TEXT,
    signing_type         TEXT NOT NULL DEFAULT 'sequential'
                         CHECK(signing_type IN ('sequential','parallel')),
    status               TEXT NOT NULL DEFAULT 'pending'
                         CHECK(status IN ('pending','completed','rejected')),
    current_signer_index INTEGER NOT NULL DEFAULT 0,
    required_signers     INTEGER NOT NULL CHECK(required_signers > 0),
    current_signers      INTEGER NOT NULL DEFAULT 0,
    created_at           TEXT NOT NULL,
    completed_at         TEXT,
    CHECK(current_signers <= required_signers)
);

CREATE INDEX IF NOT EXISTS idx_signing_requests_initiator ON signing_requests(initiator_id);
CREATE INDEX IF NOT EXISTS idx_signing_requests_status ON signing_requests(status);

-- ============================================================
-- SIGNERS
-- ============================================================
CREATE TABLE IF NOT EXISTS signers (
    id                      TEXT PRIMARY KEY,
    request_id              TEXT NOT NULL REFERENCES signing_requests(id) ON DELETE CASCADE,
    signer_id               TEXT NOT NULL,
    signing_order           INTEGER NOT NULL CHECK(signing_order >= 0),
    status                  TEXT NOT NULL DEFAULT 'pending'
                            CHECK(status IN ('pending','signed','rejected')),
    signature               TEXT,
    signed_at               TEXT,
    signature_metadata_json TEXT,
    decline_reason          TEXT,
    UNIQUE(request_id, signing_order),
    UNIQUE(request_id, signer_id)
);

CREATE INDEX IF NOT EXISTS idx_signers_signer ON signers(signer_id);
CREATE INDEX IF NOT EXISTS idx_signers_request_status ON signers(request_id, status);

-- ============================================================
-- AUDIT (append-only)
-- ============================================================
CREATE TABLE IF NOT EXISTS audit_entries (
    seq          INTEGER PRIMARY KEY AUTOINCREMENT,
    id           TEXT NOT NULL UNIQUE,
    document_id  TEXT,
    request_id   TEXT,
    actor_id     TEXT NOT NULL,
    action       TEXT NOT NULL,
    details_json TEXT NOT NULL,
    occurred_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_audit_request ON audit_entries(request_id);
CREATE INDEX IF NOT EXISTS idx_audit_document ON audit_entries(document_id);

-- ============================================================
-- VERIFICATION ATTEMPTS
-- ============================================================
CREATE TABLE IF NOT EXISTS verification_attempts (
    id           TEXT PRIMARY KEY,
    document_id  TEXT REFERENCES documents(id) ON DELETE SET NULL,
    lookup_hash  TEXT NOT NULL,
    verifier_id  TEXT,
    is_valid     INTEGER NOT NULL,
    details_json TEXT,
    verified_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_verification_document ON verification_attempts(document_id);
"""

AUDIT_TRIGGERS_SQL = """\
CREATE TRIGGER IF NOT EXISTS audit_entries_no_update BEFORE UPDATE ON audit_entries BEGIN
    SELECT RAISE(ABORT, 'audit_entries is append-only');
END;

CREATE TRIGGER IF NOT EXISTS audit_entries_no_delete BEFORE DELETE ON audit_entries BEGIN
    SELECT RAISE(ABORT, 'audit_entries is append-only');
END;
"""


MIGRATIONS: list[str] = []


def init_db(db_path: Path):
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.executescript(SCHEMA_SQL)
    conn.executescript(AUDIT_TRIGGERS_SQL)
    # ALTER TABLE fails if the column already exists
    for migration in MIGRATIONS:
        try:
            conn.execute(migration)
            conn.commit()
        except sqlite3.OperationalError:
            pass  # already applied
    conn.close()
