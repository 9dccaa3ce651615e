import logging
import sqlite3
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from multisign.config import Settings
from multisign.database import get_engine, init_db, make_session_factory
from multisign.errors import SigningError
from multisign.routers import documents, signing_requests, verify
from multisign.services.evidence_service import PdfEvidenceRenderer
from multisign.services.notification_service import LoggingNotifier
from multisign.services.storage_service import LocalObjectStorage
from multisign.utils.filesystem import ensure_data_dirs

logger = logging.getLogger("multisign")

VERSION = "0.1.0"


def _integrity_check(db_path) -> None:
    conn = sqlite3.connect(str(db_path))
    try:
        result = conn.execute("PRAGMA integrity_check").fetchone()
    finally:
        conn.close()
    if result and result[0] == "ok":
        logger.info("Database integrity check passed.")
    else:
        logger.error("DATABASE INTEGRITY CHECK FAILED: %s", result)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        _integrity_check(app.state.settings.db_path)
    except sqlite3.Error as exc:
        logger.error("Could not run startup integrity check: %s", exc)
    yield
    app.state.engine.dispose()


async def signing_error_handler(request: Request, exc: SigningError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s rejected (%s): %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.kind,
            "message": exc.message,
            "details": exc.details,
            "retryable": exc.retryable,
        },
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings()
    logging.basicConfig(level=settings.log_level.upper())

    ensure_data_dirs(settings.data_dir)
    init_db(settings.db_path)
    engine = get_engine(settings.db_path, settings.sqlite_busy_timeout_seconds)

    app = FastAPI(
        title="MultiSign",
        description="Sequential multi-party document signing",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)
    app.state.storage = LocalObjectStorage(settings.storage_dir)
    app.state.renderer = PdfEvidenceRenderer(settings.evidence_title)
    app.state.notifier = LoggingNotifier()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://127.0.0.1:5173",
            "http://localhost:5173",
        ],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(SigningError, signing_error_handler)

    app.include_router(signing_requests.router, prefix=settings.api_prefix)
    app.include_router(documents.router, prefix=settings.api_prefix)
    app.include_router(verify.router, prefix=settings.api_prefix)

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": VERSION}

    return app
