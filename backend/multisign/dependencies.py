from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from multisign.config import Settings
from multisign.database import get_db
from multisign.services.evidence_service import EvidenceRenderer
from multisign.services.notification_service import Notifier
from multisign.services.queue_service import SignerQueueController
from multisign.services.storage_service import ObjectStorage


async def require_actor(x_actor_id: str = Header(...)) -> str:
    # Identity is established upstream; the header is trusted as-is.
    actor = x_actor_id.strip()
    if not actor:
        raise HTTPException(status_code=401, detail="Missing actor identity")
    return actor


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> ObjectStorage:
    return request.app.state.storage


def get_renderer(request: Request) -> EvidenceRenderer:
    return request.app.state.renderer


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_queue(
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    renderer: EvidenceRenderer = Depends(get_renderer),
    notifier: Notifier = Depends(get_notifier),
) -> SignerQueueController:
    return SignerQueueController(db, storage, renderer, notifier)
