import logging
import os
import uuid
from pathlib import Path
from typing import Protocol

from multisign.errors import StorageError
from multisign.utils.filesystem import sanitize_filename
from multisign.utils.hashing import sha256_bytes

logger = logging.getLogger(__name__)


class ObjectStorage(Protocol):
    def put(self, data: bytes, name: str) -> str: ...

    def get(self, ref: str) -> bytes: ...


class LocalObjectStorage:
    """Write-once object store on the local filesystem.

    Objects are stored read-only; a ref is the object's file name under ``root``.
    """

    def __init__(self, root: Path):
        self.root = root

    def put(self, data: bytes, name: str) -> str:
        stored_name = f"{sha256_bytes(data)[:8]}_{uuid.uuid4().hex[:8]}_{sanitize_filename(name)}"
        path = self.root / stored_name
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            os.chmod(path, 0o444)
        except OSError as exc:
            logger.error("Could not store object %s: %s", stored_name, exc)
            raise StorageError("Could not store object", details={"name": name}) from exc
        return stored_name

    def get(self, ref: str) -> bytes:
        path = self._resolve(ref)
        try:
            return path.read_bytes()
        except OSError as exc:
            logger.error("Could not read object %s: %s", ref, exc)
            raise StorageError("Could not read object", details={"ref": ref}) from exc

    def _resolve(self, ref: str) -> Path:
        root = self.root.resolve()
        path = (root / ref).resolve()
        if path.parent != root:
            raise StorageError("Invalid object reference", details={"ref": ref})
        return path
