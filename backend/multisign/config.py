from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    data_dir: Path = Path.home() / "MultiSign"
    # Uploads are read fully into memory for hashing, so cap them.
    max_upload_bytes: int = 10 * 1024 * 1024  # 10 MiB
    max_signers: int = 50
    sqlite_busy_timeout_seconds: float = 5.0
    evidence_title: str = "Signature Evidence"
    log_level: str = "INFO"
    api_prefix: str = "/api/v1"
    host: str = "127.0.0.1"
    port: int = 8000

    @property
    def db_path(self) -> Path:
        return self.data_dir / "db.sqlite"

    @property
    def storage_dir(self) -> Path:
        return self.data_dir / "objects"

    model_config = {"env_prefix": "MULTISIGN_"}
