import hashlib
import re

_SHA256_HEX = re.compile(r"^[0-9a-f]{64}$")


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_text(value: str) -> str:
    return sha256_bytes(value.encode("utf-8"))


def normalize_hash(value: str) -> str | None:
    """Lower-case a hex SHA-256 digest, or return None if it is not one."""
    candidate = value.strip().lower()
    return candidate if _SHA256_HEX.match(candidate) else None
