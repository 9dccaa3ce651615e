from datetime import datetime, timezone


def utc_now() -> str:
    # Microseconds keep signed_at ordering meaningful for fast successive signers.
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
