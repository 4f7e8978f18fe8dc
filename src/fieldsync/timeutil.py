"""Timezone-aware UTC timestamps; every datetime column stores and returns these."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
