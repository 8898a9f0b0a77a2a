from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional

__all__ = ["utc_now", "utc_iso"]


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def utc_iso(ts: Optional[datetime] = None) -> str:
    """Return ISO8601 with millisecond precision and a trailing Z."""
    d = (ts or utc_now()).astimezone(timezone.utc)
    return d.isoformat(timespec="milliseconds").replace("+00:00", "Z")
