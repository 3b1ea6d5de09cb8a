from __future__ import annotations
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how rows are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def ms_to_datetime(ms: float) -> datetime:
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc).replace(tzinfo=None)


def batched(items: list, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]
