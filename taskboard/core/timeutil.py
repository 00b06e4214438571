"""
UTC timestamp helpers.

All timestamps are stored and compared as timezone-aware UTC. SQLite hands
``DateTime(timezone=True)`` columns back as naive values, so anything read
from the database goes through ``ensure_utc`` before it is compared.
"""

from __future__ import annotations

import datetime
from typing import Optional


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def ensure_utc(dt: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=datetime.timezone.utc)
    return dt.astimezone(datetime.timezone.utc)
