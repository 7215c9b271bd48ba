"""Timezone-aware UTC helpers.

SQLite hands back naive datetimes for ``DateTime(timezone=True)`` columns, so
anything compared against a freshly created timestamp goes through
``ensure_utc`` first.
"""

from datetime import date, datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_today() -> date:
    return utc_now().date()


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
