"""
Timezone utilities for the synchronizer.

All times are stored as naive UTC datetimes (SQLite drops tzinfo). Values
coming from providers are normalized here before they reach the models.
"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_epoch_ms(value: Optional[int]) -> Optional[datetime]:
    """
    Convert a millisecond epoch timestamp (Blizzard ``last_login_timestamp``)
    to a naive UTC datetime. Zero and missing values mean "unknown".
    """
    if not value:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)
