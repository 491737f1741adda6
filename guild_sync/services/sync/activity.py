"""Activity classification from a member's last-seen timestamp."""
from datetime import datetime, timedelta
from typing import Optional

from guild_sync.services.sync.types import ActivityTier


def classify(
    last_seen: Optional[datetime],
    now: datetime,
    active_window_days: int
) -> ActivityTier:
    """
    Map a last-seen timestamp to an activity tier.

    Args:
        last_seen: Last login time, or None when the provider has no record
        now: Reference time (same timezone convention as last_seen)
        active_window_days: Members seen within this many days are active

    Returns:
        UNKNOWN if last_seen is None, ACTIVE if now - last_seen is within the
        window (inclusive), INACTIVE otherwise
    """
    if last_seen is None:
        return ActivityTier.UNKNOWN

    if now - last_seen <= timedelta(days=active_window_days):
        return ActivityTier.ACTIVE

    return ActivityTier.INACTIVE
