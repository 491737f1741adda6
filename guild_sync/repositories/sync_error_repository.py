"""Sync error repository (append-only, age-pruned)."""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, func
from sqlalchemy.orm import Session

from guild_sync.models import SyncError
from guild_sync.repositories.base import BaseRepository
from guild_sync.utils.timezone import utcnow


class SyncErrorRepository(BaseRepository[SyncError]):
    """Data access for sync_errors."""

    def __init__(self, db: Session):
        super().__init__(SyncError, db)

    def append_sync_error(self, record: Dict[str, Any]) -> SyncError:
        record = dict(record)
        record.setdefault("timestamp", utcnow())
        return self.create(**record)

    def list_recent_errors(self, limit: int = 100) -> List[SyncError]:
        return self.query().order_by(desc(SyncError.timestamp)).limit(limit).all()

    def get_error_stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Summarize stored errors.

        Returns:
            Dict with total, last_24h, by_type and by_service counts
        """
        now = now or utcnow()
        total = self.count()
        last_24h = self.count(SyncError.timestamp >= now - timedelta(hours=24))

        by_type = dict(
            self.db.query(SyncError.error_type, func.count(SyncError.id))
            .group_by(SyncError.error_type).all()
        )
        by_service = dict(
            self.db.query(SyncError.service, func.count(SyncError.id))
            .group_by(SyncError.service).all()
        )

        return {
            'total': total,
            'last_24h': last_24h,
            'by_type': by_type,
            'by_service': by_service,
        }

    def prune_errors_older_than(self, days: int, now: Optional[datetime] = None) -> int:
        """Delete errors older than ``days``. Returns the number removed."""
        cutoff = (now or utcnow()) - timedelta(days=days)
        return self.query().filter(SyncError.timestamp < cutoff).delete(
            synchronize_session=False
        )
