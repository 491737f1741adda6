"""
Error sink for per-member fetch failures.

One sink is created per sync run. Each recorded failure is appended to the
sync_errors table and counted in the run's tally, which the orchestrator
uses for alert thresholds. Not-found failures are expected (renames,
transfers, deletions) and are excluded from the alertable count.
"""
import logging
from collections import Counter
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from guild_sync.core import metrics
from guild_sync.models import SyncError
from guild_sync.repositories import SyncErrorRepository
from guild_sync.services.sync.types import ErrorCategory, FetchError, MemberIdentity
from guild_sync.utils.timezone import utcnow

logger = logging.getLogger(__name__)


class ErrorSink:
    """Structured, queryable record of sync failures for one run."""

    def __init__(self, db: Session, tier: Optional[str] = None):
        self.repository = SyncErrorRepository(db)
        self.tier = tier
        self.counts: Counter = Counter()

    def record(self, identity: MemberIdentity, error: FetchError) -> SyncError:
        """Append one SyncError row and count it."""
        self.counts[error.category.value] += 1
        if self.tier:
            metrics.record_member_failure(self.tier, error.category.value)

        if error.category == ErrorCategory.NOT_FOUND:
            logger.info(f"👻 {identity} not found on {error.source}: {error.message}")
        else:
            logger.warning(f"⚠️ {identity} failed on {error.source} [{error.category.value}]: {error.message}")

        return self.repository.append_sync_error({
            'character_name': identity.name,
            'realm': identity.realm,
            'error_type': error.category.value,
            'error_message': error.message,
            'service': error.source,
            'tier': self.tier,
            'url_attempted': error.url,
            'timestamp': utcnow(),
        })

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def alertable_count(self) -> int:
        """Failures that count toward alert thresholds (not-found excluded)."""
        return self.total - self.counts.get(ErrorCategory.NOT_FOUND.value, 0)

    def recent(self, limit: int = 100) -> List[Dict[str, Any]]:
        return [serialize_error(e) for e in self.repository.list_recent_errors(limit)]

    def prune(self, days: int) -> int:
        removed = self.repository.prune_errors_older_than(days)
        if removed:
            logger.info(f"🧹 Pruned {removed} sync errors older than {days} days")
        return removed


def serialize_error(error: SyncError) -> Dict[str, Any]:
    return {
        'id': error.id,
        'character_name': error.character_name,
        'realm': error.realm,
        'error_type': error.error_type,
        'error_message': error.error_message,
        'service': error.service,
        'tier': error.tier,
        'url_attempted': error.url_attempted,
        'timestamp': error.timestamp.isoformat() if error.timestamp else None,
    }
