"""Sync orchestrator for the two-tier guild synchronization.

Tiers:
- discovery (every DISCOVERY_INTERVAL_HOURS): fetch roster, reconcile
  membership, upsert identities, delete departed members, then fetch each
  member's last login and classify activity
- enrichment (every ENRICHMENT_INTERVAL_MINUTES): for members seen within
  ENRICHMENT_WINDOW_DAYS, aggregate profile data from the providers and
  merge it into the stored record
- missing data (startup): enrichment restricted to recently active members
  that were never enriched

Each tier runs at most once at a time. A trigger that arrives while the same
tier is still running is dropped, not queued. Discovery and enrichment may
overlap each other.

Members are processed sequentially with a delay between them and a
per-member timeout. One member failing never stops the batch: it produces
exactly one SyncError and the loop moves on. A roster failure or an
authentication failure aborts the cycle and raises a critical notification.
"""
import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from guild_sync.core import metrics
from guild_sync.core.config import Settings
from guild_sync.core.logging import clear_sync_run_id, set_sync_run_id
from guild_sync.models import SyncMetadata
from guild_sync.repositories import MemberRepository, SyncErrorRepository
from guild_sync.services.notification_service import BaseNotifier, create_notifier
from guild_sync.services.sync.activity import classify
from guild_sync.services.sync.aggregator import MemberAggregator, build_default_strategies, merge_profile
from guild_sync.services.sync.error_sink import ErrorSink, serialize_error
from guild_sync.services.sync.events import ProgressPublisher, RecentEventsListener
from guild_sync.services.sync.reconciler import reconcile
from guild_sync.services.sync.types import (
    AggregationResult,
    AuthFailureError,
    ErrorCategory,
    FetchError,
    MemberIdentity,
    ProviderError,
    RosterEntry,
    RosterFetchError,
    SyncEvent,
    SyncTier,
)
from guild_sync.utils.timezone import utcnow

logger = logging.getLogger(__name__)

TIERS = (SyncTier.DISCOVERY.value, SyncTier.ENRICHMENT.value)


class SyncOrchestrator:
    """
    Coordinates discovery and enrichment runs.

    Long-lived: one instance per process. Every run opens its own session
    from ``session_factory`` and closes it when done.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: Callable[[], Session],
        roster_provider,
        aggregator: MemberAggregator,
        notifier: BaseNotifier,
        publisher: Optional[ProgressPublisher] = None,
        clock: Callable[[], Any] = utcnow,
        closeables: Optional[List[Any]] = None,
    ):
        """
        Args:
            settings: Immutable configuration
            session_factory: Callable returning a new SQLAlchemy session
            roster_provider: Adapter with fetch_roster() and fetch_last_seen()
            aggregator: MemberAggregator for enrichment
            notifier: Fire-and-forget alert collaborator
            publisher: Progress event publisher
            clock: Returns the current naive UTC datetime
            closeables: Extra resources closed by close()
        """
        self.settings = settings
        self.session_factory = session_factory
        self.roster_provider = roster_provider
        self.aggregator = aggregator
        self.notifier = notifier
        self.publisher = publisher or ProgressPublisher()
        self.clock = clock
        self._closeables = list(closeables or [])
        self.recent_events: Optional[RecentEventsListener] = None

        self._running: Dict[str, bool] = {tier: False for tier in TIERS}
        self._concurrent: Dict[str, int] = {tier: 0 for tier in TIERS}
        self.max_concurrent_runs: Dict[str, int] = {tier: 0 for tier in TIERS}
        self.run_counts: Dict[str, int] = {tier: 0 for tier in TIERS}
        self.dropped_runs: Dict[str, int] = {tier: 0 for tier in TIERS}
        self.last_results: Dict[str, Dict] = {}

        self._shutdown = asyncio.Event()
        self._idle: Dict[str, asyncio.Event] = {tier: asyncio.Event() for tier in TIERS}
        for event in self._idle.values():
            event.set()

    # =========================================================================
    # Tier guards
    # =========================================================================

    def is_running(self, tier: str) -> bool:
        return self._running[tier]

    def _try_enter(self, tier: str) -> bool:
        if self._shutdown.is_set():
            logger.info(f"⏹️ Shutdown requested, not starting {tier}")
            return False

        if self._running[tier]:
            self.record_dropped(tier)
            return False

        self._running[tier] = True
        self._concurrent[tier] += 1
        self.max_concurrent_runs[tier] = max(self.max_concurrent_runs[tier], self._concurrent[tier])
        self.run_counts[tier] += 1
        self._idle[tier].clear()
        metrics.sync_tier_running.labels(tier=tier).set(1)
        return True

    def record_dropped(self, tier: str):
        """Count a trigger that arrived while the tier was still running."""
        self.dropped_runs[tier] += 1
        metrics.sync_runs_dropped_total.labels(tier=tier).inc()
        logger.info(f"⏭️ Skipping {tier}: previous run still in progress")

    def _leave(self, tier: str):
        self._concurrent[tier] -= 1
        self._running[tier] = False
        self._idle[tier].set()
        metrics.sync_tier_running.labels(tier=tier).set(0)

    async def _pause(self, delay: float):
        """Inter-member delay that ends early on shutdown."""
        if delay <= 0 or self._shutdown.is_set():
            return
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return

    def _publish(self, tier: str, index: int, total: int, processed: int, errors: int,
                 member: Optional[str] = None, finished: bool = False):
        self.publisher.publish(SyncEvent(
            tier=tier,
            index=index,
            total=total,
            processed=processed,
            errors=errors,
            member=member,
            finished=finished,
        ))

    # =========================================================================
    # Discovery
    # =========================================================================

    async def run_discovery(self) -> Optional[Dict]:
        """
        Run one discovery cycle.

        Returns:
            Result dict, or None when the trigger was dropped
        """
        tier = SyncTier.DISCOVERY.value
        if not self._try_enter(tier):
            return None

        token = set_sync_run_id(f"{tier}-{uuid.uuid4().hex[:8]}")
        db = self.session_factory()
        try:
            result = await self._discover(db)
            self.last_results[tier] = result
            return result
        except Exception as e:
            logger.exception(f"❌ Guild discovery crashed: {e}")
            db.rollback()
            self._mark_failed(db, tier, e)
            self.notifier.notify_critical_failure(e, {'tier': tier, 'stage': 'unexpected'})
            raise
        finally:
            db.close()
            clear_sync_run_id(token)
            self._leave(tier)

    async def _discover(self, db: Session) -> Dict:
        tier = SyncTier.DISCOVERY.value
        started = time.monotonic()
        start_time = self.clock()
        logger.info("🔍 Starting guild discovery and activity check...")

        metadata = self._get_or_create_metadata(db, tier)
        metadata.last_sync_started_at = start_time
        db.commit()

        try:
            roster = await self.roster_provider.fetch_roster()
            if not roster:
                raise RosterFetchError("Roster provider returned no members")
        except (ProviderError, RosterFetchError) as e:
            return self._abort(db, metadata, tier, e, started, stage='roster')

        repo = MemberRepository(db)
        reconciliation = reconcile(roster, repo.list_member_identities())
        entries = self._unique_entries(roster)

        for entry in entries:
            repo.upsert_identity(entry, start_time)
        deleted = repo.delete_members(reconciliation.departed)
        db.commit()
        metrics.roster_size.set(len(entries))

        if reconciliation.joined:
            logger.info(f"👋 {len(reconciliation.joined)} new members: "
                        f"{', '.join(str(e.identity) for e in reconciliation.joined[:20])}")
        if reconciliation.departed:
            logger.info(f"🚪 {deleted} members left: "
                        f"{', '.join(str(i) for i in reconciliation.departed[:20])}")

        sink = ErrorSink(db, tier)
        stored_last_seen = repo.last_seen_by_identity()
        updates = []
        processed = 0
        total = len(entries)
        interrupted = False

        for index, entry in enumerate(entries, 1):
            if self._shutdown.is_set():
                interrupted = True
                break

            identity = entry.identity
            try:
                last_seen = await asyncio.wait_for(
                    self.roster_provider.fetch_last_seen(identity, entry.lookup_handle),
                    timeout=self.settings.MEMBER_TIMEOUT_SECONDS
                )
                processed += 1
            except AuthFailureError as e:
                repo.bulk_update_activity(updates, checked_at=self.clock())
                db.commit()
                return self._abort(db, metadata, tier, e, started, stage='last-seen')
            except asyncio.TimeoutError:
                sink.record(identity, FetchError(
                    ErrorCategory.TIMEOUT, self.roster_provider.source,
                    f"Last-seen lookup exceeded {self.settings.MEMBER_TIMEOUT_SECONDS}s"
                ))
                db.commit()
                last_seen = stored_last_seen.get(identity)
            except ProviderError as e:
                sink.record(identity, e.to_fetch_error())
                db.commit()
                last_seen = stored_last_seen.get(identity)
            except Exception as e:
                logger.exception(f"Unexpected error checking activity for {identity}")
                sink.record(identity, FetchError(
                    ErrorCategory.UNKNOWN, self.roster_provider.source, f"{type(e).__name__}: {e}"
                ))
                db.commit()
                last_seen = stored_last_seen.get(identity)

            tier_value = classify(last_seen, self.clock(), self.settings.ACTIVE_WINDOW_DAYS)
            updates.append((identity, last_seen, tier_value))
            metrics.members_processed_total.labels(tier=tier).inc()
            self._publish(tier, index, total, processed, sink.total, member=str(identity))

            if index < total:
                await self._pause(self.settings.DISCOVERY_MEMBER_DELAY)

        repo.bulk_update_activity(updates, checked_at=self.clock())
        activity = repo.count_by_activity()

        status = 'success' if sink.total == 0 else 'partial'
        duration_ms = int((time.monotonic() - started) * 1000)
        metadata.last_sync_completed_at = self.clock()
        metadata.last_sync_status = status
        metadata.records_processed = processed
        metadata.records_failed = sink.total
        metadata.error_message = None
        metadata.sync_duration_ms = duration_ms
        db.commit()

        metrics.record_sync_run(tier, status, duration_ms / 1000)
        self._publish(tier, len(updates), total, processed, sink.total, finished=True)

        logger.info(
            f"🎉 Guild discovery completed: {len(entries)} members, "
            f"+{len(reconciliation.joined)}/-{deleted}, {sink.total} errors, "
            f"{activity.get('active', 0)} active ({duration_ms}ms)"
        )

        return {
            'success': True,
            'tier': tier,
            'status': status,
            'roster_size': len(entries),
            'joined': len(reconciliation.joined),
            'departed': deleted,
            'processed': processed,
            'failed': sink.total,
            'activity': activity,
            'interrupted': interrupted,
            'duration_ms': duration_ms,
        }

    @staticmethod
    def _unique_entries(roster: List[RosterEntry]) -> List[RosterEntry]:
        seen = set()
        unique = []
        for entry in roster:
            if entry.identity not in seen:
                seen.add(entry.identity)
                unique.append(entry)
        return unique

    # =========================================================================
    # Enrichment
    # =========================================================================

    async def run_enrichment(self, missing_only: bool = False) -> Optional[Dict]:
        """
        Run one enrichment pass.

        Args:
            missing_only: Only members that were never enriched (startup pass)

        Returns:
            Result dict, or None when the trigger was dropped
        """
        tier = SyncTier.ENRICHMENT.value
        if not self._try_enter(tier):
            return None

        job = 'missing_data' if missing_only else tier
        token = set_sync_run_id(f"{job}-{uuid.uuid4().hex[:8]}")
        db = self.session_factory()
        try:
            result = await self._enrich(db, job, missing_only)
            self.last_results[job] = result
            return result
        except Exception as e:
            logger.exception(f"❌ Enrichment crashed: {e}")
            db.rollback()
            self._mark_failed(db, job, e)
            self.notifier.notify_critical_failure(e, {'tier': job, 'stage': 'unexpected'})
            raise
        finally:
            db.close()
            clear_sync_run_id(token)
            self._leave(tier)

    async def run_missing_data_sync(self) -> Optional[Dict]:
        """Enrich recently active members that have no performance data yet."""
        return await self.run_enrichment(missing_only=True)

    async def _enrich(self, db: Session, job: str, missing_only: bool) -> Dict:
        tier = SyncTier.ENRICHMENT.value
        started = time.monotonic()
        window = self.settings.ENRICHMENT_WINDOW_DAYS

        metadata = self._get_or_create_metadata(db, job)
        metadata.last_sync_started_at = self.clock()
        db.commit()

        repo = MemberRepository(db)
        if missing_only:
            members = repo.list_members_missing_data(window, now=self.clock())
        else:
            members = repo.list_members_with_recent_activity(window, now=self.clock())

        targets = [(MemberIdentity(m.character_name, m.realm), m.lookup_handle) for m in members]
        total = len(targets)
        logger.info(f"⚡ Starting {job.replace('_', ' ')} for {total} members active in the last {window} days")

        sink = ErrorSink(db, tier)
        processed = 0
        skipped = 0
        interrupted = False

        for index, (identity, lookup_handle) in enumerate(targets, 1):
            if self._shutdown.is_set():
                interrupted = True
                break

            try:
                result = await asyncio.wait_for(
                    self.aggregator.aggregate(identity, lookup_handle),
                    timeout=self.settings.MEMBER_TIMEOUT_SECONDS
                )
            except AuthFailureError as e:
                return self._abort(db, metadata, job, e, started, stage='enrichment',
                                   processed=processed, failed=sink.total)
            except asyncio.TimeoutError:
                result = AggregationResult(identity=identity, error=FetchError(
                    ErrorCategory.TIMEOUT, "aggregator",
                    f"Enrichment exceeded {self.settings.MEMBER_TIMEOUT_SECONDS}s"
                ))
            except Exception as e:
                logger.exception(f"Unexpected error enriching {identity}")
                result = AggregationResult(identity=identity, error=FetchError(
                    ErrorCategory.UNKNOWN, "aggregator", f"{type(e).__name__}: {e}"
                ))

            if result.ok:
                outcome = self._persist_profile(db, repo, sink, result)
                if outcome == 'stored':
                    processed += 1
                elif outcome == 'skipped':
                    skipped += 1
            else:
                sink.record(identity, result.error)
                db.commit()

            metrics.members_processed_total.labels(tier=tier).inc()
            self._publish(job, index, total, processed, sink.total, member=str(identity))

            if index < total:
                await self._pause(self.settings.MEMBER_DELAY_SECONDS)

        alert_sent = self._check_error_thresholds(job, sink, total, processed)

        status = 'success' if sink.total == 0 else 'partial'
        duration_ms = int((time.monotonic() - started) * 1000)
        metadata.last_sync_completed_at = self.clock()
        metadata.last_sync_status = status
        metadata.records_processed = processed
        metadata.records_failed = sink.total
        metadata.error_message = None
        metadata.sync_duration_ms = duration_ms
        db.commit()

        metrics.record_sync_run(job, status, duration_ms / 1000)
        handled = processed + sink.total + skipped if interrupted else total
        self._publish(job, min(handled, total), total, processed, sink.total, finished=True)

        logger.info(
            f"🎉 {job.replace('_', ' ').capitalize()} completed: {processed}/{total} updated, "
            f"{sink.total} errors ({sink.alertable_count} alertable) ({duration_ms}ms)"
        )

        return {
            'success': True,
            'tier': job,
            'status': status,
            'total': total,
            'processed': processed,
            'failed': sink.total,
            'skipped': skipped,
            'errors_by_type': dict(sink.counts),
            'alert_sent': alert_sent,
            'interrupted': interrupted,
            'duration_ms': duration_ms,
        }

    def _persist_profile(self, db: Session, repo: MemberRepository, sink: ErrorSink,
                         result: AggregationResult) -> str:
        """Merge and store one member's profile. Returns stored, skipped or failed."""
        identity = result.identity
        try:
            member = repo.find_by_identity(identity)
            if member is None:
                # Removed by a discovery run while this member was being fetched
                logger.info(f"{identity} left the guild during enrichment, not stored")
                return 'skipped'

            merged = merge_profile(repo.profile_fields(member), result.profile)
            repo.apply_profile(member, merged, enriched_at=self.clock())
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ Failed to store profile for {identity}: {e}")
            sink.record(identity, FetchError(ErrorCategory.UNKNOWN, "persistence", str(e)))
            db.commit()
            return 'failed'

        logger.debug(
            f"✅ {identity}: iLvl {merged.get('item_level')}, M+ {merged.get('mythic_plus_score')}, "
            f"PvP {merged.get('current_pvp_rating')}"
        )
        return 'stored'

    def _check_error_thresholds(self, job: str, sink: ErrorSink, total: int, processed: int) -> bool:
        """Send a batch alert when alertable errors exceed the absolute or rate threshold."""
        alertable = sink.alertable_count
        if not total or not alertable:
            return False

        rate = alertable / total
        if alertable <= self.settings.ERROR_ALERT_THRESHOLD and rate <= self.settings.ERROR_ALERT_RATE:
            return False

        logger.warning(f"🚨 {job}: {alertable} alertable errors ({rate:.1%}) in batch of {total}")
        return self.notifier.notify_batch_errors({
            'tier': job,
            'total': total,
            'processed': processed,
            'errors': sink.total,
            'alertable_errors': alertable,
            'error_rate': rate,
            'by_type': dict(sink.counts),
        })

    # =========================================================================
    # Failure handling
    # =========================================================================

    def _abort(self, db: Session, metadata: SyncMetadata, job: str, error: Exception,
               started: float, stage: str, processed: int = 0, failed: int = 0) -> Dict:
        """Mark a cycle as failed, escalate it, and build the result dict."""
        duration_ms = int((time.monotonic() - started) * 1000)
        category = getattr(error, 'category', ErrorCategory.UNKNOWN)
        logger.error(f"❌ {job} aborted at {stage}: [{category.value}] {error}")

        metadata.last_sync_status = 'failed'
        metadata.error_message = str(error)
        metadata.records_processed = processed
        metadata.records_failed = failed
        metadata.sync_duration_ms = duration_ms
        db.commit()

        metrics.record_sync_run(job, 'failed', duration_ms / 1000)
        self.notifier.notify_critical_failure(error, {
            'tier': job,
            'stage': stage,
            'guild': f"{self.settings.GUILD_NAME} ({self.settings.GUILD_REALM}-{self.settings.GUILD_REGION})",
        })
        self._publish(job, processed, processed, processed, failed, finished=True)

        result = {
            'success': False,
            'critical': True,
            'tier': job,
            'status': 'failed',
            'stage': stage,
            'error': str(error),
            'error_type': category.value,
            'processed': processed,
            'failed': failed,
            'duration_ms': duration_ms,
        }
        self.last_results[job] = result
        return result

    def _mark_failed(self, db: Session, job: str, error: Exception):
        try:
            metadata = self._get_or_create_metadata(db, job)
            metadata.last_sync_status = 'failed'
            metadata.error_message = str(error)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Could not record failure for {job}")
        metrics.record_sync_run(job, 'failed', 0)

    # =========================================================================
    # Maintenance and status
    # =========================================================================

    def prune_errors(self) -> int:
        """Delete sync errors older than ERROR_RETENTION_DAYS."""
        db = self.session_factory()
        try:
            removed = ErrorSink(db).prune(self.settings.ERROR_RETENTION_DAYS)
            db.commit()
            return removed
        finally:
            db.close()

    def get_recent_errors(self, limit: int = 100) -> List[Dict]:
        db = self.session_factory()
        try:
            return [serialize_error(e) for e in SyncErrorRepository(db).list_recent_errors(limit)]
        finally:
            db.close()

    def get_stats(self) -> Dict:
        """In-process counters (no database access)."""
        return {
            'running': dict(self._running),
            'run_counts': dict(self.run_counts),
            'dropped_runs': dict(self.dropped_runs),
            'max_concurrent_runs': dict(self.max_concurrent_runs),
            'shutdown_requested': self._shutdown.is_set(),
            'last_results': dict(self.last_results),
        }

    def get_sync_status(self) -> Dict:
        """
        Return overall sync health status.

        healthy: every tier's last run succeeded; degraded: at least one
        succeeded (or partially succeeded); unhealthy: all failed; pending:
        nothing has run yet.
        """
        db = self.session_factory()
        try:
            all_metadata = db.query(SyncMetadata).all()

            status_by_job = {}
            last_sync_times = {}
            total_processed = 0
            total_failed = 0
            for metadata in all_metadata:
                status_by_job[metadata.tier] = metadata.last_sync_status
                last_sync_times[metadata.tier] = metadata.last_sync_completed_at
                total_processed += metadata.records_processed or 0
                total_failed += metadata.records_failed or 0

            statuses = [m.last_sync_status for m in all_metadata if m.last_sync_status]
            if not statuses:
                health_status = 'pending'
            elif all(s == 'success' for s in statuses):
                health_status = 'healthy'
            elif any(s in ('success', 'partial') for s in statuses):
                health_status = 'degraded'
            else:
                health_status = 'unhealthy'

            members = MemberRepository(db)
            return {
                'health_status': health_status,
                'status_by_job': status_by_job,
                'last_sync_times': {
                    k: v.isoformat() if v else None
                    for k, v in last_sync_times.items()
                },
                'totals': {
                    'processed': total_processed,
                    'failed': total_failed,
                },
                'members': {
                    'total': members.count(),
                    'by_activity': members.count_by_activity(),
                },
                'errors': SyncErrorRepository(db).get_error_stats(),
                **self.get_stats(),
            }
        finally:
            db.close()

    def _get_or_create_metadata(self, db: Session, job: str) -> SyncMetadata:
        """Get or create the sync metadata row for a job."""
        metadata = db.query(SyncMetadata).filter(SyncMetadata.tier == job).first()

        if not metadata:
            metadata = SyncMetadata(
                id=str(uuid.uuid4()),
                tier=job,
                records_processed=0,
                records_failed=0,
            )
            db.add(metadata)
            db.flush()

        return metadata

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def request_shutdown(self):
        """Stop starting new member fetches; in-flight ones finish or time out."""
        if not self._shutdown.is_set():
            logger.info("⏹️ Shutdown requested, draining sync runs...")
        self._shutdown.set()

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until no tier is running.

        Returns:
            False if the timeout expired first
        """
        waiters = [event.wait() for event in self._idle.values()]
        try:
            await asyncio.wait_for(asyncio.gather(*waiters), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Sync runs still active after drain timeout")
            return False
        return True

    async def close(self):
        """Close provider clients and flush pending notifications."""
        await self.notifier.close()
        for resource in self._closeables:
            await resource.close()


def create_orchestrator(
    settings: Settings,
    session_factory: Optional[Callable[[], Session]] = None,
) -> SyncOrchestrator:
    """Wire the default providers, aggregator and notifier."""
    from guild_sync.services.core.auth import AuthTokenProvider
    from guild_sync.services.sync.adapters import BlizzardAdapter, RaiderIOAdapter
    from guild_sync.services.sync.rate_limiter import RateLimiter

    if session_factory is None:
        from guild_sync.core.database import SessionLocal
        session_factory = SessionLocal

    rate_limiter = RateLimiter(
        intervals=settings.provider_intervals,
        default_interval=settings.DEFAULT_MIN_INTERVAL,
        max_retry_after=settings.MAX_RETRY_AFTER_SECONDS,
    )
    token_provider = AuthTokenProvider(
        client_id=settings.BLIZZARD_CLIENT_ID,
        client_secret=settings.BLIZZARD_CLIENT_SECRET,
        token_url=settings.BLIZZARD_TOKEN_URL,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
    blizzard = BlizzardAdapter(settings, rate_limiter, token_provider)
    raiderio = RaiderIOAdapter(settings, rate_limiter)
    aggregator = MemberAggregator(
        build_default_strategies(raiderio, blizzard, settings.ENABLE_SECONDARY_ENRICHMENT)
    )

    recent_events = RecentEventsListener(maxlen=settings.PROGRESS_EVENTS_BUFFER)
    orchestrator = SyncOrchestrator(
        settings=settings,
        session_factory=session_factory,
        roster_provider=blizzard,
        aggregator=aggregator,
        notifier=create_notifier(settings),
        publisher=ProgressPublisher([recent_events]),
        closeables=[blizzard, raiderio],
    )
    orchestrator.recent_events = recent_events
    return orchestrator
