"""
Background scheduler for the guild synchronizer.

Jobs:
- Guild discovery (roster + activity check), every DISCOVERY_INTERVAL_HOURS
- Performance enrichment, every ENRICHMENT_INTERVAL_MINUTES
- Startup catch-up: one discovery followed by the missing-data pass
- Error retention cleanup, daily

Scheduler: APScheduler (lightweight, FastAPI-compatible)
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.events import EVENT_JOB_MAX_INSTANCES
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from guild_sync.core.config import Settings, get_settings
from guild_sync.services.sync.orchestrator import SyncOrchestrator, create_orchestrator

logger = logging.getLogger(__name__)

# Seconds to wait for running tiers on shutdown
DRAIN_TIMEOUT_SECONDS = 120

# Interval jobs whose skipped ticks count as dropped triggers for a tier
JOB_TIERS = {
    'guild_discovery': 'discovery',
    'performance_enrichment': 'enrichment',
}


class SyncScheduler:
    """
    Drives the two sync tiers on independent timers.

    Both tiers share one orchestrator. APScheduler's max_instances=1 keeps a
    slow job from stacking up, and the orchestrator drops any trigger for a
    tier that is still running (manual triggers included).
    """

    def __init__(self, orchestrator: Optional[SyncOrchestrator] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.orchestrator = orchestrator
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.running = False

    async def start(self):
        """Start the scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting sync scheduler...")

        if self.orchestrator is None:
            self.orchestrator = create_orchestrator(self.settings)

        self.scheduler = AsyncIOScheduler(
            timezone='UTC',
            job_defaults={
                'coalesce': True,  # Combine missed runs into one
                'max_instances': 1,  # Only one instance of each job
                'misfire_grace_time': 300  # 5 minutes grace for misfires
            }
        )

        self._schedule_discovery()
        self._schedule_enrichment()
        self._schedule_startup_sync()
        self._schedule_error_cleanup()
        self.scheduler.add_listener(self._on_job_skipped, EVENT_JOB_MAX_INSTANCES)

        self.scheduler.start()
        self.running = True

        logger.info("✅ Scheduler started with %d jobs", len(self.scheduler.get_jobs()))

        self._log_scheduled_jobs()

    async def stop(self):
        """Stop the scheduler and drain in-flight sync runs."""
        if not self.running:
            return

        logger.info("Stopping scheduler...")
        self.orchestrator.request_shutdown()
        self.scheduler.shutdown(wait=False)
        self.running = False

        await self.orchestrator.wait_idle(timeout=DRAIN_TIMEOUT_SECONDS)
        await self.orchestrator.close()
        logger.info("✅ Scheduler stopped")

    def _schedule_discovery(self):
        """
        Schedule: Guild discovery.

        Frequency: Every DISCOVERY_INTERVAL_HOURS (default 6)
        Purpose: Reconcile the roster and refresh activity tiers
        """
        if self.scheduler is None:
            return

        hours = self.settings.DISCOVERY_INTERVAL_HOURS

        @self.scheduler.scheduled_job(
            trigger=IntervalTrigger(hours=hours),
            id='guild_discovery',
            name='Guild Discovery'
        )
        async def discovery_job():
            try:
                result = await self.orchestrator.run_discovery()
                if result is None:
                    return
                if result['success']:
                    logger.info(
                        f"✅ Discovery: {result['roster_size']} members, "
                        f"{result['failed']} errors ({result['duration_ms']}ms)"
                    )
                else:
                    logger.error(f"❌ Discovery aborted: {result['error']}")
            except Exception as e:
                logger.error(f"❌ Discovery failed: {e}")

        logger.info(f"🔍 Scheduled: Guild discovery (every {hours}h)")

    def _schedule_enrichment(self):
        """
        Schedule: Performance enrichment.

        Frequency: Every ENRICHMENT_INTERVAL_MINUTES (default 60)
        Purpose: Refresh gear, Mythic+, raid and PvP data for active members
        """
        if self.scheduler is None:
            return

        minutes = self.settings.ENRICHMENT_INTERVAL_MINUTES

        @self.scheduler.scheduled_job(
            trigger=IntervalTrigger(minutes=minutes),
            id='performance_enrichment',
            name='Performance Enrichment'
        )
        async def enrichment_job():
            try:
                result = await self.orchestrator.run_enrichment()
                if result is None:
                    return
                if result['success']:
                    logger.info(
                        f"✅ Enrichment: {result['processed']}/{result['total']} updated "
                        f"({result['duration_ms']}ms)"
                    )
                else:
                    logger.error(f"❌ Enrichment aborted: {result['error']}")
            except Exception as e:
                logger.error(f"❌ Enrichment failed: {e}")

        logger.info(f"⚡ Scheduled: Performance enrichment (every {minutes}min)")

    def _schedule_startup_sync(self):
        """
        Schedule: One-shot catch-up right after startup.

        Runs discovery so the roster is current, then the missing-data pass
        for active members that were never enriched.
        """
        if self.scheduler is None:
            return

        run_missing = self.settings.RUN_MISSING_DATA_ON_STARTUP

        @self.scheduler.scheduled_job(
            trigger=DateTrigger(run_date=datetime.now(timezone.utc) + timedelta(seconds=5)),
            id='startup_sync',
            name='Startup Sync'
        )
        async def startup_job():
            try:
                await self.orchestrator.run_discovery()
                if run_missing:
                    result = await self.orchestrator.run_missing_data_sync()
                    if result and result['success']:
                        logger.info(f"✅ Missing data: {result['processed']}/{result['total']} filled")
            except Exception as e:
                logger.error(f"❌ Startup sync failed: {e}")

        logger.info("🚀 Scheduled: Startup sync (in 5s)")

    def _schedule_error_cleanup(self):
        """
        Schedule: Drop old sync errors.

        Frequency: Daily at 03:30 UTC
        """
        if self.scheduler is None:
            return

        @self.scheduler.scheduled_job(
            trigger=CronTrigger(hour=3, minute=30, timezone='UTC'),
            id='error_cleanup',
            name='Sync Error Cleanup',
            misfire_grace_time=3600
        )
        async def cleanup_job():
            try:
                removed = self.orchestrator.prune_errors()
                logger.info(f"✅ Error cleanup: {removed} rows removed")
            except Exception as e:
                logger.error(f"❌ Error cleanup failed: {e}")

        logger.info(f"🧹 Scheduled: Error cleanup (daily, keep {self.settings.ERROR_RETENTION_DAYS} days)")

    def _on_job_skipped(self, event):
        """APScheduler skipped a tick because the previous one is still running."""
        tier = JOB_TIERS.get(event.job_id)
        if tier and self.orchestrator is not None:
            self.orchestrator.record_dropped(tier)

    def _log_scheduled_jobs(self):
        """Log all scheduled jobs for visibility."""
        jobs = self.scheduler.get_jobs()

        logger.info("=" * 60)
        logger.info("SCHEDULED SYNC JOBS")
        logger.info("=" * 60)

        for job in jobs:
            next_run = job.next_run_time
            if next_run:
                next_run_str = next_run.strftime('%Y-%m-%d %H:%M UTC')
            else:
                next_run_str = 'Pending'

            logger.info(f"  • {job.name}")
            logger.info(f"    ID: {job.id}")
            logger.info(f"    Next run: {next_run_str}")
            logger.info("")

        logger.info("=" * 60)
        logger.info(f"Total jobs scheduled: {len(jobs)}")
        logger.info("=" * 60)


# Global scheduler instance
_scheduler: Optional[SyncScheduler] = None


async def start_scheduler(orchestrator: Optional[SyncOrchestrator] = None,
                          settings: Optional[Settings] = None) -> SyncScheduler:
    """Start the global scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = SyncScheduler(orchestrator=orchestrator, settings=settings)
        await _scheduler.start()
    return _scheduler


async def stop_scheduler():
    """Stop the global scheduler."""
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None


def get_scheduler() -> Optional[SyncScheduler]:
    """Get the global scheduler instance."""
    return _scheduler
