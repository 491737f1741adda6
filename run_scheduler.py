#!/usr/bin/env python3
"""
Standalone runner for the guild sync scheduler.

Runs the discovery and enrichment timers as a background service (systemd,
supervisor, or directly). SIGTERM/SIGINT stop new member fetches and wait
for the in-flight one before exiting.

Usage:
    python run_scheduler.py                  # Run scheduler in foreground
    python run_scheduler.py --api            # Run scheduler inside the HTTP API
    python run_scheduler.py --run discovery  # Run one tier once and exit
    python run_scheduler.py --status         # Print sync status from the database
    python run_scheduler.py --list-jobs      # Print the configured schedule
"""
import argparse
import asyncio
import json
import logging
import signal
import sys

from guild_sync.core.config import settings
from guild_sync.core.database import SessionLocal, init_db
from guild_sync.core.logging import configure_logging
from guild_sync.core.scheduler import SyncScheduler
from guild_sync.services.sync.orchestrator import create_orchestrator

logger = logging.getLogger(__name__)


class SchedulerRunner:
    """Runner for the sync scheduler."""

    def __init__(self):
        self.scheduler: SyncScheduler = None
        self.shutdown = asyncio.Event()

    async def start(self):
        """Start the scheduler and run until shutdown."""
        logger.info("🚀 Starting scheduler runner...")

        init_db()
        self.scheduler = SyncScheduler(settings=settings)
        await self.scheduler.start()

        logger.info("✅ Scheduler is now running")
        logger.info("Press Ctrl+C to stop")

        # Setup signal handlers for graceful shutdown
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._set_shutdown)

        await self.shutdown.wait()

        # Cleanup (drains running tiers)
        await self.scheduler.stop()
        logger.info("✅ Scheduler runner stopped")

    def _set_shutdown(self):
        """Set shutdown flag."""
        logger.info("⏹️  Shutdown signal received")
        self.shutdown.set()


async def run_once(tier: str) -> bool:
    """Run a single tier to completion."""
    init_db()
    orchestrator = create_orchestrator(settings, SessionLocal)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, orchestrator.request_shutdown)

    try:
        if tier == 'discovery':
            result = await orchestrator.run_discovery()
        elif tier == 'missing':
            result = await orchestrator.run_missing_data_sync()
        else:
            result = await orchestrator.run_enrichment()
    finally:
        await orchestrator.close()

    print(json.dumps(result, indent=2, default=str))
    return bool(result and result['success'])


def run_status_check() -> bool:
    """Print sync status recorded in the database."""
    init_db()
    orchestrator = create_orchestrator(settings, SessionLocal)
    status = orchestrator.get_sync_status()

    icon = '✅' if status['health_status'] == 'healthy' else '⚠️ '
    print(f"{icon} Sync health: {status['health_status']}")
    print(f"   Members: {status['members']['total']} {status['members']['by_activity']}")
    print(f"   Errors (24h): {status['errors']['last_24h']}")
    print()
    for job, job_status in status['status_by_job'].items():
        print(f"   • {job}: {job_status} (last completed {status['last_sync_times'].get(job) or 'never'})")

    return status['health_status'] in ('healthy', 'pending')


def list_jobs():
    """Print the configured schedule."""
    print("=" * 60)
    print("SCHEDULED SYNC JOBS")
    print("=" * 60)
    print()
    print("📋 Guild Discovery")
    print("   ID: guild_discovery")
    print(f"   Schedule: every {settings.DISCOVERY_INTERVAL_HOURS}h")
    print()
    print("📋 Performance Enrichment")
    print("   ID: performance_enrichment")
    print(f"   Schedule: every {settings.ENRICHMENT_INTERVAL_MINUTES}min")
    print()
    print("📋 Startup Sync")
    print("   ID: startup_sync")
    print(f"   Schedule: once at startup (missing-data pass: {settings.RUN_MISSING_DATA_ON_STARTUP})")
    print()
    print("📋 Sync Error Cleanup")
    print("   ID: error_cleanup")
    print(f"   Schedule: daily 03:30 UTC (keep {settings.ERROR_RETENTION_DAYS} days)")
    print()
    print("=" * 60)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Run the guild sync scheduler'
    )

    parser.add_argument(
        '--api',
        action='store_true',
        help='Serve the HTTP API (scheduler runs inside it)'
    )

    parser.add_argument(
        '--run',
        choices=['discovery', 'enrichment', 'missing'],
        metavar='TIER',
        help='Run one tier once and exit (discovery, enrichment, missing)'
    )

    parser.add_argument(
        '--status',
        action='store_true',
        help='Print sync status and exit'
    )

    parser.add_argument(
        '--list-jobs',
        action='store_true',
        help='List all scheduled jobs and exit'
    )

    args = parser.parse_args()

    configure_logging(level=settings.LOG_LEVEL, json_output=settings.LOG_JSON)

    missing = settings.validate_required_secrets()
    if missing and (args.run or not (args.status or args.list_jobs)):
        logger.error(f"❌ Missing configuration: {', '.join(missing)}")
        return 1

    if args.list_jobs:
        list_jobs()
        return 0

    if args.status:
        return 0 if run_status_check() else 1

    if args.run:
        return 0 if asyncio.run(run_once(args.run)) else 1

    if args.api:
        import uvicorn
        uvicorn.run(
            "guild_sync.api.main:app",
            host=settings.HOST,
            port=settings.PORT,
        )
        return 0

    runner = SchedulerRunner()

    try:
        asyncio.run(runner.start())
    except KeyboardInterrupt:
        logger.info("🛑 Received interrupt, shutting down...")
        return 0
    except Exception as e:
        logger.error(f"❌ Scheduler error: {e}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
