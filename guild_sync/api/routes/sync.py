"""Sync API routes for synchronization health and manual runs.

Provides endpoints for:
- Sync health monitoring
- Live progress events
- Manual triggers per tier (dropped with 409 while the tier is running)
"""
import asyncio
import logging
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, Query

from guild_sync.core.scheduler import get_scheduler
from guild_sync.services.sync.orchestrator import SyncOrchestrator
from guild_sync.services.sync.types import SyncTier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])

# Strong references to manually triggered runs
_background_runs = set()


def get_orchestrator() -> SyncOrchestrator:
    """Dependency returning the scheduler's orchestrator."""
    scheduler = get_scheduler()
    if scheduler is None or scheduler.orchestrator is None:
        raise HTTPException(status_code=503, detail="Scheduler is not running")
    return scheduler.orchestrator


@router.get("/status")
async def get_sync_status(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> Dict:
    """
    Get overall sync health status dashboard.

    Returns aggregated status from all sync jobs including:
    - Health status (healthy, degraded, unhealthy, pending)
    - Last sync times for each job
    - Member counts by activity tier
    - Error statistics
    - Running flags and dropped trigger counters
    """
    return orchestrator.get_sync_status()


@router.get("/events")
async def get_sync_events(
    limit: int = Query(50, ge=1, le=500, description="Maximum events to return"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> Dict:
    """Most recent progress events, plus the latest one per tier."""
    listener = orchestrator.recent_events
    if listener is None:
        return {'count': 0, 'events': [], 'latest': {}}

    events = listener.recent(limit)
    return {
        'count': len(events),
        'events': events,
        'latest': {tier: event.to_dict() for tier, event in listener.latest.items()},
    }


def _start(orchestrator: SyncOrchestrator, tier: str, coro_factory) -> Dict:
    if orchestrator.is_running(tier):
        raise HTTPException(status_code=409, detail=f"{tier} is already running")

    async def run():
        try:
            await coro_factory()
        except Exception as e:
            logger.error(f"❌ Manual {tier} run failed: {e}")

    task = asyncio.create_task(run())
    _background_runs.add(task)
    task.add_done_callback(_background_runs.discard)
    logger.info(f"▶️ Manual {tier} run triggered")
    return {'status': 'started', 'tier': tier}


@router.post("/discovery", status_code=202)
async def trigger_discovery(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> Dict:
    """Start a discovery run in the background."""
    return _start(orchestrator, SyncTier.DISCOVERY.value, orchestrator.run_discovery)


@router.post("/enrichment", status_code=202)
async def trigger_enrichment(
    missing_only: bool = Query(False, description="Only members without performance data"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
) -> Dict:
    """Start an enrichment run in the background."""
    return _start(
        orchestrator,
        SyncTier.ENRICHMENT.value,
        lambda: orchestrator.run_enrichment(missing_only=missing_only),
    )
