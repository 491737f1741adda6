"""Recent sync errors and error statistics."""
from typing import Dict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from guild_sync.core.database import get_db
from guild_sync.repositories import SyncErrorRepository
from guild_sync.services.sync.error_sink import serialize_error

router = APIRouter(prefix="/errors", tags=["errors"])


@router.get("")
async def list_errors(
    limit: int = Query(100, ge=1, le=1000, description="Maximum errors to return"),
    db: Session = Depends(get_db)
) -> Dict:
    """Most recent sync errors, newest first."""
    errors = SyncErrorRepository(db).list_recent_errors(limit)
    return {
        'count': len(errors),
        'errors': [serialize_error(e) for e in errors],
    }


@router.get("/stats")
async def error_stats(db: Session = Depends(get_db)) -> Dict:
    """Totals, last 24 hours, and breakdown by error type and service."""
    return SyncErrorRepository(db).get_error_stats()
