"""Read-only member snapshot for presentation."""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from guild_sync.core.database import get_db
from guild_sync.models import GuildMember
from guild_sync.repositories import MemberRepository
from guild_sync.services.sync.types import ActivityTier

router = APIRouter(prefix="/members", tags=["members"])


def serialize_member(member: GuildMember) -> Dict[str, Any]:
    def iso(value):
        return value.isoformat() if value else None

    return {
        'name': member.character_name,
        'realm': member.realm,
        'class': member.character_class,
        'level': member.level,
        'item_level': member.item_level,
        'mythic_plus_score': member.mythic_plus_score,
        'raid_progress': member.raid_progress,
        'pvp': {
            '2v2': member.pvp_2v2_rating,
            '3v3': member.pvp_3v3_rating,
            'rbg': member.pvp_rbg_rating,
            'solo_shuffle': member.solo_shuffle_rating,
            'max_solo_shuffle': member.max_solo_shuffle_rating,
            'blitz': member.rbg_blitz_rating,
            'current': member.current_pvp_rating,
        },
        'achievement_points': member.achievement_points,
        'activity_status': member.activity_status,
        'last_login_at': iso(member.last_login_at),
        'last_enriched_at': iso(member.last_enriched_at),
        'last_updated': iso(member.last_updated),
    }


@router.get("")
async def list_members(
    activity: Optional[str] = Query(None, description="active, inactive or unknown"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    db: Session = Depends(get_db)
) -> Dict:
    """
    Current member snapshot, best item level first.

    Args:
        activity: Optional activity tier filter
        limit: Optional maximum number of members
    """
    valid = {tier.value for tier in ActivityTier}
    if activity is not None and activity not in valid:
        raise HTTPException(status_code=400, detail=f"activity must be one of {sorted(valid)}")

    members = MemberRepository(db).snapshot(activity=activity, limit=limit)
    return {
        'count': len(members),
        'members': [serialize_member(m) for m in members],
    }
