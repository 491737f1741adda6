"""
Repository layer for data access.

Usage:
    from guild_sync.repositories import MemberRepository
    from guild_sync.core.database import SessionLocal

    db = SessionLocal()
    members = MemberRepository(db).list_members_with_recent_activity(30)
    db.close()
"""

from guild_sync.repositories.base import BaseRepository
from guild_sync.repositories.member_repository import MemberRepository
from guild_sync.repositories.sync_error_repository import SyncErrorRepository

__all__ = [
    "BaseRepository",
    "MemberRepository",
    "SyncErrorRepository",
]
