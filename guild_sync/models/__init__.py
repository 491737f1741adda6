"""
Database models for the guild synchronizer.
"""
from guild_sync.models.models import Base, GuildMember, SyncError, SyncMetadata

__all__ = [
    "Base",
    "GuildMember",
    "SyncError",
    "SyncMetadata",
]
