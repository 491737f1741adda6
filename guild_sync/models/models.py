"""
Database models for the guild synchronizer.

- GuildMember: one row per character currently on the guild roster
- SyncError: append-only log of per-member fetch failures
- SyncMetadata: last run status for each sync tier
"""
from sqlalchemy import Column, String, Integer, DateTime, Text, Index, UniqueConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class GuildMember(Base):
    """Guild member keyed by the unique (character_name, realm) pair.

    Identity fields (class, level, lookup_handle) are owned by roster
    discovery. Performance fields are owned by enrichment and only ever
    move forward: a failed or partial fetch never clears a stored value.
    """
    __tablename__ = "guild_members"

    id = Column(String(36), primary_key=True)
    character_name = Column(String(64), nullable=False)
    realm = Column(String(64), nullable=False)  # realm slug
    lookup_handle = Column(Text, nullable=True)  # provider-supplied character href

    # Identity (discovery)
    character_class = Column(String(32), nullable=True)
    level = Column(Integer, nullable=True)

    # Performance (enrichment)
    item_level = Column(Integer, nullable=False, default=0)
    mythic_plus_score = Column(Integer, nullable=False, default=0)
    mythic_plus_season = Column(String(64), nullable=True)
    pvp_2v2_rating = Column(Integer, nullable=False, default=0)
    pvp_3v3_rating = Column(Integer, nullable=False, default=0)
    pvp_rbg_rating = Column(Integer, nullable=False, default=0)
    solo_shuffle_rating = Column(Integer, nullable=False, default=0)
    max_solo_shuffle_rating = Column(Integer, nullable=False, default=0)
    rbg_blitz_rating = Column(Integer, nullable=False, default=0)
    current_pvp_rating = Column(Integer, nullable=False, default=0)
    pvp_season_id = Column(Integer, nullable=True)
    achievement_points = Column(Integer, nullable=False, default=0)
    raid_progress = Column(String(64), nullable=True)

    # Activity
    last_login_at = Column(DateTime, nullable=True, index=True)
    activity_status = Column(String(16), nullable=False, default="unknown", index=True)
    last_activity_check = Column(DateTime, nullable=True)
    last_enriched_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False)
    last_updated = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint('character_name', 'realm', name='uq_guild_members_identity'),
        Index('ix_guild_members_activity', 'activity_status', 'last_login_at'),
    )

    def __repr__(self):
        return f"<GuildMember {self.character_name}-{self.realm} ({self.activity_status})>"


class SyncError(Base):
    """Append-only record of one failed per-member fetch.

    Rows are never updated. They are removed only by age-based pruning.
    """
    __tablename__ = "sync_errors"

    id = Column(String(36), primary_key=True)
    character_name = Column(String(64), nullable=False, index=True)
    realm = Column(String(64), nullable=False)
    error_type = Column(String(32), nullable=False, index=True)  # not-found, timeout, parse-error, ...
    error_message = Column(Text, nullable=True)
    service = Column(String(32), nullable=False)  # blizzard, raiderio, aggregator
    tier = Column(String(16), nullable=True)  # discovery, enrichment
    url_attempted = Column(Text, nullable=True)
    timestamp = Column(DateTime, nullable=False, index=True)


class SyncMetadata(Base):
    """Tracks last run status and counters for each sync tier."""
    __tablename__ = "sync_metadata"

    id = Column(String(36), primary_key=True)
    tier = Column(String(32), nullable=False, unique=True)  # discovery, enrichment, missing_data
    last_sync_started_at = Column(DateTime, nullable=True)
    last_sync_completed_at = Column(DateTime, nullable=True, index=True)
    last_sync_status = Column(String(16), nullable=True)  # success, partial, failed
    records_processed = Column(Integer, nullable=False, default=0)
    records_failed = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    sync_duration_ms = Column(Integer, nullable=True)
