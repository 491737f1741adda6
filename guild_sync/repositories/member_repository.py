"""
Guild member repository.

Upserts are keyed by the unique (character_name, realm) pair, so calling
them twice with the same data leaves a single row.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import desc, func, or_
from sqlalchemy.orm import Session

from guild_sync.models import GuildMember
from guild_sync.repositories.base import BaseRepository
from guild_sync.services.sync.types import (
    ActivityTier, MemberIdentity, PERFORMANCE_FIELDS, RosterEntry
)
from guild_sync.utils.timezone import utcnow

# Columns written by enrichment (ProfileData fields plus the derived summary)
PROFILE_COLUMNS = ("character_class", "level") + PERFORMANCE_FIELDS + ("current_pvp_rating",)


class MemberRepository(BaseRepository[GuildMember]):
    """Data access for guild_members."""

    def __init__(self, db: Session):
        super().__init__(GuildMember, db)

    def find_by_identity(self, identity: MemberIdentity) -> Optional[GuildMember]:
        return self.where_first(
            GuildMember.character_name == identity.name,
            GuildMember.realm == identity.realm,
        )

    def upsert_member(self, record: Dict[str, Any]) -> GuildMember:
        """
        Insert or update a member keyed by (character_name, realm).

        New rows start with zero performance fields. Keys whose value is None
        are ignored on update so a missing value never clears a stored one.
        """
        identity = MemberIdentity(record["character_name"], record["realm"])
        now = record.get("last_updated") or utcnow()
        member = self.find_by_identity(identity)

        if member is None:
            member = self.create(
                character_name=identity.name,
                realm=identity.realm,
                item_level=0,
                mythic_plus_score=0,
                pvp_2v2_rating=0,
                pvp_3v3_rating=0,
                pvp_rbg_rating=0,
                solo_shuffle_rating=0,
                max_solo_shuffle_rating=0,
                rbg_blitz_rating=0,
                current_pvp_rating=0,
                achievement_points=0,
                activity_status=ActivityTier.UNKNOWN.value,
                created_at=now,
                last_updated=now,
            )

        for key, value in record.items():
            if key in ("character_name", "realm") or value is None:
                continue
            setattr(member, key, value)

        member.last_updated = now
        self.db.flush()
        return member

    def upsert_identity(self, entry: RosterEntry, now: Optional[datetime] = None) -> GuildMember:
        """Apply the roster-owned fields of one roster entry."""
        return self.upsert_member({
            "character_name": entry.name,
            "realm": entry.realm,
            "character_class": entry.character_class,
            "level": entry.level,
            "lookup_handle": entry.lookup_handle,
            "last_updated": now,
        })

    def list_member_identities(self) -> List[MemberIdentity]:
        rows = self.db.query(GuildMember.character_name, GuildMember.realm).all()
        return [MemberIdentity(name, realm) for name, realm in rows]

    def delete_members(self, identities: Iterable[MemberIdentity]) -> int:
        """Hard-delete members by identity. Returns the number of rows removed."""
        deleted = 0
        for identity in identities:
            deleted += self.query().filter(
                GuildMember.character_name == identity.name,
                GuildMember.realm == identity.realm,
            ).delete(synchronize_session=False)
        return deleted

    def list_members_with_recent_activity(
        self,
        window_days: int,
        now: Optional[datetime] = None
    ) -> List[GuildMember]:
        """Members whose last login falls within the window, most recent first."""
        cutoff = (now or utcnow()) - timedelta(days=window_days)
        return self.query().filter(
            GuildMember.last_login_at.isnot(None),
            GuildMember.last_login_at >= cutoff,
        ).order_by(desc(GuildMember.last_login_at)).all()

    def list_members_missing_data(
        self,
        window_days: int,
        now: Optional[datetime] = None
    ) -> List[GuildMember]:
        """Recently active members that were never enriched or have no item level."""
        cutoff = (now or utcnow()) - timedelta(days=window_days)
        return self.query().filter(
            GuildMember.last_login_at.isnot(None),
            GuildMember.last_login_at >= cutoff,
            or_(
                GuildMember.last_enriched_at.is_(None),
                GuildMember.item_level == 0,
            ),
        ).order_by(desc(GuildMember.last_login_at)).all()

    def last_seen_by_identity(self) -> Dict[MemberIdentity, Optional[datetime]]:
        rows = self.db.query(
            GuildMember.character_name, GuildMember.realm, GuildMember.last_login_at
        ).all()
        return {MemberIdentity(name, realm): seen for name, realm, seen in rows}

    def bulk_update_activity(
        self,
        updates: List[Tuple[MemberIdentity, Optional[datetime], ActivityTier]],
        checked_at: datetime
    ) -> int:
        """
        Persist last-seen timestamps and activity tiers.

        Returns:
            Number of members updated
        """
        if not updates:
            return 0

        members = {
            MemberIdentity(m.character_name, m.realm): m
            for m in self.query().all()
        }
        updated = 0
        for identity, last_seen, tier in updates:
            member = members.get(identity)
            if member is None:
                continue
            member.last_login_at = last_seen
            member.activity_status = tier.value
            member.last_activity_check = checked_at
            updated += 1

        self.db.flush()
        return updated

    @staticmethod
    def profile_fields(member: GuildMember) -> Dict[str, Any]:
        """Stored enrichment-owned values as a plain dict."""
        return {column: getattr(member, column) for column in PROFILE_COLUMNS}

    def apply_profile(
        self,
        member: GuildMember,
        values: Dict[str, Any],
        enriched_at: datetime
    ) -> GuildMember:
        for column in PROFILE_COLUMNS:
            if column in values:
                setattr(member, column, values[column])
        member.last_enriched_at = enriched_at
        member.last_updated = enriched_at
        self.db.flush()
        return member

    def snapshot(
        self,
        activity: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[GuildMember]:
        """Read-only view for presentation, best item level first."""
        query = self.query()
        if activity:
            query = query.filter(GuildMember.activity_status == activity)
        query = query.order_by(desc(GuildMember.item_level), GuildMember.character_name)
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def count_by_activity(self) -> Dict[str, int]:
        rows = self.db.query(
            GuildMember.activity_status, func.count(GuildMember.id)
        ).group_by(GuildMember.activity_status).all()
        counts = {tier.value: 0 for tier in ActivityTier}
        counts.update({status: count for status, count in rows})
        return counts
