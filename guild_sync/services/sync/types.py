"""
Shared types for the guild sync layer.

Value objects passed between the provider adapters, the aggregator, the
reconciler and the orchestrator, plus the provider error hierarchy.
"""
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from guild_sync.utils.timezone import utcnow


class ErrorCategory(str, Enum):
    """Classification of a failed provider call."""
    NOT_FOUND = "not-found"
    TIMEOUT = "timeout"
    PARSE_ERROR = "parse-error"
    RATE_LIMITED = "rate-limited"
    AUTH_FAILURE = "auth-failure"
    UNKNOWN = "unknown"


class ActivityTier(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    UNKNOWN = "unknown"


class SyncTier(str, Enum):
    DISCOVERY = "discovery"
    ENRICHMENT = "enrichment"


# =============================================================================
# ERRORS
# =============================================================================

class GuildSyncError(Exception):
    """Base class for synchronizer errors."""


class ProviderError(GuildSyncError):
    """A classified failure returned by an external provider."""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        source: str,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.source = source
        self.url = url
        self.status_code = status_code

    def to_fetch_error(self) -> "FetchError":
        return FetchError(
            category=self.category,
            source=self.source,
            message=self.message,
            url=self.url,
        )


class NotFoundError(ProviderError):
    category = ErrorCategory.NOT_FOUND


class RateLimitedError(ProviderError):
    category = ErrorCategory.RATE_LIMITED

    def __init__(self, message: str, source: str, url: Optional[str] = None,
                 status_code: Optional[int] = 429, retry_after: Optional[float] = None):
        super().__init__(message, source, url, status_code)
        self.retry_after = retry_after


class ProviderTimeoutError(ProviderError):
    category = ErrorCategory.TIMEOUT


class ParseError(ProviderError):
    category = ErrorCategory.PARSE_ERROR


class AuthFailureError(ProviderError):
    category = ErrorCategory.AUTH_FAILURE


class GuildNotFoundError(NotFoundError):
    """The configured guild does not exist. Terminal for a discovery cycle."""


class RosterFetchError(GuildSyncError):
    """The roster could not be used (e.g. provider returned no members)."""


# =============================================================================
# VALUE OBJECTS
# =============================================================================

@dataclass(frozen=True)
class MemberIdentity:
    """Unique member key."""
    name: str
    realm: str

    def __str__(self):
        return f"{self.name}-{self.realm}"


@dataclass
class RosterEntry:
    """One roster row as returned by the roster provider."""
    name: str
    realm: str
    level: Optional[int] = None
    character_class: Optional[str] = None
    lookup_handle: Optional[str] = None

    @property
    def identity(self) -> MemberIdentity:
        return MemberIdentity(self.name, self.realm)


@dataclass
class ProfileData:
    """
    Partial member profile returned by a single provider call.

    ``None`` means "this call did not report the field". Zero is a real value.
    """
    character_class: Optional[str] = None
    level: Optional[int] = None
    item_level: Optional[int] = None
    mythic_plus_score: Optional[int] = None
    mythic_plus_season: Optional[str] = None
    raid_progress: Optional[str] = None
    achievement_points: Optional[int] = None
    pvp_2v2_rating: Optional[int] = None
    pvp_3v3_rating: Optional[int] = None
    pvp_rbg_rating: Optional[int] = None
    solo_shuffle_rating: Optional[int] = None
    max_solo_shuffle_rating: Optional[int] = None
    rbg_blitz_rating: Optional[int] = None
    pvp_season_id: Optional[int] = None

    def present_fields(self) -> Dict[str, Any]:
        """Fields this profile actually reports."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }

    def fill_from(self, other: "ProfileData") -> None:
        """Copy fields from ``other`` that are still missing here."""
        for name, value in other.present_fields().items():
            if getattr(self, name) is None:
                setattr(self, name, value)

    def is_empty(self) -> bool:
        return not self.present_fields()


# Ranked-ladder fields reset together when the PvP season changes
LADDER_FIELDS = (
    "pvp_2v2_rating",
    "pvp_3v3_rating",
    "pvp_rbg_rating",
    "solo_shuffle_rating",
    "max_solo_shuffle_rating",
    "rbg_blitz_rating",
)

# Brackets folded into current_pvp_rating
SUMMARY_LADDER_FIELDS = ("pvp_2v2_rating", "pvp_3v3_rating", "pvp_rbg_rating")

PERFORMANCE_FIELDS = tuple(
    f.name for f in fields(ProfileData) if f.name not in ("character_class", "level")
)


@dataclass
class FetchError:
    category: ErrorCategory
    source: str
    message: str
    url: Optional[str] = None


@dataclass
class FetchResult:
    """Outcome of one provider attempt: exactly one of profile/error is set."""
    source: str
    profile: Optional[ProfileData] = None
    error: Optional[FetchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.profile is not None


@dataclass
class AggregationResult:
    identity: MemberIdentity
    profile: Optional[ProfileData] = None
    error: Optional[FetchError] = None
    attempts: List[FetchResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.profile is not None


@dataclass
class ReconcileResult:
    joined: List[RosterEntry] = field(default_factory=list)
    departed: List[MemberIdentity] = field(default_factory=list)


@dataclass
class SyncEvent:
    """Progress event published after each member and at the end of a run."""
    tier: str
    index: int
    total: int
    processed: int
    errors: int
    member: Optional[str] = None
    finished: bool = False
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tier': self.tier,
            'index': self.index,
            'total': self.total,
            'processed': self.processed,
            'errors': self.errors,
            'member': self.member,
            'finished': self.finished,
            'timestamp': self.timestamp.isoformat(),
        }
