"""Member profile aggregation across providers.

The aggregator walks an ordered list of strategies for one member:

1. ``raiderio`` (primary): gear, Mythic+ and raid progression
2. ``blizzard-profile`` (fallback): class, level and item level, only run
   while a field it can fill is still missing after the primary
3. ``blizzard-pvp`` (supplementary): achievements and ranked ladders,
   always run when secondary enrichment is enabled

Each attempt yields a FetchResult. The first successful value for a field
wins. ``merge_profile`` then folds the fetched profile into the stored record.

Merge rules:
- a field reported by the fetch overwrites the stored value
- a field not reported keeps the stored value (never regresses to null/0)
- ladder ratings not reported are reset to 0 only when the fetch reports a
  PvP season id different from the stored one; same for the Mythic+ score
  and its season
- current_pvp_rating is the max of the 2v2, 3v3 and RBG brackets
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from guild_sync.services.sync.types import (
    AggregationResult,
    AuthFailureError,
    ErrorCategory,
    FetchError,
    FetchResult,
    LADDER_FIELDS,
    MemberIdentity,
    ProfileData,
    ProviderError,
    SUMMARY_LADDER_FIELDS,
)

logger = logging.getLogger(__name__)

ProfileFetcher = Callable[[MemberIdentity, Optional[str]], Awaitable[ProfileData]]


@dataclass
class ProfileStrategy:
    """
    One provider attempt in the fallback chain.

    Attributes:
        name: Source name recorded on results and errors
        fetch: Coroutine function (identity, lookup_handle) -> ProfileData
        fills: Fields whose absence triggers this strategy. Empty means the
            strategy always runs.
    """
    name: str
    fetch: ProfileFetcher
    fills: Tuple[str, ...] = ()

    def should_run(self, profile: ProfileData) -> bool:
        if not self.fills:
            return True
        return any(getattr(profile, f) is None for f in self.fills)


def build_default_strategies(raiderio, blizzard, enable_secondary_enrichment: bool = True) -> List[ProfileStrategy]:
    """Standard Raider.IO -> Blizzard chain."""
    strategies = [
        ProfileStrategy(name="raiderio", fetch=raiderio.fetch_profile),
        ProfileStrategy(
            name="blizzard-profile",
            fetch=blizzard.fetch_profile,
            fills=("item_level", "character_class"),
        ),
    ]
    if enable_secondary_enrichment:
        strategies.append(
            ProfileStrategy(name="blizzard-pvp", fetch=blizzard.fetch_achievements_and_pvp)
        )
    return strategies


def summarize_failure(attempts: List[FetchResult]) -> FetchError:
    """
    Single representative error for a member whose attempts all failed.

    not-found only when every attempt was not-found; otherwise the first
    other error.
    """
    errors = [a.error for a in attempts if a.error is not None]
    if not errors:
        return FetchError(ErrorCategory.UNKNOWN, "aggregator", "No provider returned data")

    for error in errors:
        if error.category != ErrorCategory.NOT_FOUND:
            return error
    return errors[0]


class MemberAggregator:
    """Produces the best available profile for a member from several providers."""

    def __init__(self, strategies: List[ProfileStrategy]):
        if not strategies:
            raise ValueError("MemberAggregator needs at least one strategy")
        self.strategies = strategies

    async def aggregate(
        self,
        identity: MemberIdentity,
        lookup_handle: Optional[str] = None
    ) -> AggregationResult:
        """
        Run the strategy chain for one member.

        Raises:
            AuthFailureError: Credentials rejected after refresh. The cycle
                should abort rather than fail every member the same way.
        """
        profile = ProfileData()
        attempts: List[FetchResult] = []

        for strategy in self.strategies:
            if not strategy.should_run(profile):
                logger.debug(f"Skipping {strategy.name} for {identity}: nothing left to fill")
                continue

            try:
                fetched = await strategy.fetch(identity, lookup_handle)
            except AuthFailureError:
                raise
            except ProviderError as e:
                error = e.to_fetch_error()
                error.source = strategy.name
                attempts.append(FetchResult(source=strategy.name, error=error))
                logger.debug(f"{strategy.name} failed for {identity}: [{error.category.value}] {error.message}")
                continue

            attempts.append(FetchResult(source=strategy.name, profile=fetched))
            profile.fill_from(fetched)

        if profile.is_empty():
            return AggregationResult(
                identity=identity,
                error=summarize_failure(attempts),
                attempts=attempts,
            )

        return AggregationResult(identity=identity, profile=profile, attempts=attempts)


def merge_profile(prior: Dict[str, Any], fetched: ProfileData) -> Dict[str, Any]:
    """
    Fold a fetched partial profile into the stored values.

    Args:
        prior: Stored values keyed by column name
        fetched: Fields reported by this enrichment

    Returns:
        New dict of values to persist
    """
    merged = dict(prior)

    stored_season = prior.get("pvp_season_id")
    if (
        fetched.pvp_season_id is not None
        and stored_season is not None
        and fetched.pvp_season_id != stored_season
    ):
        logger.info(f"PvP season changed ({stored_season} -> {fetched.pvp_season_id}), resetting ladders")
        for name in LADDER_FIELDS:
            merged[name] = 0

    stored_mplus_season = prior.get("mythic_plus_season")
    if (
        fetched.mythic_plus_season is not None
        and stored_mplus_season is not None
        and fetched.mythic_plus_season != stored_mplus_season
    ):
        merged["mythic_plus_score"] = 0

    merged.update(fetched.present_fields())

    merged["current_pvp_rating"] = max(
        (merged.get(name) or 0) for name in SUMMARY_LADDER_FIELDS
    )
    return merged
