"""Tests for RaiderIOAdapter and raid progress formatting.

Test Strategy:
1. Profile parsing: rounded item level and score, season, raid progress
2. Missing gear reported as None (triggers the Blizzard fallback)
3. 400 "could not find" and 404 both map to not-found
4. 429 feeds Retry-After into the rate limiter
5. Raid summary ordering and difficulty suffixes
"""
import httpx
import pytest

from guild_sync.services.sync.adapters.raiderio_adapter import (
    RaiderIOAdapter,
    current_raid_progress,
    summarize_raids,
)
from guild_sync.services.sync.rate_limiter import RateLimiter
from guild_sync.services.sync.types import (
    ErrorCategory,
    MemberIdentity,
    NotFoundError,
    ParseError,
    RateLimitedError,
)

KRABS = MemberIdentity("Krabs", "tarren-mill")

PROFILE = {
    "name": "Krabs",
    "class": "Warrior",
    "gear": {"item_level_equipped": 675.6},
    "mythic_plus_scores_by_season": [
        {"season": "season-tww-2", "scores": {"all": 2874.4}},
    ],
    "raid_progression": {
        "nerubar-palace": {"total_bosses": 8, "normal_bosses_killed": 8, "heroic_bosses_killed": 8,
                           "mythic_bosses_killed": 2},
        "liberation-of-undermine": {"total_bosses": 8, "normal_bosses_killed": 8,
                                    "heroic_bosses_killed": 5, "mythic_bosses_killed": 0},
    },
}


def make_adapter(settings, handler, limiter=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RaiderIOAdapter(settings, limiter or RateLimiter({}, default_interval=0), client=client)


class TestRaiderIOAdapter:
    """Tests for fetch_profile()."""

    @pytest.mark.asyncio
    async def test_fetch_profile(self, settings):
        """Should parse item level, Mythic+ and the current raid."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(dict(request.url.params))
            seen["path"] = request.url.path
            return httpx.Response(200, json=PROFILE)

        adapter = make_adapter(settings, handler)
        profile = await adapter.fetch_profile(KRABS)

        assert seen["path"] == "/api/v1/characters/profile"
        assert seen["region"] == "eu"
        assert seen["realm"] == "tarren-mill"
        assert seen["name"] == "Krabs"
        assert "raid_progression" in seen["fields"]
        assert profile.character_class == "Warrior"
        assert profile.item_level == 676
        assert profile.mythic_plus_score == 2874
        assert profile.mythic_plus_season == "season-tww-2"
        assert profile.raid_progress == "5/8 H"

    @pytest.mark.asyncio
    async def test_missing_gear_leaves_item_level_unreported(self, settings):
        """Should report None (not 0) when Raider.IO has no gear yet."""
        adapter = make_adapter(settings, lambda request: httpx.Response(
            200, json={"class": "Mage", "gear": {"item_level_equipped": 0}}
        ))

        profile = await adapter.fetch_profile(KRABS)

        assert profile.item_level is None
        assert profile.mythic_plus_score is None

    @pytest.mark.asyncio
    async def test_unknown_character_400(self, settings):
        """Should map Raider.IO's 400 'Could not find' to not-found."""
        adapter = make_adapter(settings, lambda request: httpx.Response(
            400, json={"statusCode": 400, "error": "Bad Request",
                       "message": "Could not find requested character"}
        ))

        with pytest.raises(NotFoundError) as exc_info:
            await adapter.fetch_profile(KRABS)
        assert exc_info.value.to_fetch_error().category == ErrorCategory.NOT_FOUND

    @pytest.mark.asyncio
    async def test_404_is_not_found(self, settings):
        """Should map 404 to not-found."""
        adapter = make_adapter(settings, lambda request: httpx.Response(404))

        with pytest.raises(NotFoundError):
            await adapter.fetch_profile(KRABS)

    @pytest.mark.asyncio
    async def test_429_pushes_rate_limiter(self, settings):
        """Should raise RateLimitedError and back off the limiter by Retry-After."""
        limiter = RateLimiter({}, default_interval=0, max_retry_after=60)
        adapter = make_adapter(
            settings,
            lambda request: httpx.Response(429, headers={"Retry-After": "12"}),
            limiter,
        )

        with pytest.raises(RateLimitedError) as exc_info:
            await adapter.fetch_profile(KRABS)

        assert exc_info.value.retry_after == 12
        assert "raiderio" in limiter._not_before

    @pytest.mark.asyncio
    async def test_invalid_json(self, settings):
        """Should raise ParseError on a non-JSON body."""
        adapter = make_adapter(settings, lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(ParseError):
            await adapter.fetch_profile(KRABS)


class TestRaidSummary:
    """Tests for raid progress formatting."""

    def test_highest_difficulty_wins(self):
        """Should report the highest difficulty with at least one kill."""
        assert current_raid_progress({
            "manaforge-omega": {"total_bosses": 8, "normal_bosses_killed": 8,
                                "heroic_bosses_killed": 8, "mythic_bosses_killed": 1},
        }) == "1/8 M"

    def test_current_tier_listed_without_kills(self):
        """Should show 0/N only for the current raid."""
        raids = summarize_raids({
            "manaforge-omega": {"total_bosses": 8},
            "nerubar-palace": {"total_bosses": 8},
        })

        assert [(r["key"], r["progress"]) for r in raids] == [("manaforge-omega", "0/8")]

    def test_sorted_by_priority_unknown_last(self):
        """Should order known raids newest first and unknown raids after."""
        raids = summarize_raids({
            "some-old-raid": {"total_bosses": 10, "normal_bosses_killed": 10},
            "nerubar-palace": {"total_bosses": 8, "normal_bosses_killed": 3},
            "liberation-of-undermine": {"total_bosses": 8, "heroic_bosses_killed": 2},
        })

        assert [r["key"] for r in raids] == ["liberation-of-undermine", "nerubar-palace", "some-old-raid"]
        assert raids[2]["name"] == "Some Old Raid"

    def test_empty(self):
        """Should return None when there is no raid data."""
        assert current_raid_progress({}) is None
