"""Blizzard Game Data / Profile API adapter.

Roster provider, secondary profile provider and last-seen source.

Every per-character call uses the ``key.href`` the roster returns for that
character. Guilds can span connected realms, and a URL rebuilt from the
guild's own realm silently points at the wrong character for members on
another realm. The name/realm URL is only a fallback for rows that were
stored without a handle.

All requests are authenticated with a bearer token from AuthTokenProvider.
A 401 invalidates the token and the request is retried exactly once.
"""
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, retry_if_exception_type

from guild_sync.core.config import Settings
from guild_sync.services.core.auth import AuthTokenProvider
from guild_sync.services.core.base_api_adapter import BaseAPIAdapter
from guild_sync.services.sync.rate_limiter import RateLimiter
from guild_sync.services.sync.types import (
    AuthFailureError,
    GuildNotFoundError,
    MemberIdentity,
    NotFoundError,
    ParseError,
    ProfileData,
    ProviderError,
    RosterEntry,
)
from guild_sync.utils.timezone import from_epoch_ms

logger = logging.getLogger(__name__)

CLASS_NAMES = {
    1: 'Warrior',
    2: 'Paladin',
    3: 'Hunter',
    4: 'Rogue',
    5: 'Priest',
    6: 'Death Knight',
    7: 'Shaman',
    8: 'Mage',
    9: 'Warlock',
    10: 'Monk',
    11: 'Druid',
    12: 'Demon Hunter',
    13: 'Evoker',
}

LADDER_BRACKETS = {
    '2v2': 'pvp_2v2_rating',
    '3v3': 'pvp_3v3_rating',
    'rbg': 'pvp_rbg_rating',
}


def slugify(value: str) -> str:
    """Realm / guild slug as used in API paths ("Chamber of Aspects" -> "chamber-of-aspects")."""
    value = value.strip().lower().replace("'", "")
    return re.sub(r"\s+", "-", value)


def class_name(class_id: Optional[int]) -> Optional[str]:
    return CLASS_NAMES.get(class_id)


class BlizzardAdapter(BaseAPIAdapter):
    """Authenticated client for the Blizzard roster and character endpoints."""

    source = "blizzard"

    def __init__(
        self,
        settings: Settings,
        rate_limiter: RateLimiter,
        token_provider: AuthTokenProvider,
        client: Optional[httpx.AsyncClient] = None
    ):
        super().__init__(rate_limiter, timeout=settings.HTTP_TIMEOUT_SECONDS, client=client)
        self.token_provider = token_provider
        self.region = settings.GUILD_REGION.lower()
        self.locale = settings.LOCALE
        self.guild_name = settings.GUILD_NAME
        self.guild_realm = settings.GUILD_REALM
        self.base_url = f"https://{self.region}.api.blizzard.com"

    @property
    def namespace(self) -> str:
        return f"profile-{self.region}"

    def _params(self) -> Dict[str, str]:
        return {"namespace": self.namespace, "locale": self.locale}

    async def _authorized_get(self, url: str, params: Optional[Dict[str, Any]] = None, retry_transient: bool = False) -> Any:
        """
        GET with a bearer token. On 401/403 the token is refreshed once and
        the request retried once; a second auth failure propagates.
        """
        fetch = self._get_json_with_retry if retry_transient else self._get_json

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(2),
            retry=retry_if_exception_type(AuthFailureError),
            before_sleep=lambda state: self.token_provider.invalidate(),
            reraise=True,
        ):
            with attempt:
                token = await self.token_provider.get_token()
                return await fetch(url, params=params, headers={"Authorization": f"Bearer {token}"})

        # A StopAsyncIteration inside the attempt ends the loop without a result
        raise ProviderError("Authorized request ended without a response", self.source, url)

    # -------------------------------------------------------------------------
    # Roster
    # -------------------------------------------------------------------------

    async def fetch_roster(self) -> List[RosterEntry]:
        """
        Fetch the configured guild's roster.

        Raises:
            GuildNotFoundError: The guild does not exist (terminal for the cycle)
            AuthFailureError: Credentials rejected after one refresh
            ProviderError: Any other failure
        """
        realm_slug = slugify(self.guild_realm)
        guild_slug = slugify(self.guild_name)
        url = f"{self.base_url}/data/wow/guild/{realm_slug}/{guild_slug}/roster"

        try:
            data = await self._authorized_get(url, params=self._params(), retry_transient=True)
        except NotFoundError as e:
            raise GuildNotFoundError(
                f"Guild '{self.guild_name}' not found on {realm_slug}-{self.region}",
                self.source, url, e.status_code
            ) from e

        try:
            members = data["members"]
            roster = [self._parse_roster_member(m) for m in members]
        except (KeyError, TypeError) as e:
            raise ParseError(f"Unexpected roster shape: {e!r}", self.source, url) from e

        logger.info(f"📋 Roster fetched: {len(roster)} members in {self.guild_name}")
        return roster

    @staticmethod
    def _parse_roster_member(member: Dict[str, Any]) -> RosterEntry:
        character = member["character"]
        return RosterEntry(
            name=character["name"],
            realm=character["realm"]["slug"],
            level=character.get("level"),
            character_class=class_name((character.get("playable_class") or {}).get("id")),
            lookup_handle=(character.get("key") or {}).get("href"),
        )

    # -------------------------------------------------------------------------
    # Per-character endpoints
    # -------------------------------------------------------------------------

    def character_url(self, identity: MemberIdentity, lookup_handle: Optional[str] = None) -> str:
        """Base URL for a character, from its lookup handle when available."""
        if lookup_handle:
            return lookup_handle.split("?", 1)[0]
        return (
            f"{self.base_url}/profile/wow/character/"
            f"{quote(identity.realm.lower())}/{quote(identity.name.lower())}"
        )

    async def _character_summary(self, identity: MemberIdentity, lookup_handle: Optional[str]) -> Dict[str, Any]:
        return await self._authorized_get(self.character_url(identity, lookup_handle), params=self._params())

    async def fetch_last_seen(
        self,
        identity: MemberIdentity,
        lookup_handle: Optional[str] = None
    ) -> Optional[datetime]:
        """
        Last login time, or None when Blizzard has no record of the character.

        A 404 here is the normal "unknown activity" case, not a failure.
        """
        try:
            data = await self._character_summary(identity, lookup_handle)
        except NotFoundError:
            logger.debug(f"No profile for {identity}, activity unknown")
            return None

        url = self.character_url(identity, lookup_handle)
        if not isinstance(data, dict):
            raise ParseError("Character summary is not an object", self.source, url)
        try:
            return from_epoch_ms(data.get("last_login_timestamp"))
        except (TypeError, ValueError, OverflowError, OSError) as e:
            raise ParseError(f"Invalid last_login_timestamp: {e!r}", self.source, url) from e

    async def fetch_profile(
        self,
        identity: MemberIdentity,
        lookup_handle: Optional[str] = None
    ) -> ProfileData:
        """Class, level and equipped item level from the character summary."""
        data = await self._character_summary(identity, lookup_handle)
        try:
            item_level = data.get("equipped_item_level") or data.get("average_item_level")
            return ProfileData(
                character_class=(data.get("character_class") or {}).get("name"),
                level=data.get("level"),
                item_level=int(item_level) if item_level else None,
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise ParseError(
                f"Unexpected character summary shape: {e!r}",
                self.source, self.character_url(identity, lookup_handle)
            ) from e

    async def fetch_achievements_and_pvp(
        self,
        identity: MemberIdentity,
        lookup_handle: Optional[str] = None
    ) -> ProfileData:
        """
        Achievement points and ranked-ladder ratings.

        Each sub-request is independent: a missing bracket just leaves that
        field unreported. If nothing at all could be read, the first real
        failure is raised (or NotFoundError when every request was a 404).
        """
        base = self.character_url(identity, lookup_handle)
        profile = ProfileData()
        errors: List[ProviderError] = []

        async def attempt(url: str, params: Optional[Dict[str, str]] = None) -> Optional[Any]:
            try:
                return await self._authorized_get(url, params=params)
            except AuthFailureError:
                raise
            except ProviderError as e:
                errors.append(e)
                return None

        try:
            await self._collect_achievements_and_pvp(base, profile, attempt)
        except (AttributeError, TypeError, ValueError) as e:
            raise ParseError(f"Unexpected PvP or achievements shape: {e!r}", self.source, base) from e

        if profile.is_empty() and errors:
            real_errors = [e for e in errors if not isinstance(e, NotFoundError)]
            raise real_errors[0] if real_errors else errors[0]

        return profile

    async def _collect_achievements_and_pvp(self, base: str, profile: ProfileData, attempt) -> None:
        achievements = await attempt(f"{base}/achievements", self._params())
        if isinstance(achievements, dict) and achievements.get("total_points") is not None:
            profile.achievement_points = int(achievements["total_points"])

        season_ids = []
        for bracket, field_name in LADDER_BRACKETS.items():
            data = await attempt(f"{base}/pvp-bracket/{bracket}", self._params())
            if isinstance(data, dict):
                setattr(profile, field_name, int(data.get("rating") or 0))
                season_ids.append(self._season_id(data))

        summary = await attempt(f"{base}/pvp-summary", self._params())
        if isinstance(summary, dict):
            hrefs = [
                (b or {}).get("href", "")
                for b in summary.get("brackets") or []
            ]
            shuffle = [h for h in hrefs if "/pvp-bracket/shuffle-" in h]
            blitz = [h for h in hrefs if "/pvp-bracket/blitz-" in h]

            for href in shuffle:
                data = await attempt(href, {"locale": self.locale})
                if isinstance(data, dict):
                    rating = int(data.get("rating") or 0)
                    best = int(data.get("season_best_rating") or rating)
                    profile.solo_shuffle_rating = max(profile.solo_shuffle_rating or 0, rating)
                    profile.max_solo_shuffle_rating = max(profile.max_solo_shuffle_rating or 0, best)
                    season_ids.append(self._season_id(data))

            for href in blitz:
                data = await attempt(href, {"locale": self.locale})
                if isinstance(data, dict):
                    profile.rbg_blitz_rating = max(profile.rbg_blitz_rating or 0, int(data.get("rating") or 0))
                    season_ids.append(self._season_id(data))

        known_seasons = [s for s in season_ids if s is not None]
        if known_seasons:
            profile.pvp_season_id = max(known_seasons)

    @staticmethod
    def _season_id(data: Dict[str, Any]) -> Optional[int]:
        season = data.get("season")
        if isinstance(season, dict) and season.get("id") is not None:
            return int(season["id"])
        return None

    async def close(self):
        await super().close()
        await self.token_provider.close()
