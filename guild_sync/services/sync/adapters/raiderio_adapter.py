"""Raider.IO adapter (primary profile provider).

Public, unauthenticated. Supplies gear item level, the current-season
Mythic+ score and raid progression. Raider.IO indexes characters with a lag,
so a character seen recently in game may come back with no gear data; that
is reported as a missing item level and the aggregator falls back to the
Blizzard profile for it.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from guild_sync.core.config import Settings
from guild_sync.services.core.base_api_adapter import BaseAPIAdapter, classify_response
from guild_sync.services.sync.rate_limiter import RateLimiter
from guild_sync.services.sync.types import (
    MemberIdentity,
    NotFoundError,
    ParseError,
    ProfileData,
    ProviderError,
)

logger = logging.getLogger(__name__)

PROFILE_FIELDS = "gear,mythic_plus_scores_by_season:current,raid_progression"

# Most recent tier first
RAID_PRIORITY = [
    'manaforge-omega',
    'liberation-of-undermine',
    'nerubar-palace',
    'blackrock-depths',
]

RAID_NAMES = {
    'nerubar-palace': 'Nerub-ar Palace',
    'liberation-of-undermine': 'Liberation of Undermine',
    'manaforge-omega': 'Manaforge Omega',
    'blackrock-depths': 'Blackrock Depths',
}


def format_raid_name(raid_key: str) -> str:
    return RAID_NAMES.get(raid_key) or raid_key.replace('-', ' ').title()


def summarize_raids(raid_progression: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Progress per raid, current tier first.

    The difficulty shown is the highest one with at least one kill
    (M, then H, then N). Raids without kills are only listed when they are
    the current tier.
    """
    raids = []
    for raid_key, data in (raid_progression or {}).items():
        total = data.get('total_bosses') or 0
        if total <= 0:
            continue

        progress = None
        for difficulty, suffix in (('mythic', 'M'), ('heroic', 'H'), ('normal', 'N')):
            killed = data.get(f'{difficulty}_bosses_killed') or 0
            if killed > 0:
                progress = f"{killed}/{total} {suffix}"
                break

        priority = RAID_PRIORITY.index(raid_key) if raid_key in RAID_PRIORITY else -1
        if progress is None:
            if priority != 0:
                continue
            progress = f"0/{total}"

        raids.append({
            'key': raid_key,
            'name': format_raid_name(raid_key),
            'progress': progress,
            'priority': priority,
        })

    # Known raids by priority, unknown ones after them in input order
    raids.sort(key=lambda r: (r['priority'] == -1, r['priority']))
    return raids


def current_raid_progress(raid_progression: Dict[str, Any]) -> Optional[str]:
    """Progress string for the highest-priority raid, e.g. "4/8 H"."""
    raids = summarize_raids(raid_progression)
    return raids[0]['progress'] if raids else None


class RaiderIOAdapter(BaseAPIAdapter):
    """Client for the Raider.IO character profile endpoint."""

    source = "raiderio"

    def __init__(
        self,
        settings: Settings,
        rate_limiter: RateLimiter,
        client: Optional[httpx.AsyncClient] = None
    ):
        super().__init__(rate_limiter, timeout=settings.HTTP_TIMEOUT_SECONDS, client=client)
        self.base_url = settings.RAIDERIO_BASE_URL.rstrip('/')
        self.region = settings.GUILD_REGION.lower()

    def _classify(self, response: httpx.Response, url: str) -> Optional[ProviderError]:
        # Raider.IO answers 400 "Could not find requested character" for unknown characters
        if response.status_code == 400 and 'could not find' in response.text.lower():
            return NotFoundError("Character not indexed", self.source, url, 400)
        return classify_response(response, self.source, url)

    async def fetch_profile(
        self,
        identity: MemberIdentity,
        lookup_handle: Optional[str] = None
    ) -> ProfileData:
        """
        Fetch gear, Mythic+ and raid data. ``lookup_handle`` is unused here
        (Raider.IO addresses characters by region/realm/name).
        """
        url = f"{self.base_url}/characters/profile"
        params = {
            'region': self.region,
            'realm': identity.realm,
            'name': identity.name,
            'fields': PROFILE_FIELDS,
        }
        data = await self._get_json(url, params=params)

        if not isinstance(data, dict):
            raise ParseError("Profile response is not an object", self.source, url)

        try:
            return self._parse_profile(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ParseError(f"Unexpected profile shape: {e!r}", self.source, url) from e

    @staticmethod
    def _parse_profile(data: Dict[str, Any]) -> ProfileData:
        profile = ProfileData(character_class=data.get('class'))

        item_level = (data.get('gear') or {}).get('item_level_equipped')
        if item_level:
            profile.item_level = int(round(float(item_level)))

        seasons = data.get('mythic_plus_scores_by_season') or []
        if seasons:
            current = seasons[0]
            score = (current.get('scores') or {}).get('all')
            if score is not None:
                profile.mythic_plus_score = int(round(float(score)))
            profile.mythic_plus_season = current.get('season')

        if data.get('raid_progression'):
            profile.raid_progress = current_raid_progress(data['raid_progression'])

        return profile
