"""
Provider adapters.

- BlizzardAdapter: roster, character summary, last-seen, achievements and PvP
- RaiderIOAdapter: gear item level, Mythic+ score, raid progression
"""
from guild_sync.services.sync.adapters.blizzard_adapter import BlizzardAdapter
from guild_sync.services.sync.adapters.raiderio_adapter import RaiderIOAdapter

__all__ = ["BlizzardAdapter", "RaiderIOAdapter"]
