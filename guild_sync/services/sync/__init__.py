"""
Guild Sync Service

Keeps the stored guild snapshot in line with the game's providers.

Key components:
- Adapters: Blizzard (roster, last login, PvP) and Raider.IO (gear, Mythic+, raids)
- Aggregator: Provider fallback chain and merge rules
- Reconciler / Activity: Membership diff and activity tiers
- Orchestrator: Discovery and enrichment tiers, monitoring
"""
