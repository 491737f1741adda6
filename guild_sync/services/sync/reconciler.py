"""Roster membership reconciliation.

Diffs a freshly fetched roster against the identities already persisted.
Pure: the orchestrator applies the result (upsert joined, delete departed).
"""
import logging
from typing import Iterable, List

from guild_sync.services.sync.types import MemberIdentity, ReconcileResult, RosterEntry

logger = logging.getLogger(__name__)


def reconcile(
    fresh_roster: List[RosterEntry],
    persisted: Iterable[MemberIdentity]
) -> ReconcileResult:
    """
    Compute joined and departed members by (name, realm).

    Roster order is preserved for ``joined``. Duplicate roster rows for the
    same identity are collapsed to the first occurrence.
    """
    persisted_set = set(persisted)
    fresh_keys = set()
    joined: List[RosterEntry] = []

    for entry in fresh_roster:
        key = entry.identity
        if key in fresh_keys:
            logger.debug(f"Duplicate roster entry ignored: {key}")
            continue
        fresh_keys.add(key)
        if key not in persisted_set:
            joined.append(entry)

    departed = sorted(
        persisted_set - fresh_keys,
        key=lambda identity: (identity.realm, identity.name)
    )

    return ReconcileResult(joined=joined, departed=departed)
