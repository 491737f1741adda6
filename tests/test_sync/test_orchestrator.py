"""Integration tests for SyncOrchestrator.

Test Strategy:
1. run_discovery(): upsert, reconcile, delete departed, classify activity
2. Roster and auth failures abort the cycle as critical
3. Per-member failures are isolated (exactly one SyncError each)
4. run_enrichment(): merge into stored values, timeouts, unexpected errors
5. Per-tier mutual exclusion: overlapping triggers are dropped
6. Error threshold alerts, progress events, graceful shutdown
7. get_sync_status() health

Each test follows the pattern:
- Given: In-memory database and provider doubles (AsyncMock)
- When: An orchestrator run is awaited
- Then: Result dict, database state and collaborator calls
"""
import asyncio
import sys
from datetime import timedelta
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy.orm import Session

sys.path.insert(0, str(Path(__file__).parent.parent))
from conftest import NOW, create_member, make_settings

from guild_sync.models import GuildMember, SyncError, SyncMetadata
from guild_sync.services.sync.events import ProgressPublisher, RecentEventsListener
from guild_sync.services.sync.orchestrator import SyncOrchestrator
from guild_sync.services.sync.types import (
    AggregationResult,
    AuthFailureError,
    ErrorCategory,
    FetchError,
    GuildNotFoundError,
    ProfileData,
    ProviderTimeoutError,
    RosterEntry,
)

REALM = "tarren-mill"


def roster(*names):
    return [
        RosterEntry(name=n, realm=REALM, level=80, character_class="Warrior",
                    lookup_handle=f"https://eu.api.blizzard.com/profile/wow/character/{REALM}/{n.lower()}")
        for n in names
    ]


def make_roster_provider(members, last_seen=None):
    """Roster provider double: fixed roster, last-seen from a dict or callable."""
    provider = Mock()
    provider.source = "blizzard"
    provider.fetch_roster = AsyncMock(return_value=members)

    async def fetch_last_seen(identity, lookup_handle=None):
        value = (last_seen or {}).get(identity.name, NOW - timedelta(days=1))
        if isinstance(value, Exception):
            raise value
        return value

    provider.fetch_last_seen = AsyncMock(side_effect=fetch_last_seen)
    return provider


def make_aggregator(profiles=None):
    """Aggregator double returning a profile (or error) per member name."""
    aggregator = Mock()

    async def aggregate(identity, lookup_handle=None):
        value = (profiles or {}).get(identity.name, ProfileData(item_level=670))
        if isinstance(value, BaseException):
            raise value
        if isinstance(value, FetchError):
            return AggregationResult(identity=identity, error=value)
        return AggregationResult(identity=identity, profile=value)

    aggregator.aggregate = AsyncMock(side_effect=aggregate)
    return aggregator


@pytest.fixture
def events():
    return RecentEventsListener(maxlen=100)


@pytest.fixture
def make_orchestrator(session_factory, mock_notifier, events):
    def factory(roster_provider=None, aggregator=None, **settings_overrides):
        return SyncOrchestrator(
            settings=make_settings(**settings_overrides),
            session_factory=session_factory,
            roster_provider=roster_provider or make_roster_provider(roster("Krabs")),
            aggregator=aggregator or make_aggregator(),
            notifier=mock_notifier,
            publisher=ProgressPublisher([events]),
            clock=lambda: NOW,
        )
    return factory


class TestDiscovery:
    """Tests for run_discovery()."""

    # Roster reconciliation
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_first_discovery_creates_members(self, db_session: Session, make_orchestrator):
        """Should create one row per roster member and classify activity."""
        provider = make_roster_provider(
            roster("Krabs", "Sandy", "Patrick"),
            last_seen={"Sandy": NOW - timedelta(days=45), "Patrick": None},
        )
        orchestrator = make_orchestrator(roster_provider=provider)

        result = await orchestrator.run_discovery()

        assert result['success'] is True
        assert result['roster_size'] == 3
        assert result['joined'] == 3
        assert result['departed'] == 0
        assert result['activity'] == {'active': 1, 'inactive': 1, 'unknown': 1}

        status = {m.character_name: m.activity_status for m in db_session.query(GuildMember).all()}
        assert status == {'Krabs': 'active', 'Sandy': 'inactive', 'Patrick': 'unknown'}

    @pytest.mark.asyncio
    async def test_consecutive_discoveries_are_idempotent(self, db_session: Session, make_orchestrator):
        """Should leave exactly one row per identity after two identical runs."""
        provider = make_roster_provider(roster("Krabs", "Sandy"))
        orchestrator = make_orchestrator(roster_provider=provider)

        await orchestrator.run_discovery()
        second = await orchestrator.run_discovery()

        assert second['joined'] == 0
        assert db_session.query(GuildMember).count() == 2

    @pytest.mark.asyncio
    async def test_departed_member_deleted_once(self, db_session: Session, make_orchestrator):
        """Should hard-delete a member missing from the next roster, exactly once."""
        provider = make_roster_provider(roster("Krabs", "Sandy"))
        orchestrator = make_orchestrator(roster_provider=provider)
        await orchestrator.run_discovery()

        provider.fetch_roster.return_value = roster("Krabs")
        second = await orchestrator.run_discovery()
        third = await orchestrator.run_discovery()

        assert second['departed'] == 1
        assert third['departed'] == 0
        assert [m.character_name for m in db_session.query(GuildMember).all()] == ['Krabs']

    @pytest.mark.asyncio
    async def test_roster_handle_is_stored(self, db_session: Session, make_orchestrator):
        """Should persist the lookup handle used by later per-member calls."""
        await make_orchestrator().run_discovery()

        member = db_session.query(GuildMember).one()
        assert member.lookup_handle.endswith("/tarren-mill/krabs")

    # Failures
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_roster_failure_is_critical(self, db_session: Session, make_orchestrator, mock_notifier):
        """Should abort without touching members and send a critical alert."""
        create_member(db_session, "Krabs", last_login_at=NOW - timedelta(days=1))
        provider = make_roster_provider([])
        provider.fetch_roster.side_effect = GuildNotFoundError("Guild not found", "blizzard")
        orchestrator = make_orchestrator(roster_provider=provider)

        result = await orchestrator.run_discovery()

        assert result['success'] is False
        assert result['critical'] is True
        assert result['error_type'] == 'not-found'
        assert db_session.query(GuildMember).count() == 1
        assert db_session.query(SyncError).count() == 0
        mock_notifier.notify_critical_failure.assert_called_once()

        metadata = db_session.query(SyncMetadata).filter(SyncMetadata.tier == 'discovery').one()
        assert metadata.last_sync_status == 'failed'

    @pytest.mark.asyncio
    async def test_empty_roster_is_critical(self, db_session: Session, make_orchestrator, mock_notifier):
        """Should never treat an empty roster as 'everyone left'."""
        create_member(db_session, "Krabs")
        orchestrator = make_orchestrator(roster_provider=make_roster_provider([]))

        result = await orchestrator.run_discovery()

        assert result['critical'] is True
        assert db_session.query(GuildMember).count() == 1
        mock_notifier.notify_critical_failure.assert_called_once()

    @pytest.mark.asyncio
    async def test_member_failure_is_isolated(self, db_session: Session, make_orchestrator):
        """Should record one error, keep the stored last-seen, and continue."""
        known = NOW - timedelta(days=3)
        create_member(db_session, "Sandy", last_login_at=known, activity_status="active")
        provider = make_roster_provider(
            roster("Krabs", "Sandy", "Patrick"),
            last_seen={"Sandy": ProviderTimeoutError("timed out", "blizzard")},
        )
        orchestrator = make_orchestrator(roster_provider=provider)

        result = await orchestrator.run_discovery()

        assert result['success'] is True
        assert result['status'] == 'partial'
        assert result['processed'] == 2
        assert result['failed'] == 1

        errors = db_session.query(SyncError).all()
        assert len(errors) == 1
        assert errors[0].character_name == "Sandy"
        assert errors[0].error_type == "timeout"

        db_session.expire_all()
        sandy = db_session.query(GuildMember).filter(GuildMember.character_name == "Sandy").one()
        assert sandy.last_login_at == known
        assert sandy.activity_status == "active"

    @pytest.mark.asyncio
    async def test_unexpected_member_error_is_isolated(self, db_session: Session, make_orchestrator):
        """Should record an unclassified last-seen failure and still check the rest."""
        known = NOW - timedelta(days=40)
        create_member(db_session, "Sandy", last_login_at=known, activity_status="inactive")
        provider = make_roster_provider(
            roster("Krabs", "Sandy", "Patrick"),
            last_seen={"Sandy": TypeError("unsupported operand type(s) for /: 'str' and 'int'")},
        )
        orchestrator = make_orchestrator(roster_provider=provider)

        result = await orchestrator.run_discovery()

        assert result['success'] is True
        assert result['processed'] == 2
        assert result['failed'] == 1
        assert provider.fetch_last_seen.await_count == 3

        error = db_session.query(SyncError).one()
        assert error.character_name == "Sandy"
        assert error.error_type == "unknown"

        db_session.expire_all()
        status = {m.character_name: m.activity_status for m in db_session.query(GuildMember).all()}
        assert status == {'Krabs': 'active', 'Sandy': 'inactive', 'Patrick': 'active'}

    @pytest.mark.asyncio
    async def test_auth_failure_aborts_cycle(self, db_session: Session, make_orchestrator, mock_notifier):
        """Should stop the activity loop on credential failure."""
        provider = make_roster_provider(
            roster("Krabs", "Sandy", "Patrick"),
            last_seen={"Sandy": AuthFailureError("401", "blizzard", status_code=401)},
        )
        orchestrator = make_orchestrator(roster_provider=provider)

        result = await orchestrator.run_discovery()

        assert result['critical'] is True
        assert result['error_type'] == 'auth-failure'
        assert provider.fetch_last_seen.await_count == 2
        mock_notifier.notify_critical_failure.assert_called_once()


class TestEnrichment:
    """Tests for run_enrichment()."""

    # Merge and persistence
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_enriches_recently_active_members(self, db_session: Session, make_orchestrator, active_members):
        """Should merge fetched profiles into every active member."""
        create_member(db_session, "Idle", last_login_at=NOW - timedelta(days=60), activity_status="inactive")
        aggregator = make_aggregator({
            "Krabs": ProfileData(item_level=676, pvp_3v3_rating=1800, pvp_season_id=39),
        })
        orchestrator = make_orchestrator(aggregator=aggregator)

        result = await orchestrator.run_enrichment()

        assert result['success'] is True
        assert result['total'] == 3
        assert result['processed'] == 3
        assert aggregator.aggregate.await_count == 3

        db_session.expire_all()
        krabs = db_session.query(GuildMember).filter(GuildMember.character_name == "Krabs").one()
        assert krabs.item_level == 676
        assert krabs.current_pvp_rating == 1800
        assert krabs.last_enriched_at == NOW

        idle = db_session.query(GuildMember).filter(GuildMember.character_name == "Idle").one()
        assert idle.last_enriched_at is None

    @pytest.mark.asyncio
    async def test_partial_fetch_keeps_stored_values(self, db_session: Session, make_orchestrator):
        """Should never null or zero a stored field the fetch did not report."""
        create_member(db_session, "Krabs", last_login_at=NOW - timedelta(days=1),
                      item_level=670, mythic_plus_score=2500, raid_progress="6/8 H")
        orchestrator = make_orchestrator(aggregator=make_aggregator({
            "Krabs": ProfileData(pvp_3v3_rating=1800),
        }))

        await orchestrator.run_enrichment()

        db_session.expire_all()
        krabs = db_session.query(GuildMember).one()
        assert krabs.item_level == 670
        assert krabs.mythic_plus_score == 2500
        assert krabs.raid_progress == "6/8 H"
        assert krabs.pvp_3v3_rating == 1800

    # Failure isolation
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_single_member_failure_isolated(self, db_session: Session, make_orchestrator, active_members):
        """Should write exactly one SyncError and still enrich the others."""
        orchestrator = make_orchestrator(aggregator=make_aggregator({
            "Sandy": FetchError(ErrorCategory.PARSE_ERROR, "raiderio", "unexpected shape"),
        }))

        result = await orchestrator.run_enrichment()

        assert result['processed'] == 2
        assert result['failed'] == 1
        assert result['status'] == 'partial'

        errors = db_session.query(SyncError).all()
        assert len(errors) == 1
        assert errors[0].character_name == "Sandy"
        assert errors[0].error_type == "parse-error"
        assert errors[0].tier == "enrichment"

    @pytest.mark.asyncio
    async def test_member_timeout(self, db_session: Session, make_orchestrator):
        """Should record a timeout for a hung member and move on."""
        create_member(db_session, "Slow", last_login_at=NOW - timedelta(days=1))
        create_member(db_session, "Fast", last_login_at=NOW - timedelta(days=2))
        aggregator = make_aggregator()
        fast = aggregator.aggregate.side_effect

        async def aggregate(identity, lookup_handle=None):
            if identity.name == "Slow":
                await asyncio.sleep(5)
            return await fast(identity, lookup_handle)

        aggregator.aggregate = AsyncMock(side_effect=aggregate)
        orchestrator = make_orchestrator(aggregator=aggregator, MEMBER_TIMEOUT_SECONDS=0.05)

        result = await orchestrator.run_enrichment()

        assert result['processed'] == 1
        error = db_session.query(SyncError).one()
        assert error.character_name == "Slow"
        assert error.error_type == "timeout"

    @pytest.mark.asyncio
    async def test_unexpected_exception_recorded_as_unknown(self, db_session: Session, make_orchestrator, active_members):
        """Should turn a programming error for one member into an 'unknown' SyncError."""
        orchestrator = make_orchestrator(aggregator=make_aggregator({"Krabs": KeyError("gear")}))

        result = await orchestrator.run_enrichment()

        assert result['processed'] == 2
        assert db_session.query(SyncError).one().error_type == "unknown"

    @pytest.mark.asyncio
    async def test_auth_failure_aborts_enrichment(self, db_session: Session, make_orchestrator,
                                                  mock_notifier, active_members):
        """Should stop the batch on credential failure."""
        aggregator = make_aggregator({"Krabs": AuthFailureError("401", "blizzard", status_code=401)})
        orchestrator = make_orchestrator(aggregator=aggregator)

        result = await orchestrator.run_enrichment()

        assert result['critical'] is True
        assert aggregator.aggregate.await_count == 1
        mock_notifier.notify_critical_failure.assert_called_once()

    @pytest.mark.asyncio
    async def test_member_departed_mid_run_not_recreated(self, db_session: Session, make_orchestrator):
        """Should skip storing a profile for a member deleted during the run."""
        create_member(db_session, "Krabs", last_login_at=NOW - timedelta(days=1))

        async def aggregate(identity, lookup_handle=None):
            db_session.query(GuildMember).delete()
            db_session.commit()
            return AggregationResult(identity=identity, profile=ProfileData(item_level=676))

        aggregator = Mock()
        aggregator.aggregate = AsyncMock(side_effect=aggregate)
        orchestrator = make_orchestrator(aggregator=aggregator)

        result = await orchestrator.run_enrichment()

        assert result['skipped'] == 1
        assert db_session.query(GuildMember).count() == 0

    # Alerts
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_error_threshold_sends_alert(self, db_session: Session, make_orchestrator, mock_notifier):
        """Should alert when alertable errors exceed the threshold."""
        for i in range(8):
            create_member(db_session, f"Member{i}", last_login_at=NOW - timedelta(days=1))
        failure = FetchError(ErrorCategory.TIMEOUT, "raiderio", "slow")
        orchestrator = make_orchestrator(aggregator=make_aggregator(
            {f"Member{i}": failure for i in range(6)}
        ))

        result = await orchestrator.run_enrichment()

        assert result['alert_sent'] is True
        summary = mock_notifier.notify_batch_errors.call_args[0][0]
        assert summary['alertable_errors'] == 6
        assert summary['total'] == 8

    @pytest.mark.asyncio
    async def test_not_found_does_not_alert(self, db_session: Session, make_orchestrator, mock_notifier):
        """Should exclude not-found from alert thresholds."""
        for i in range(8):
            create_member(db_session, f"Member{i}", last_login_at=NOW - timedelta(days=1))
        missing = FetchError(ErrorCategory.NOT_FOUND, "raiderio", "not indexed")
        orchestrator = make_orchestrator(aggregator=make_aggregator(
            {f"Member{i}": missing for i in range(7)}
        ))

        result = await orchestrator.run_enrichment()

        assert result['failed'] == 7
        assert result['alert_sent'] is False
        mock_notifier.notify_batch_errors.assert_not_called()

    @pytest.mark.asyncio
    async def test_error_rate_sends_alert(self, db_session: Session, make_orchestrator, mock_notifier):
        """Should alert on rate even below the absolute threshold."""
        for i in range(10):
            create_member(db_session, f"Member{i}", last_login_at=NOW - timedelta(days=1))
        failure = FetchError(ErrorCategory.PARSE_ERROR, "raiderio", "bad")
        orchestrator = make_orchestrator(aggregator=make_aggregator(
            {"Member0": failure, "Member1": failure}
        ))

        await orchestrator.run_enrichment()

        mock_notifier.notify_batch_errors.assert_called_once()

    # Missing-data pass
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_missing_data_sync(self, db_session: Session, make_orchestrator):
        """Should only enrich active members without performance data."""
        create_member(db_session, "Fresh", last_login_at=NOW - timedelta(days=1))
        create_member(db_session, "Done", last_login_at=NOW - timedelta(days=1),
                      item_level=670, last_enriched_at=NOW - timedelta(hours=1))
        aggregator = make_aggregator()
        orchestrator = make_orchestrator(aggregator=aggregator)

        result = await orchestrator.run_missing_data_sync()

        assert result['tier'] == 'missing_data'
        assert result['total'] == 1
        assert aggregator.aggregate.await_args[0][0].name == "Fresh"


class TestConcurrency:
    """Tests for per-tier mutual exclusion and shutdown."""

    @pytest.mark.asyncio
    async def test_overlapping_enrichment_dropped(self, db_session: Session, make_orchestrator, active_members):
        """Should drop a second enrichment trigger while the first is running."""
        release = asyncio.Event()
        aggregator = make_aggregator()
        inner = aggregator.aggregate.side_effect

        async def slow_aggregate(identity, lookup_handle=None):
            await release.wait()
            return await inner(identity, lookup_handle)

        aggregator.aggregate = AsyncMock(side_effect=slow_aggregate)
        orchestrator = make_orchestrator(aggregator=aggregator)

        first = asyncio.create_task(orchestrator.run_enrichment())
        await asyncio.sleep(0)
        second = await orchestrator.run_enrichment()
        release.set()
        first_result = await first

        assert second is None
        assert first_result['processed'] == 3
        assert orchestrator.dropped_runs['enrichment'] == 1
        assert orchestrator.run_counts['enrichment'] == 1
        assert orchestrator.max_concurrent_runs['enrichment'] == 1

    @pytest.mark.asyncio
    async def test_overlapping_discovery_dropped(self, make_orchestrator):
        """Should drop a second discovery trigger while the first is running."""
        release = asyncio.Event()
        provider = make_roster_provider(roster("Krabs"))

        async def slow_roster():
            await release.wait()
            return roster("Krabs")

        provider.fetch_roster = AsyncMock(side_effect=slow_roster)
        orchestrator = make_orchestrator(roster_provider=provider)

        first = asyncio.create_task(orchestrator.run_discovery())
        await asyncio.sleep(0)
        second = await orchestrator.run_discovery()
        release.set()
        first_result = await first

        assert second is None
        assert first_result['success'] is True
        assert provider.fetch_roster.await_count == 1
        assert orchestrator.dropped_runs['discovery'] == 1
        assert orchestrator.max_concurrent_runs['discovery'] == 1

    def test_record_dropped_counts_skipped_trigger(self, make_orchestrator):
        """Should count a trigger skipped before reaching the orchestrator."""
        orchestrator = make_orchestrator()

        orchestrator.record_dropped('enrichment')

        assert orchestrator.dropped_runs == {'discovery': 0, 'enrichment': 1}

    @pytest.mark.asyncio
    async def test_discovery_and_enrichment_may_overlap(self, db_session: Session, make_orchestrator, active_members):
        """Should let the two tiers run at the same time."""
        release = asyncio.Event()
        provider = make_roster_provider(roster("Krabs", "Sandy", "Plankton"))

        async def slow_roster():
            await release.wait()
            return roster("Krabs", "Sandy", "Plankton")

        provider.fetch_roster = AsyncMock(side_effect=slow_roster)
        orchestrator = make_orchestrator(roster_provider=provider)

        discovery = asyncio.create_task(orchestrator.run_discovery())
        await asyncio.sleep(0)
        assert orchestrator.is_running('discovery')

        enrichment = await orchestrator.run_enrichment()
        release.set()
        discovery_result = await discovery

        assert enrichment['success'] is True
        assert discovery_result['success'] is True
        assert orchestrator.dropped_runs == {'discovery': 0, 'enrichment': 0}

    @pytest.mark.asyncio
    async def test_shutdown_stops_new_member_fetches(self, db_session: Session, make_orchestrator, active_members):
        """Should finish the in-flight member and start no new ones."""
        aggregator = make_aggregator()
        inner = aggregator.aggregate.side_effect
        orchestrator = None

        async def aggregate_then_stop(identity, lookup_handle=None):
            orchestrator.request_shutdown()
            return await inner(identity, lookup_handle)

        aggregator.aggregate = AsyncMock(side_effect=aggregate_then_stop)
        orchestrator = make_orchestrator(aggregator=aggregator)

        result = await orchestrator.run_enrichment()

        assert result['interrupted'] is True
        assert result['processed'] == 1
        assert aggregator.aggregate.await_count == 1
        assert await orchestrator.wait_idle(timeout=1) is True
        assert await orchestrator.run_discovery() is None

    @pytest.mark.asyncio
    async def test_interruptible_pause(self, make_orchestrator):
        """Should cut the inter-member delay short on shutdown."""
        orchestrator = make_orchestrator()

        pause = asyncio.create_task(orchestrator._pause(30))
        await asyncio.sleep(0)
        orchestrator.request_shutdown()

        await asyncio.wait_for(pause, timeout=1)


class TestStatusAndEvents:
    """Tests for progress events and status reporting."""

    @pytest.mark.asyncio
    async def test_progress_event_per_member(self, make_orchestrator, active_members, events):
        """Should publish one event per member plus a final event."""
        await make_orchestrator().run_enrichment()

        assert len(events.events) == 4
        assert [e.index for e in list(events.events)[:3]] == [1, 2, 3]
        final = events.latest['enrichment']
        assert final.finished is True
        assert final.processed == 3

    @pytest.mark.asyncio
    async def test_sync_status_health(self, make_orchestrator, active_members):
        """Should report healthy after clean runs and list member counts."""
        orchestrator = make_orchestrator(roster_provider=make_roster_provider(roster("Krabs", "Sandy", "Plankton")))
        assert orchestrator.get_sync_status()['health_status'] == 'pending'

        await orchestrator.run_discovery()
        await orchestrator.run_enrichment()
        status = orchestrator.get_sync_status()

        assert status['health_status'] == 'healthy'
        assert set(status['status_by_job']) == {'discovery', 'enrichment'}
        assert status['members']['total'] == 3
        assert status['running'] == {'discovery': False, 'enrichment': False}

    @pytest.mark.asyncio
    async def test_sync_status_degraded(self, make_orchestrator, active_members):
        """Should report degraded when one tier failed."""
        provider = make_roster_provider([])
        orchestrator = make_orchestrator(roster_provider=provider)

        await orchestrator.run_discovery()
        await orchestrator.run_enrichment()

        assert orchestrator.get_sync_status()['health_status'] == 'degraded'

    @pytest.mark.asyncio
    async def test_prune_errors(self, db_session: Session, make_orchestrator):
        """Should delete errors older than the retention window."""
        db_session.add(SyncError(id="old", character_name="A", realm=REALM, error_type="timeout",
                                 service="raiderio", timestamp=NOW - timedelta(days=3650)))
        db_session.commit()

        assert make_orchestrator().prune_errors() == 1
