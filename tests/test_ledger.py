"""
Tests for the append-only ledger store
"""

import pytest
from datetime import datetime, UTC, timedelta

from sqlalchemy import select, func

from wagering.database import ledger
from wagering.database.models import LedgerEvent, LedgerEventType


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


async def count_events(session) -> int:
    result = await session.execute(select(func.count()).select_from(LedgerEvent))
    return result.scalar_one()


def test_normalize_event_type():
    assert ledger.normalize_event_type(None) == "SPIN"
    assert ledger.normalize_event_type(" bet ") == "BET"
    assert ledger.normalize_event_type("") == "SPIN"
    assert ledger.normalize_event_type(LedgerEventType.WIN) == "WIN"


@pytest.mark.asyncio
async def test_record_event_is_idempotent(db_session):
    """Same (action_id, event_type) is stored once and the first row wins"""
    first = await ledger.record_event(
        db_session, tenant_id="t1", event_type="BET", session_id="s1",
        action_id="a1", bet_cents=500, amount_cents=-500,
    )
    second = await ledger.record_event(
        db_session, tenant_id="t1", event_type="bet", session_id="s1",
        action_id="a1", bet_cents=9999, amount_cents=-9999,
    )

    assert first is not None
    assert second.id == first.id
    assert second.bet_cents == 500
    assert await count_events(db_session) == 1


@pytest.mark.asyncio
async def test_same_action_different_types_are_distinct(db_session):
    await ledger.record_event(db_session, tenant_id="t1", event_type="BET", action_id="a1")
    await ledger.record_event(db_session, tenant_id="t1", event_type="WIN", action_id="a1")
    await ledger.record_event(db_session, tenant_id="t1", event_type="SPIN", action_id="a1")

    assert await count_events(db_session) == 3
    found = await ledger.find_event(db_session, "a1", "win")
    assert found.event_type == "WIN"


@pytest.mark.asyncio
async def test_events_without_action_id_always_append(db_session):
    for _ in range(3):
        await ledger.record_event(db_session, tenant_id="t1", event_type="LOGIN", session_id="s1")

    assert await count_events(db_session) == 3


@pytest.mark.asyncio
async def test_query_recent_spins_newest_first(db_session):
    for i in range(5):
        await ledger.record_event(
            db_session, tenant_id="t1", event_type="SPIN", session_id="s1",
            action_id=f"a{i}", game_key="slots", bet_cents=100 + i, win_cents=0,
            ts=T0 + timedelta(seconds=i),
        )
    # Other session and other tenant are never mixed in
    await ledger.record_event(db_session, tenant_id="t1", event_type="SPIN", session_id="s2", bet_cents=1)
    await ledger.record_event(db_session, tenant_id="t2", event_type="SPIN", session_id="s1", bet_cents=1)

    spins = await ledger.query_recent_spins(db_session, "t1", "s1", limit=3)

    assert [s.bet_cents for s in spins] == [104, 103, 102]
    assert spins[0].ts == T0 + timedelta(seconds=4)


@pytest.mark.asyncio
async def test_query_recent_spins_fills_amounts_from_bet_and_win(db_session):
    """Client SPIN rows without amounts pick them up from the server BET/WIN rows"""
    await ledger.record_event(
        db_session, tenant_id="t1", event_type="BET", session_id="s1",
        action_id="a1", amount_cents=-300,
    )
    await ledger.record_event(
        db_session, tenant_id="t1", event_type="WIN", session_id="s1",
        action_id="a1", win_cents=450,
    )
    await ledger.record_event(
        db_session, tenant_id="t1", event_type="SPIN", session_id="s1", action_id="a1",
    )

    spins = await ledger.query_recent_spins(db_session, "t1", "s1")

    assert len(spins) == 1
    assert spins[0].bet_cents == 300
    assert spins[0].win_cents == 450


@pytest.mark.asyncio
async def test_sum_bets_and_wins_over_spins(db_session):
    await ledger.record_event(db_session, tenant_id="t1", event_type="SPIN", session_id="s1", bet_cents=1000, win_cents=200)
    await ledger.record_event(db_session, tenant_id="t1", event_type="SPIN", session_id="s1", bet_cents=500, win_cents=0)
    # BET rows are not counted twice
    await ledger.record_event(db_session, tenant_id="t1", event_type="BET", session_id="s1", bet_cents=500)

    assert await ledger.sum_bets_and_wins(db_session, "t1", "s1") == (1500, 200)
    assert await ledger.sum_bets_and_wins(db_session, "t1", "empty") == (0, 0)


@pytest.mark.asyncio
async def test_session_start_balance(db_session):
    await ledger.record_event(
        db_session, tenant_id="t1", event_type="SPIN", session_id="s1",
        balance_cents=8000, ts=T0 + timedelta(minutes=1),
    )
    await ledger.record_event(
        db_session, tenant_id="t1", event_type="LOGIN", session_id="s1",
        balance_cents=10000, ts=T0,
    )

    assert await ledger.session_start_balance_cents(db_session, "t1", "s1") == 10000
    assert await ledger.session_start_balance_cents(db_session, "t1", "none") is None


@pytest.mark.asyncio
async def test_action_id_of_another_player_is_not_shared(db_session):
    alice = await ledger.record_event(
        db_session, tenant_id="t1", event_type="SPIN", session_id="s1",
        player_id="alice", action_id="1", bet_cents=1000,
    )
    bob = await ledger.record_event(
        db_session, tenant_id="t1", event_type="SPIN", session_id="s2",
        player_id="bob", action_id="1", bet_cents=500,
    )

    assert alice is not None
    assert bob is None
    assert await ledger.find_event(db_session, "1", "SPIN", tenant_id="t1", player_id="bob") is None
    assert (await ledger.find_event(db_session, "1", "SPIN", tenant_id="t1", player_id="alice")).id == alice.id
    assert await ledger.find_event(db_session, "1", "SPIN", tenant_id="t2") is None
    assert await count_events(db_session) == 1


# ============================================================================
# FAILURES
# ============================================================================


@pytest.mark.asyncio
async def test_failed_insert_leaves_transaction_usable(db_session, fail_ledger_inserts):
    await fail_ledger_inserts("telemetry")

    plain = await ledger.record_event(
        db_session, tenant_id="t1", event_type="LOGIN", session_id="s1", source="telemetry",
    )
    keyed = await ledger.record_event(
        db_session, tenant_id="t1", event_type="SPIN", session_id="s1",
        action_id="a1", bet_cents=100, source="telemetry",
    )
    kept = await ledger.record_event(
        db_session, tenant_id="t1", event_type="SPIN", session_id="s1",
        action_id="a2", bet_cents=200, source="bet_service",
    )
    await db_session.commit()

    assert plain is None
    assert keyed is None
    assert kept is not None
    assert await count_events(db_session) == 1
    assert await ledger.sum_bets_and_wins(db_session, "t1", "s1") == (200, 0)
