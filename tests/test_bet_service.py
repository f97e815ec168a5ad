"""
Tests for bet placement and settlement
"""

import pytest

from sqlalchemy import select

from wagering.database import crud, ledger
from wagering.database.models import LedgerEvent, WalletTransactionType
from wagering.services import safety_engine
from wagering.services.bet_service import BetRejectedError, BetService
from wagering.services.safety_engine import LossLimitError, SafetyContext
from wagering.services.voucher_service import VoucherService


CTX = SafetyContext(tenant_id="t1", session_id="s1", player_id="p1")


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================


async def fund_player(session, amount=100, max_cashout=None, user_id="p1"):
    """Issue and redeem a voucher for a player"""
    issued = await VoucherService.issue_voucher(session, "t1", amount=amount, max_cashout=max_cashout)
    result = await VoucherService.redeem_voucher(
        session, "t1", user_id, issued.voucher.code, issued.pin, session_id="s1"
    )
    return result


async def ledger_types(session, action_id):
    result = await session.execute(
        select(LedgerEvent.event_type).where(LedgerEvent.action_id == action_id)
    )
    return sorted(result.scalars().all())


# ============================================================================
# SETTLEMENT
# ============================================================================


@pytest.mark.asyncio
async def test_losing_bet(db_session, sequence_rng):
    redeemed = await fund_player(db_session)

    result = await BetService.place_bet(
        db_session, CTX, "p1", "slots", 10, action_id="bet-1", rng=sequence_rng([0.9])
    )

    assert result.payout == 0
    assert result.balance_before == 100
    assert result.balance_after == 90
    assert result.mode == "normal"
    assert result.voucher_id == redeemed.voucher.id
    assert result.replayed is False
    assert result.policy["tracked_balance"] == 90
    assert result.policy["decay_mode"] is False
    assert result.risk["band"] == "CALM"
    assert result.action is None

    assert await ledger_types(db_session, "bet-1") == ["BET", "SPIN"]
    spin = await ledger.find_event(db_session, "bet-1", "SPIN")
    assert spin.bet_cents == 1000
    assert spin.win_cents == 0
    assert spin.balance_cents == 9000


@pytest.mark.asyncio
async def test_winning_bet(db_session, sequence_rng):
    await fund_player(db_session)

    result = await BetService.place_bet(
        db_session, CTX, "p1", "slots", 10, action_id="bet-1", rng=sequence_rng([0.1, 0.5, 0.5])
    )

    assert result.payout == pytest.approx(8.5)
    assert result.balance_after == pytest.approx(98.5)
    assert await ledger_types(db_session, "bet-1") == ["BET", "SPIN", "WIN"]

    wallet = await crud.get_wallet(db_session, "p1", "t1")
    transactions = await crud.get_wallet_transactions(db_session, wallet.id)
    assert [t.tx_type for t in transactions] == [
        WalletTransactionType.WIN.value,
        WalletTransactionType.BET.value,
        WalletTransactionType.VOUCHER_CREDIT.value,
    ]
    assert crud.wallet_balance(wallet) == pytest.approx(98.5)


@pytest.mark.asyncio
async def test_bet_reaching_cap_enters_decay(db_session, sequence_rng):
    redeemed = await fund_player(db_session, amount=100, max_cashout=110)

    first = await BetService.place_bet(
        db_session, CTX, "p1", "slots", 20, rng=sequence_rng([0.1, 0.99, 0.99])
    )

    assert first.payout == 30
    assert first.balance_after == 110
    assert first.mode == "normal"
    assert redeemed.voucher.policy_state["decay_mode"] is True
    assert redeemed.voucher.policy_state["decay_rounds"] == 0
    assert redeemed.voucher.policy_state["cap_reached_at"] is not None

    second = await BetService.place_bet(
        db_session, CTX, "p1", "slots", 10, rng=sequence_rng([0.1, 0.5, 0.5])
    )

    assert second.mode == "decay"
    assert second.balance_after < first.balance_after
    assert redeemed.voucher.policy_state["decay_rounds"] == 1
    assert redeemed.voucher.max_cashout == 110


@pytest.mark.asyncio
async def test_decay_win_clamped_below_pre_bet_balance(db_session, sequence_rng):
    """Cap 100, balance 100: decay step 8 leaves room for a win of at most 2"""
    await fund_player(db_session, amount=100, max_cashout=100)

    result = await BetService.place_bet(
        db_session, CTX, "p1", "slots", 10, rng=sequence_rng([0.1, 0.5, 0.5])
    )

    assert result.mode == "decay"
    assert result.payout == 2
    assert result.balance_after == 92
    assert result.outcome["decay_step"] == 8


@pytest.mark.asyncio
async def test_pure_rng_bet_bypasses_voucher(db_session, sequence_rng):
    await crud.update_tenant_config(db_session, "t1", {"outcome_mode": "pure_rng"})
    redeemed = await fund_player(db_session)
    state_before = dict(redeemed.voucher.policy_state)

    result = await BetService.place_bet(
        db_session, CTX, "p1", "slots", 10, rng=sequence_rng([0.1, 0.5])
    )

    assert result.mode == "pure_rng"
    assert result.payout == 30
    assert result.balance_after == 120
    assert result.voucher_id is None
    assert result.outcome is None
    assert result.policy is None
    assert redeemed.voucher.policy_state == state_before


# ============================================================================
# IDEMPOTENCY
# ============================================================================


@pytest.mark.asyncio
async def test_retry_replays_settlement(db_session, sequence_rng):
    await fund_player(db_session)

    first = await BetService.place_bet(
        db_session, CTX, "p1", "slots", 10, action_id="bet-1", rng=sequence_rng([0.1, 0.5, 0.5])
    )
    retry = await BetService.place_bet(
        db_session, CTX, "p1", "slots", 10, action_id="bet-1", rng=sequence_rng([0.9])
    )

    assert retry.replayed is True
    assert retry.payout == first.payout
    assert retry.balance_after == first.balance_after

    wallet = await crud.get_wallet(db_session, "p1", "t1")
    assert crud.wallet_balance(wallet) == pytest.approx(98.5)
    transactions = await crud.get_wallet_transactions(db_session, wallet.id)
    assert len([t for t in transactions if t.tx_type == WalletTransactionType.BET.value]) == 1


@pytest.mark.asyncio
async def test_generated_action_ids_are_unique(db_session, sequence_rng):
    await fund_player(db_session)

    a = await BetService.place_bet(db_session, CTX, "p1", "slots", 1, rng=sequence_rng([0.9]))
    b = await BetService.place_bet(db_session, CTX, "p1", "slots", 1, rng=sequence_rng([0.9]))

    assert a.action_id != b.action_id
    assert b.balance_after == 98


# ============================================================================
# REJECTIONS
# ============================================================================


@pytest.mark.asyncio
async def test_invalid_bets(db_session):
    with pytest.raises(ValueError):
        await BetService.place_bet(db_session, CTX, "p1", "slots", 0)
    with pytest.raises(ValueError):
        await BetService.place_bet(db_session, CTX, "p1", "slots", "abc")
    with pytest.raises(ValueError):
        await BetService.place_bet(db_session, CTX, "p1", "", 10)


@pytest.mark.asyncio
async def test_insufficient_funds(db_session, sequence_rng):
    with pytest.raises(BetRejectedError) as exc_info:
        await BetService.place_bet(db_session, CTX, "p1", "slots", 10, rng=sequence_rng([0.9]))
    assert exc_info.value.code == "INSUFFICIENT_FUNDS"

    await fund_player(db_session, amount=5)
    with pytest.raises(BetRejectedError):
        await BetService.place_bet(db_session, CTX, "p1", "slots", 10, rng=sequence_rng([0.9]))


@pytest.mark.asyncio
async def test_loss_limit_aborts_bet_before_debit(db_session, sequence_rng):
    await fund_player(db_session)
    await safety_engine.set_loss_limit(db_session, CTX, 1500)

    await BetService.place_bet(db_session, CTX, "p1", "slots", 10, rng=sequence_rng([0.9]))

    with pytest.raises(LossLimitError) as exc_info:
        await BetService.place_bet(
            db_session, CTX, "p1", "slots", 10, action_id="bet-2", rng=sequence_rng([0.9])
        )

    assert exc_info.value.projected_loss_cents == 2000

    wallet = await crud.get_wallet(db_session, "p1", "t1")
    assert crud.wallet_balance(wallet) == 90
    assert await ledger_types(db_session, "bet-2") == []

    actions = await safety_engine.get_recent_actions(db_session, CTX)
    assert actions[0].action_type == "STOP"
    assert actions[0].reason_codes == ["LOSS_LIMIT_HIT"]
    assert actions[0].game_key == "slots"


@pytest.mark.asyncio
async def test_insufficient_funds_releases_wallet_lock(db_session, sequence_rng):
    await fund_player(db_session, amount=5)

    with pytest.raises(BetRejectedError):
        await BetService.place_bet(db_session, CTX, "p1", "slots", 10, rng=sequence_rng([0.9]))

    assert not db_session.in_transaction()


# ============================================================================
# ACTION ID OWNERSHIP AND CONCURRENT RETRIES
# ============================================================================


@pytest.mark.asyncio
async def test_action_id_of_another_player_is_rejected(db_session, sequence_rng):
    bob_ctx = SafetyContext(tenant_id="t1", session_id="s2", player_id="p2")
    await fund_player(db_session, user_id="p1")
    await fund_player(db_session, user_id="p2")

    await BetService.place_bet(db_session, CTX, "p1", "slots", 10, action_id="1", rng=sequence_rng([0.9]))

    with pytest.raises(BetRejectedError) as exc_info:
        await BetService.place_bet(db_session, bob_ctx, "p2", "slots", 10, action_id="1", rng=sequence_rng([0.9]))

    assert exc_info.value.code == "ACTION_ID_CONFLICT"
    bob_wallet = await crud.get_wallet(db_session, "p2", "t1")
    assert crud.wallet_balance(bob_wallet) == 100
    assert await ledger.sum_bets_and_wins(db_session, "t1", "s2") == (0, 0)


@pytest.mark.asyncio
async def test_retry_settled_while_waiting_on_wallet_lock(db_session, sequence_rng, monkeypatch):
    """The first replay check misses; the check under the wallet lock finds the settlement"""
    await fund_player(db_session)
    first = await BetService.place_bet(
        db_session, CTX, "p1", "slots", 10, action_id="bet-1", rng=sequence_rng([0.9])
    )

    original = BetService._replay
    calls = []

    async def miss_before_lock(session, ctx, user_id, action_id):
        calls.append(action_id)
        if len(calls) == 1:
            return None
        return await original(session, ctx, user_id, action_id)

    monkeypatch.setattr(BetService, "_replay", staticmethod(miss_before_lock))

    retry = await BetService.place_bet(
        db_session, CTX, "p1", "slots", 10, action_id="bet-1", rng=sequence_rng([0.9])
    )

    assert len(calls) == 2
    assert retry.replayed is True
    assert retry.balance_after == first.balance_after

    wallet = await crud.get_wallet(db_session, "p1", "t1")
    assert crud.wallet_balance(wallet) == 90
    transactions = await crud.get_wallet_transactions(db_session, wallet.id)
    assert len([t for t in transactions if t.tx_type == WalletTransactionType.BET.value]) == 1


# ============================================================================
# LEDGER FAILURES
# ============================================================================


@pytest.mark.asyncio
async def test_bet_settles_when_ledger_write_fails(db_session, sequence_rng, fail_ledger_inserts):
    await fund_player(db_session)
    await fail_ledger_inserts("bet_service")

    result = await BetService.place_bet(
        db_session, CTX, "p1", "slots", 10, action_id="bet-1", rng=sequence_rng([0.9])
    )

    assert result.balance_after == 90
    assert await ledger_types(db_session, "bet-1") == []

    wallet = await crud.get_wallet(db_session, "p1", "t1")
    assert crud.wallet_balance(wallet) == 90
    transactions = await crud.get_wallet_transactions(db_session, wallet.id)
    assert [t.tx_type for t in transactions] == [
        WalletTransactionType.BET.value,
        WalletTransactionType.VOUCHER_CREDIT.value,
    ]
