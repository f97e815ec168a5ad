"""
Tests for the voucher payout engine
"""

import random

import pytest

from wagering.core.enums import CapPhase, PayoutMode
from wagering.services.payout_engine import (
    EPSILON,
    compute_payout,
    compute_pure_rng_payout,
    sample_normal_payout,
)
from wagering.services.voucher_policy_state import VoucherPolicyState


def test_normal_round_clamped_to_cap(sequence_rng):
    """Big-tier hit near the cap lands exactly on the cap"""
    outcome = compute_payout(
        stake=20,
        balance_before_bet=95,
        balance_after_bet=75,
        cap=100,
        rng=sequence_rng([0.1, 0.99, 0.99]),
    )

    assert outcome.mode == PayoutMode.NORMAL
    assert outcome.payout_amount == 25
    assert outcome.balance_after_settle == 100
    assert outcome.reached_or_exceeded_cap is True
    assert outcome.max_win_allowed == 25
    assert outcome.cap_applied is True
    assert outcome.progress == pytest.approx(0.95)


def test_decay_round_below_ceiling(sequence_rng):
    """Sticky decay: a hit is clamped to the decay ceiling"""
    state = VoucherPolicyState(
        max_cashout=100,
        phase=CapPhase.DECAY,
        decay_rate=0.1,
        min_decay_amount=1,
        stake_decay_multiplier=0.2,
    )

    outcome = compute_payout(
        stake=10,
        balance_before_bet=100,
        balance_after_bet=90,
        cap=100,
        policy_state=state,
        rng=sequence_rng([0.1, 0.9, 0.9]),
    )

    assert outcome.mode == PayoutMode.DECAY
    assert outcome.payout_amount == 0
    assert outcome.balance_after_settle <= 90
    assert outcome.decay_step == 10
    assert outcome.target_balance_after_settle == 90
    assert outcome.max_win_allowed == 0
    assert outcome.reached_or_exceeded_cap is True


def test_decay_entered_when_balance_already_over_cap(sequence_rng):
    outcome = compute_payout(
        stake=10,
        balance_before_bet=120,
        balance_after_bet=110,
        cap=100,
        rng=sequence_rng([0.9]),
    )

    assert outcome.mode == PayoutMode.DECAY
    assert outcome.payout_amount == 0
    assert outcome.balance_after_settle == 110


def test_normal_miss(sequence_rng):
    """A draw above the hit chance pays nothing"""
    outcome = compute_payout(10, 50, 40, 200, rng=sequence_rng([0.9]))

    assert outcome.mode == PayoutMode.NORMAL
    assert outcome.payout_amount == 0
    assert outcome.balance_after_settle == 40
    assert outcome.reached_or_exceeded_cap is False


def test_zero_cap_disables_clamp(sequence_rng):
    outcome = compute_payout(20, 95, 75, 0, rng=sequence_rng([0.1, 0.99, 0.99]))

    assert outcome.mode == PayoutMode.NORMAL
    assert outcome.payout_amount == pytest.approx(109.45)
    assert outcome.max_win_allowed is None
    assert outcome.cap_applied is False
    assert outcome.reached_or_exceeded_cap is False


def test_hit_chance_falls_with_progress(sequence_rng):
    """0.5 hits at zero progress (0.72) but misses near the cap (0.37)"""
    assert sample_normal_payout(10, 0.0, sequence_rng([0.5, 0.1, 0.0])) > 0
    assert sample_normal_payout(10, 1.0, sequence_rng([0.5, 0.1, 0.0])) == 0


def test_outcome_to_dict():
    outcome = compute_payout(10, 50, 40, 200, rng=lambda: 0.99)
    data = outcome.to_dict()

    assert data["mode"] == "normal"
    assert data["payout_amount"] == 0


@pytest.mark.parametrize("seed", range(5))
def test_normal_mode_never_jumps_past_cap(seed):
    rng = random.Random(seed).random
    cap = 200.0

    for _ in range(300):
        before = rng() * (cap - 1)
        stake = min(before, 1 + rng() * 40)
        after = before - stake
        outcome = compute_payout(stake, before, after, cap, rng=rng)

        assert outcome.mode == PayoutMode.NORMAL
        assert outcome.payout_amount >= 0
        assert outcome.balance_after_settle <= cap + EPSILON


@pytest.mark.parametrize("seed", range(5))
def test_decay_mode_trends_down(seed):
    """Every decay round ends at or below max(pre-bet balance - decay step, post-bet balance)"""
    rng = random.Random(seed).random
    state = VoucherPolicyState(max_cashout=100, phase=CapPhase.DECAY)

    for _ in range(300):
        before = 1 + rng() * 300
        stake = min(before, 0.5 + rng() * 30)
        after = before - stake
        outcome = compute_payout(stake, before, after, 100, policy_state=state, rng=rng)

        assert outcome.mode == PayoutMode.DECAY
        assert 0 <= outcome.payout_amount <= outcome.max_win_allowed + EPSILON
        ceiling = max(before - outcome.decay_step, after)
        assert outcome.balance_after_settle <= ceiling + 2 * EPSILON


def test_pure_rng_payout(sequence_rng):
    assert compute_pure_rng_payout(10, sequence_rng([0.45])) == 0
    assert compute_pure_rng_payout(10, sequence_rng([0.1, 0.5])) == 30.0
    assert compute_pure_rng_payout(10, sequence_rng([0.0, 0.0])) == 10.0
