"""
Payout Engine - voucher-driven round outcomes

Decides each round's win amount under the voucher's cashout cap:

NORMAL (pre-cap):
    hit chance falls linearly with progress toward the cap, a three-tier
    multiplier table decides the size, and the result is clamped so one round
    never jumps past the cap.

DECAY (post-cap, sticky):
    every round moves the attributable balance at least decay_step below the
    pre-bet balance; wins are drawn from a flatter table and clamped to that
    ceiling.

All randomness comes from the injected rng so tests can replay fixed sequences.
"""

import random
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Optional

from config.config import (
    VOUCHER_DECAY_RATE,
    VOUCHER_DECAY_MIN_AMOUNT,
    VOUCHER_DECAY_STAKE_MULTIPLIER,
)
from config.win_cap_config import MIN_DECAY_RATE, MAX_DECAY_RATE
from wagering.core.enums import PayoutMode
from wagering.utils.money import to_number, to_money, clamp

Rng = Callable[[], float]

EPSILON = 0.0001


# ===========================
# SAMPLING TABLES
# ===========================

# Normal mode: hit chance = 0.72 - 0.35 * progress, bounded to [0.32, 0.78]
NORMAL_HIT_BASE = 0.72
NORMAL_HIT_PROGRESS_SLOPE = 0.35
NORMAL_HIT_MIN = 0.32
NORMAL_HIT_MAX = 0.78

# (bucket upper bound, min multiplier, max multiplier)
NORMAL_TIERS = (
    (0.78, 0.35, 1.35),  # small
    (0.96, 1.35, 2.75),  # medium
    (1.0, 2.75, 5.5),  # big
)

DECAY_HIT_CHANCE = 0.28
DECAY_TIERS = (
    (0.85, 0.08, 0.6),
    (1.0, 0.6, 1.05),
)

# Pure RNG mode (voucher policy bypassed)
PURE_RNG_WIN_CHANCE = 0.45
PURE_RNG_MIN_MULTIPLIER = 1.0
PURE_RNG_MAX_MULTIPLIER = 5.0


@dataclass(frozen=True)
class PayoutOutcome:
    """Result of one settled round"""

    payout_amount: float
    balance_after_settle: float
    mode: PayoutMode
    progress: float
    reached_or_exceeded_cap: bool
    decay_step: float = 0.0
    target_balance_after_settle: float = 0.0
    max_win_allowed: Optional[float] = None
    cap_applied: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["mode"] = self.mode.value
        return data


def default_rng() -> Rng:
    """Production random source"""
    return random.SystemRandom().random


def random_between(low: float, high: float, rng: Rng) -> float:
    return low + (high - low) * rng()


def _sample_tiered(stake: float, hit_chance: float, tiers, rng: Rng) -> float:
    # A draw strictly above the hit chance is a miss
    if rng() > hit_chance:
        return 0.0

    bucket = rng()
    low, high = tiers[-1][1], tiers[-1][2]
    for upper, tier_low, tier_high in tiers:
        if bucket <= upper:
            low, high = tier_low, tier_high
            break

    return stake * random_between(low, high, rng)


def sample_normal_payout(stake: float, progress: float, rng: Rng) -> float:
    hit_chance = clamp(
        NORMAL_HIT_BASE - NORMAL_HIT_PROGRESS_SLOPE * progress,
        NORMAL_HIT_MIN,
        NORMAL_HIT_MAX,
    )
    return _sample_tiered(stake, hit_chance, NORMAL_TIERS, rng)


def sample_decay_payout(stake: float, rng: Rng) -> float:
    return _sample_tiered(stake, DECAY_HIT_CHANCE, DECAY_TIERS, rng)


def compute_payout(
    stake: Any,
    balance_before_bet: Any,
    balance_after_bet: Any,
    cap: Any,
    policy_state: Any = None,
    rng: Optional[Rng] = None,
) -> PayoutOutcome:
    """
    Decide the payout for one round

    Args:
        stake: Bet amount
        balance_before_bet: Attributable balance before the stake was debited
        balance_after_bet: Balance after the debit
        cap: Voucher max cashout (0 disables the cap)
        policy_state: VoucherPolicyState (decay_mode and decay parameters), or None
        rng: Random source returning floats in [0, 1)

    Returns:
        PayoutOutcome
    """
    rng = rng or default_rng()

    stake = max(0.0, to_number(stake, 0.0))
    before = max(0.0, to_number(balance_before_bet, 0.0))
    after_bet = max(0.0, to_number(balance_after_bet, 0.0))
    cap = max(0.0, to_number(cap, 0.0))
    progress = clamp(before / cap, 0.0, 1.0) if cap > 0 else 0.0

    already_decaying = bool(getattr(policy_state, "decay_mode", False))
    at_or_over_cap = already_decaying or (
        cap > 0 and (before >= cap - EPSILON or after_bet >= cap - EPSILON)
    )

    if at_or_over_cap:
        decay_rate = clamp(
            to_number(getattr(policy_state, "decay_rate", None), VOUCHER_DECAY_RATE),
            MIN_DECAY_RATE,
            MAX_DECAY_RATE,
        )
        min_decay = max(
            0.0,
            to_number(getattr(policy_state, "min_decay_amount", None), VOUCHER_DECAY_MIN_AMOUNT),
        )
        stake_multiplier = max(
            0.0,
            to_number(
                getattr(policy_state, "stake_decay_multiplier", None),
                VOUCHER_DECAY_STAKE_MULTIPLIER,
            ),
        )

        decay_step = max(min_decay, before * decay_rate, stake * stake_multiplier)
        # Ceiling is anchored on the pre-bet balance
        target = max(0.0, before - decay_step)
        max_win_allowed = max(0.0, target - after_bet)

        payout = clamp(sample_decay_payout(stake, rng), 0.0, max_win_allowed)

        return PayoutOutcome(
            payout_amount=to_money(payout),
            balance_after_settle=to_money(after_bet + payout),
            mode=PayoutMode.DECAY,
            progress=progress,
            reached_or_exceeded_cap=True,
            decay_step=to_money(decay_step),
            target_balance_after_settle=to_money(target),
            max_win_allowed=to_money(max_win_allowed),
            cap_applied=cap > 0,
        )

    max_win_by_cap = max(0.0, cap - after_bet) if cap > 0 else float("inf")
    payout = clamp(sample_normal_payout(stake, progress, rng), 0.0, max_win_by_cap)
    balance_after_settle = after_bet + payout

    return PayoutOutcome(
        payout_amount=to_money(payout),
        balance_after_settle=to_money(balance_after_settle),
        mode=PayoutMode.NORMAL,
        progress=progress,
        reached_or_exceeded_cap=cap > 0 and balance_after_settle >= cap - EPSILON,
        decay_step=0.0,
        target_balance_after_settle=to_money(balance_after_settle),
        max_win_allowed=to_money(max_win_by_cap) if cap > 0 else None,
        cap_applied=cap > 0,
    )


def compute_pure_rng_payout(stake: Any, rng: Optional[Rng] = None) -> float:
    """
    Unconstrained RNG outcome used when the tenant runs in pure_rng mode

    45% win chance, multiplier uniform in [1, 5] rounded to 2dp.
    """
    rng = rng or default_rng()
    stake = max(0.0, to_number(stake, 0.0))

    if rng() >= PURE_RNG_WIN_CHANCE:
        return 0.0

    multiplier = round(
        random_between(PURE_RNG_MIN_MULTIPLIER, PURE_RNG_MAX_MULTIPLIER, rng), 2
    )
    return to_money(stake * multiplier)
