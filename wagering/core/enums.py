"""
Core Enums - shared types for the voucher economy and safety engine.

Defines:
- OutcomeMode: how game outcomes are resolved for a tenant
- WinCapMode: how a voucher's cap percent is chosen
- PayoutMode: which payout regime decided a round
- CapPhase: one-way NORMAL -> DECAY state of a voucher
- RiskBand / RiskSignal: player safety classification
"""

from enum import Enum


class OutcomeMode(str, Enum):
    """Tenant-level switch for game outcome resolution"""

    VOUCHER_CONTROLLED = "voucher_controlled"  # Win-cap + decay policy
    PURE_RNG = "pure_rng"  # Unconstrained RNG, vouchers are wallet only


class WinCapMode(str, Enum):
    """How the cap percent is selected at redemption"""

    FIXED = "fixed_percent"
    RANDOM = "random_percent"


class PayoutMode(str, Enum):
    """Payout regime used for a round"""

    NORMAL = "normal"  # Pre-cap sampling
    DECAY = "decay"  # Post-cap, balance trends down
    PURE_RNG = "pure_rng"  # Voucher policy bypassed


class CapPhase(str, Enum):
    """Voucher cap state. The only transition is NORMAL -> DECAY."""

    NORMAL = "normal"
    DECAY = "decay"

    def can_transition_to(self, target: "CapPhase") -> bool:
        """Check whether moving to target is allowed."""
        return self == target or (self == CapPhase.NORMAL and target == CapPhase.DECAY)


class RiskBand(str, Enum):
    """Risk band, derived from the additive signal score"""

    CALM = "CALM"
    ELEVATED = "ELEVATED"
    TILT_RISK = "TILT_RISK"
    STOP = "STOP"


class RiskSignal(str, Enum):
    """Behavioural signals scored by the safety engine"""

    BET_ACCEL = "BET_ACCEL"
    SPIN_RATE = "SPIN_RATE"
    GAME_HOP = "GAME_HOP"
    LOSS_STREAK = "LOSS_STREAK"
    LOSS_CLUSTER = "LOSS_CLUSTER"
