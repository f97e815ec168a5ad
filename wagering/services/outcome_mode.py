"""
Outcome mode - tenant-level switch between voucher-controlled and pure RNG outcomes
"""

from typing import Any, Dict

from config.config import DEFAULT_OUTCOME_MODE
from wagering.core.enums import OutcomeMode


_PURE_RNG_ALIASES = {"pure_rng", "rng", "random", "legacy_rng", "original_rng"}
_VOUCHER_ALIASES = {"voucher_controlled", "voucher", "voucher_cap", "voucher_wincap"}


def _default_mode() -> OutcomeMode:
    raw = str(DEFAULT_OUTCOME_MODE or "").strip().lower()
    return OutcomeMode.PURE_RNG if raw in _PURE_RNG_ALIASES else OutcomeMode.VOUCHER_CONTROLLED


def normalize_outcome_mode(value: Any, fallback: OutcomeMode | None = None) -> OutcomeMode:
    """
    Map a stored/requested outcome mode onto OutcomeMode

    Unknown values resolve to the fallback (deployment default when omitted).
    """
    if isinstance(value, OutcomeMode):
        return value

    raw = str(value or "").strip().lower()
    if raw in _PURE_RNG_ALIASES:
        return OutcomeMode.PURE_RNG
    if raw in _VOUCHER_ALIASES:
        return OutcomeMode.VOUCHER_CONTROLLED
    return fallback or _default_mode()


def is_voucher_controlled(mode: Any) -> bool:
    return normalize_outcome_mode(mode) == OutcomeMode.VOUCHER_CONTROLLED


def is_pure_rng(mode: Any) -> bool:
    return normalize_outcome_mode(mode) == OutcomeMode.PURE_RNG


def build_outcome_mode_options(current: Any = None) -> Dict[str, Any]:
    """Current mode plus selectable options for the operator console"""
    return {
        "current_mode": normalize_outcome_mode(current).value,
        "options": [
            {
                "value": OutcomeMode.VOUCHER_CONTROLLED.value,
                "label": "Voucher Controlled",
                "description": (
                    "Game outcomes follow voucher win-cap and decay policy "
                    "while jackpots remain separate."
                ),
            },
            {
                "value": OutcomeMode.PURE_RNG.value,
                "label": "Pure RNG",
                "description": (
                    "Game outcomes are fully random; vouchers remain identity, "
                    "wallet, and activity ledger only."
                ),
            },
        ],
    }
