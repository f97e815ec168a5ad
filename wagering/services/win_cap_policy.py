# coding: utf-8
"""
Win-Cap Policy Resolver

Turns tenant configuration into a voucher's maximum cashout:
- normalises raw policy blobs into a WinCapPolicy (self-heals bad config)
- selects the cap percent (fixed, requested or random)
- computes the cap, never below what the voucher actually credited

Pure functions; randomness comes only from the injected rng.
"""

import math
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from config.win_cap_config import (
    DEFAULT_PERCENT_OPTIONS,
    DEFAULT_RANDOM_PERCENT_OPTIONS,
    DEFAULT_FIXED_PERCENT,
    DEFAULT_WIN_CAP_POLICY,
    MIN_PERCENT,
    MAX_PERCENT,
    MIN_DECAY_RATE,
    MAX_DECAY_RATE,
    WIN_CAP_MODE_LABELS,
)
from wagering.core.enums import WinCapMode
from wagering.utils.money import to_number, clamp

Rng = Callable[[], float]


@dataclass(frozen=True)
class WinCapPolicy:
    """Normalised tenant win-cap policy"""

    mode: WinCapMode
    fixed_percent: float
    percent_options: Tuple[float, ...]
    random_percent_options: Tuple[float, ...]
    decay_rate: float
    min_decay_amount: float
    stake_decay_multiplier: float

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["mode"] = self.mode.value
        data["percent_options"] = list(self.percent_options)
        data["random_percent_options"] = list(self.random_percent_options)
        return data


@dataclass(frozen=True)
class WinCapSelection:
    """Result of resolving a cap percent for one voucher"""

    policy: WinCapPolicy
    mode: WinCapMode
    selected_percent: float
    source: str  # policy_random | request_fixed | policy_fixed


def _round_percent(value: float) -> float:
    return round(value * 100) / 100


def _unique_percents(values: Any, fallback: Iterable[float]) -> Tuple[float, ...]:
    """Positive, 2dp, de-duplicated, ascending; fallback when nothing survives"""
    source = values if isinstance(values, (list, tuple)) else ()
    cleaned = []
    for raw in source:
        number = to_number(raw)
        if number is None or number <= 0:
            continue
        rounded = _round_percent(number)
        if rounded not in cleaned:
            cleaned.append(rounded)
    if not cleaned:
        return tuple(float(v) for v in fallback)
    return tuple(sorted(cleaned))


def _coerce_mode(value: Any) -> Optional[WinCapMode]:
    if isinstance(value, WinCapMode):
        return value
    if value is None:
        return None
    return WinCapMode.RANDOM if str(value).strip().lower() == WinCapMode.RANDOM.value else WinCapMode.FIXED


def _read(raw: Dict[str, Any], snake: str, camel: str) -> Any:
    # Older tenant configs were stored with camelCase keys
    return raw[snake] if snake in raw else raw.get(camel)


def normalize_win_cap_policy(raw: Any = None) -> WinCapPolicy:
    """
    Normalise a raw policy blob

    Invalid or missing fields fall back to system defaults rather than
    failing; fixed_percent always ends up as a member of percent_options.
    """
    raw = raw if isinstance(raw, dict) else {}

    mode = _coerce_mode(raw.get("mode")) or WinCapMode.FIXED
    if mode != WinCapMode.RANDOM:
        mode = WinCapMode.FIXED

    percent_options = _unique_percents(
        _read(raw, "percent_options", "percentOptions"), DEFAULT_PERCENT_OPTIONS
    )
    random_percent_options = _unique_percents(
        _read(raw, "random_percent_options", "randomPercentOptions"),
        DEFAULT_RANDOM_PERCENT_OPTIONS,
    )

    fixed_percent = to_number(_read(raw, "fixed_percent", "fixedPercent"), DEFAULT_FIXED_PERCENT)
    fixed_percent = clamp(_round_percent(fixed_percent), MIN_PERCENT, MAX_PERCENT)
    if fixed_percent not in percent_options:
        fixed_percent = (
            float(DEFAULT_FIXED_PERCENT)
            if DEFAULT_FIXED_PERCENT in percent_options
            else percent_options[0]
        )

    decay_rate = clamp(
        to_number(_read(raw, "decay_rate", "decayRate"), DEFAULT_WIN_CAP_POLICY["decay_rate"]),
        MIN_DECAY_RATE,
        MAX_DECAY_RATE,
    )
    min_decay_amount = max(
        0.0,
        to_number(
            _read(raw, "min_decay_amount", "minDecayAmount"),
            DEFAULT_WIN_CAP_POLICY["min_decay_amount"],
        ),
    )
    stake_decay_multiplier = max(
        0.0,
        to_number(
            _read(raw, "stake_decay_multiplier", "stakeDecayMultiplier"),
            DEFAULT_WIN_CAP_POLICY["stake_decay_multiplier"],
        ),
    )

    return WinCapPolicy(
        mode=mode,
        fixed_percent=float(fixed_percent),
        percent_options=percent_options,
        random_percent_options=random_percent_options or percent_options,
        decay_rate=decay_rate,
        min_decay_amount=min_decay_amount,
        stake_decay_multiplier=stake_decay_multiplier,
    )


def pick_random_percent(options: Tuple[float, ...], rng: Rng) -> float:
    """Uniform draw from options using the injected rng"""
    if not options:
        return float(DEFAULT_FIXED_PERCENT)
    idx = math.floor(rng() * len(options))
    return options[max(0, min(idx, len(options) - 1))]


def resolve_selection(
    policy_raw: Any,
    requested_mode: Any = None,
    requested_percent: Any = None,
    rng: Optional[Rng] = None,
) -> WinCapSelection:
    """
    Select the cap percent for a voucher

    Args:
        policy_raw: Tenant policy (raw dict or WinCapPolicy)
        requested_mode: fixed_percent / random_percent; None uses the policy mode
        requested_percent: Operator-requested percent (fixed mode only)
        rng: Random source returning floats in [0, 1)

    Returns:
        WinCapSelection; invalid requests fall back to the policy default
    """
    policy = policy_raw if isinstance(policy_raw, WinCapPolicy) else normalize_win_cap_policy(policy_raw)

    effective_mode = _coerce_mode(requested_mode) or policy.mode

    if effective_mode == WinCapMode.RANDOM:
        if rng is None:
            from wagering.services.payout_engine import default_rng
            rng = default_rng()
        return WinCapSelection(
            policy=policy,
            mode=WinCapMode.RANDOM,
            selected_percent=pick_random_percent(policy.random_percent_options, rng),
            source="policy_random",
        )

    percent = to_number(requested_percent)
    if percent is not None and percent > 0:
        rounded = _round_percent(percent)
        if rounded in policy.percent_options:
            return WinCapSelection(
                policy=policy,
                mode=WinCapMode.FIXED,
                selected_percent=rounded,
                source="request_fixed",
            )

    return WinCapSelection(
        policy=policy,
        mode=WinCapMode.FIXED,
        selected_percent=policy.fixed_percent,
        source="policy_fixed",
    )


def compute_max_cashout(amount: Any, bonus_amount: Any, selected_percent: Any) -> float:
    """
    Maximum cashout for a voucher

    max(amount + bonus, amount * percent / 100): the cap is never below the
    total credit. Rounded to 4 decimal places.
    """
    voucher_amount = max(0.0, to_number(amount, 0.0))
    bonus = max(0.0, to_number(bonus_amount, 0.0))
    pct = clamp(to_number(selected_percent, 0.0), 0, MAX_PERCENT)

    total_credit = voucher_amount + bonus
    computed = voucher_amount * pct / 100
    return round(max(total_credit, computed), 4)


def build_win_cap_options(policy_raw: Any = None) -> Dict[str, Any]:
    """Option lists for the operator console"""
    policy = normalize_win_cap_policy(policy_raw)
    return {
        "modes": [
            {"value": mode.value, "label": WIN_CAP_MODE_LABELS[mode.value]}
            for mode in (WinCapMode.FIXED, WinCapMode.RANDOM)
        ],
        "percent_options": [
            {"value": p, "label": f"{p:g}%"} for p in policy.percent_options
        ],
        "random_percent_options": [
            {"value": p, "label": f"{p:g}%"} for p in policy.random_percent_options
        ],
        "defaults": policy.to_dict(),
    }
