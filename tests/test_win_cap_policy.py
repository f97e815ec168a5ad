"""
Tests for the win-cap policy resolver and outcome mode switch
"""

import pytest

from wagering.core.enums import OutcomeMode, WinCapMode
from wagering.services.outcome_mode import (
    build_outcome_mode_options,
    is_pure_rng,
    is_voucher_controlled,
    normalize_outcome_mode,
)
from wagering.services.win_cap_policy import (
    build_win_cap_options,
    compute_max_cashout,
    normalize_win_cap_policy,
    pick_random_percent,
    resolve_selection,
)


# ============================================================================
# NORMALISATION
# ============================================================================


def test_normalize_defaults():
    """Missing policy falls back to system defaults"""
    policy = normalize_win_cap_policy(None)

    assert policy.mode == WinCapMode.FIXED
    assert policy.fixed_percent == 200
    assert policy.percent_options == (120, 150, 175, 200, 250, 300)
    assert policy.fixed_percent in policy.percent_options
    assert 0.01 <= policy.decay_rate <= 0.5


def test_normalize_heals_bad_values():
    """Garbage options are dropped, fixed percent forced into the option list"""
    policy = normalize_win_cap_policy(
        {
            "mode": "something_else",
            "fixed_percent": 999,
            "percent_options": [300, "150", -5, "abc", 150.004, 0],
            "decay_rate": 3,
            "min_decay_amount": -1,
        }
    )

    assert policy.mode == WinCapMode.FIXED
    assert policy.percent_options == (150, 300)
    assert policy.fixed_percent == 150  # 999 is not an option and 200 is missing
    assert policy.decay_rate == 0.5
    assert policy.min_decay_amount == 0.0


def test_normalize_reads_camel_case():
    """Older tenant configs stored camelCase keys"""
    policy = normalize_win_cap_policy(
        {
            "mode": "random_percent",
            "fixedPercent": 150,
            "percentOptions": [150, 200],
            "randomPercentOptions": [175, 225],
            "decayRate": 0.1,
        }
    )

    assert policy.mode == WinCapMode.RANDOM
    assert policy.fixed_percent == 150
    assert policy.random_percent_options == (175, 225)
    assert policy.decay_rate == 0.1


def test_policy_to_dict_is_json_ready():
    data = normalize_win_cap_policy({}).to_dict()

    assert data["mode"] == "fixed_percent"
    assert isinstance(data["percent_options"], list)
    assert isinstance(data["random_percent_options"], list)


# ============================================================================
# SELECTION
# ============================================================================


def test_resolve_selection_policy_fixed():
    selection = resolve_selection({"fixed_percent": 150})

    assert selection.mode == WinCapMode.FIXED
    assert selection.selected_percent == 150
    assert selection.source == "policy_fixed"


def test_resolve_selection_request_fixed():
    selection = resolve_selection({}, requested_mode="fixed_percent", requested_percent=250)

    assert selection.selected_percent == 250
    assert selection.source == "request_fixed"


def test_resolve_selection_invalid_request_falls_back():
    """A percent outside the option list never fails the request"""
    selection = resolve_selection({}, requested_mode="fixed_percent", requested_percent=123)

    assert selection.selected_percent == 200
    assert selection.source == "policy_fixed"


def test_resolve_selection_random(sequence_rng):
    policy = {"random_percent_options": [150, 200, 250, 300]}

    low = resolve_selection(policy, requested_mode="random_percent", rng=sequence_rng([0.0]))
    high = resolve_selection(policy, requested_mode="random_percent", rng=sequence_rng([0.999]))

    assert low.mode == WinCapMode.RANDOM
    assert low.source == "policy_random"
    assert low.selected_percent == 150
    assert high.selected_percent == 300


def test_resolve_selection_uses_policy_mode(sequence_rng):
    selection = resolve_selection(
        {"mode": "random_percent", "random_percent_options": [175]},
        rng=sequence_rng([0.5]),
    )

    assert selection.mode == WinCapMode.RANDOM
    assert selection.selected_percent == 175


def test_pick_random_percent_bounds(sequence_rng):
    options = (100.0, 200.0)

    assert pick_random_percent(options, sequence_rng([0.0])) == 100.0
    assert pick_random_percent(options, sequence_rng([0.49])) == 100.0
    assert pick_random_percent(options, sequence_rng([0.5])) == 200.0
    # rng must return [0, 1) but an out-of-range draw is still clamped
    assert pick_random_percent(options, sequence_rng([1.0])) == 200.0


# ============================================================================
# MAX CASHOUT
# ============================================================================


@pytest.mark.parametrize(
    "amount, bonus, percent, expected",
    [
        (100, 0, 200, 200.0),
        (100, 50, 120, 150.0),  # never below total credit
        (100, 0, 0, 100.0),
        (80, 0, 125, 100.0),
    ],
)
def test_compute_max_cashout(amount, bonus, percent, expected):
    assert compute_max_cashout(amount, bonus, percent) == expected


def test_build_win_cap_options():
    options = build_win_cap_options({"percent_options": [150, 200]})

    assert [m["value"] for m in options["modes"]] == ["fixed_percent", "random_percent"]
    assert options["percent_options"] == [
        {"value": 150, "label": "150%"},
        {"value": 200, "label": "200%"},
    ]
    assert options["defaults"]["fixed_percent"] == 200


# ============================================================================
# OUTCOME MODE
# ============================================================================


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("pure_rng", OutcomeMode.PURE_RNG),
        ("RNG", OutcomeMode.PURE_RNG),
        ("legacy_rng", OutcomeMode.PURE_RNG),
        ("voucher", OutcomeMode.VOUCHER_CONTROLLED),
        (" Voucher_Controlled ", OutcomeMode.VOUCHER_CONTROLLED),
        (OutcomeMode.PURE_RNG, OutcomeMode.PURE_RNG),
    ],
)
def test_normalize_outcome_mode(raw, expected):
    assert normalize_outcome_mode(raw) == expected


def test_normalize_outcome_mode_fallback():
    assert normalize_outcome_mode("nonsense", OutcomeMode.PURE_RNG) == OutcomeMode.PURE_RNG
    assert is_pure_rng("rng")
    assert is_voucher_controlled("voucher_cap")


def test_build_outcome_mode_options():
    options = build_outcome_mode_options("rng")

    assert options["current_mode"] == "pure_rng"
    assert {o["value"] for o in options["options"]} == {"voucher_controlled", "pure_rng"}
