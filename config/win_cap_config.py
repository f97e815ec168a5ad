# coding: utf-8
"""
Voucher Win-Cap Policy Configuration

System defaults for the per-voucher cashout cap and the post-cap decay regime.
Tenants override these through their stored config; every stored value passes
through normalize_win_cap_policy() before use.
"""

from typing import Dict, Tuple

from config.config import (
    VOUCHER_DECAY_RATE,
    VOUCHER_DECAY_MIN_AMOUNT,
    VOUCHER_DECAY_STAKE_MULTIPLIER,
)


# =======================
# WIN-CAP MODES
# =======================

WIN_CAP_MODE_FIXED = "fixed_percent"
WIN_CAP_MODE_RANDOM = "random_percent"


# =======================
# PERCENT OPTIONS
# =======================

# Percent of the voucher principal a player may cash out (operator picks one)
DEFAULT_PERCENT_OPTIONS: Tuple[float, ...] = (120, 150, 175, 200, 250, 300)

# Pool used when the cap is drawn at random per voucher
DEFAULT_RANDOM_PERCENT_OPTIONS: Tuple[float, ...] = (150, 175, 200, 225, 250, 300)

DEFAULT_FIXED_PERCENT: float = 200

MIN_PERCENT: float = 1
MAX_PERCENT: float = 10000


# =======================
# DECAY BOUNDS
# =======================

MIN_DECAY_RATE: float = 0.01
MAX_DECAY_RATE: float = 0.5


DEFAULT_WIN_CAP_POLICY: Dict = {
    "mode": WIN_CAP_MODE_FIXED,
    "fixed_percent": DEFAULT_FIXED_PERCENT,
    "percent_options": list(DEFAULT_PERCENT_OPTIONS),
    "random_percent_options": list(DEFAULT_RANDOM_PERCENT_OPTIONS),
    "decay_rate": VOUCHER_DECAY_RATE,
    "min_decay_amount": VOUCHER_DECAY_MIN_AMOUNT,
    "stake_decay_multiplier": VOUCHER_DECAY_STAKE_MULTIPLIER,
}


# Labels shown in the operator console
WIN_CAP_MODE_LABELS: Dict[str, str] = {
    WIN_CAP_MODE_FIXED: "Fixed % of voucher",
    WIN_CAP_MODE_RANDOM: "Random from list",
}
