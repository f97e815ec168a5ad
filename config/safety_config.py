"""
Player safety configuration

Signal thresholds, scores, band cut-offs and intervention throttles used by
the player safety risk engine.
"""

from typing import Dict


# ============================================================================
# SPIN WINDOWS
# ============================================================================

MAX_SPINS = 100             # Spins pulled per evaluation
RECENT_SPINS = 20           # Spins used for bet acceleration / spin rate

GAME_HOP_WINDOW_SECONDS = 5 * 60
LOSS_CLUSTER_WINDOW_SECONDS = 5 * 60


# ============================================================================
# SIGNAL THRESHOLDS
# ============================================================================

BET_ACCEL_MIN_INCREASES = 3         # Strictly-increasing consecutive bets
SPIN_RATE_MEDIAN_MS = 1200          # Median inter-spin interval below this trips
SPIN_RATE_MIN_SAMPLES = 6           # Timestamps required before spin rate is judged
GAME_HOP_MIN_GAMES = 3              # Distinct games inside the hop window
LOSS_STREAK_MIN_SPINS = 12          # Consecutive zero-win spins
LOSS_CLUSTER_ABSOLUTE_CENTS = 5000
LOSS_CLUSTER_BALANCE_SHARE = 0.3    # Share of session-starting balance


SIGNAL_SCORES: Dict[str, int] = {
    "BET_ACCEL": 25,
    "SPIN_RATE": 20,
    "GAME_HOP": 15,
    "LOSS_STREAK": 20,
    "LOSS_CLUSTER": 20,
}


# ============================================================================
# BANDS (cumulative thresholds on the additive score)
# ============================================================================

BAND_STOP_SCORE = 75
BAND_TILT_RISK_SCORE = 50
BAND_ELEVATED_SCORE = 25


# ============================================================================
# INTERVENTIONS
# ============================================================================

NUDGE_THROTTLE_SECONDS = 5 * 60
COOLDOWN_THROTTLE_SECONDS = 10 * 60
COOLDOWN_SECONDS = 90

ACTION_SEVERITY: Dict[str, int] = {
    "NUDGE": 2,
    "COOLDOWN": 4,
    "STOP": 5,
}

ACTION_MESSAGES: Dict[str, str] = {
    "NUDGE": (
        "Quick check-in: your pace/bets changed a lot in the last few minutes. "
        "Want to take a short break?"
    ),
    "COOLDOWN": "Let's pause for {seconds}s. Your balance and session will still be here.",
    "STOP": "Session limit reached. You've hit your loss cap for this session.",
}


def get_action_message(action_type: str, cooldown_seconds: int = COOLDOWN_SECONDS) -> str:
    """Player-facing message for an intervention"""
    template = ACTION_MESSAGES.get(action_type, "")
    return template.format(seconds=cooldown_seconds)
