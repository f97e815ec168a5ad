"""Services for the voucher economy and player safety"""
from .payout_engine import compute_payout, compute_pure_rng_payout
from .win_cap_policy import resolve_selection, compute_max_cashout, normalize_win_cap_policy

__all__ = [
    'compute_payout',
    'compute_pure_rng_payout',
    'resolve_selection',
    'compute_max_cashout',
    'normalize_win_cap_policy',
]
