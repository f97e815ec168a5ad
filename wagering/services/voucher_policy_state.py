"""
Voucher Policy State Tracker

Per-voucher cap/decay bookkeeping persisted as JSON on the voucher row:
- max_cashout: frozen at redemption, never rewritten
- tracked_balance: balance attributable to the voucher after the last round
- phase: CapPhase.NORMAL -> CapPhase.DECAY, one-way
- cap_reached_at: set once, on entering DECAY
- decay_rounds: rounds settled in decay mode, only ever increments
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.config import (
    VOUCHER_DEFAULT_MAX_CASHOUT_MULTIPLIER,
    VOUCHER_DECAY_RATE,
    VOUCHER_DECAY_MIN_AMOUNT,
    VOUCHER_DECAY_STAKE_MULTIPLIER,
)
from config.win_cap_config import MIN_DECAY_RATE, MAX_DECAY_RATE
from wagering.core.enums import CapPhase, OutcomeMode, PayoutMode
from wagering.database.models import Voucher, VoucherStatus, Wallet, utcnow
from wagering.services.outcome_mode import normalize_outcome_mode
from wagering.services.payout_engine import PayoutOutcome
from wagering.utils.money import to_number, to_money, clamp


@dataclass
class VoucherPolicyState:
    """Cap/decay state of one redeemed voucher"""

    max_cashout: float = 0.0
    tracked_balance: Optional[float] = None
    phase: CapPhase = CapPhase.NORMAL
    cap_reached_at: Optional[datetime] = None
    decay_rounds: int = 0
    decay_rate: float = VOUCHER_DECAY_RATE
    min_decay_amount: float = VOUCHER_DECAY_MIN_AMOUNT
    stake_decay_multiplier: float = VOUCHER_DECAY_STAKE_MULTIPLIER
    last_mode: Optional[str] = None

    @property
    def decay_mode(self) -> bool:
        return self.phase == CapPhase.DECAY

    def enter_decay(self, now: datetime) -> None:
        """Move to DECAY; cap_reached_at is written only on the first call"""
        if not self.phase.can_transition_to(CapPhase.DECAY):
            raise ValueError(f"Invalid cap phase transition: {self.phase} -> {CapPhase.DECAY}")
        self.phase = CapPhase.DECAY
        if self.cap_reached_at is None:
            self.cap_reached_at = now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_cashout": to_money(self.max_cashout),
            "tracked_balance": (
                to_money(self.tracked_balance) if self.tracked_balance is not None else None
            ),
            "phase": self.phase.value,
            "decay_mode": self.decay_mode,
            "cap_reached_at": self.cap_reached_at.isoformat() if self.cap_reached_at else None,
            "decay_rounds": self.decay_rounds,
            "decay_rate": self.decay_rate,
            "min_decay_amount": self.min_decay_amount,
            "stake_decay_multiplier": self.stake_decay_multiplier,
            "last_mode": self.last_mode,
        }


def _pick(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def normalize_policy_state(raw: Any) -> VoucherPolicyState:
    """
    Read persisted policy state, healing malformed values

    Accepts the current snake_case layout and the older camelCase one.
    """
    raw = raw if isinstance(raw, dict) else {}

    cap_reached_at = _parse_timestamp(_pick(raw, "cap_reached_at", "capReachedAt"))
    phase_raw = str(_pick(raw, "phase") or "").lower()
    decaying = (
        phase_raw == CapPhase.DECAY.value
        or bool(_pick(raw, "decay_mode", "decayMode"))
        or cap_reached_at is not None
    )

    tracked = to_number(_pick(raw, "tracked_balance", "trackedBalance"))
    if tracked is None:
        tracked = to_number(_pick(raw, "last_balance", "lastBalance"))

    try:
        decay_rounds = max(0, int(_pick(raw, "decay_rounds", "decayRounds") or 0))
    except (TypeError, ValueError):
        decay_rounds = 0

    last_mode = _pick(raw, "last_mode", "lastMode")

    return VoucherPolicyState(
        max_cashout=max(0.0, to_number(_pick(raw, "max_cashout", "maxCashout"), 0.0)),
        tracked_balance=max(0.0, tracked) if tracked is not None else None,
        phase=CapPhase.DECAY if decaying else CapPhase.NORMAL,
        cap_reached_at=cap_reached_at,
        decay_rounds=decay_rounds,
        decay_rate=clamp(
            to_number(_pick(raw, "decay_rate", "decayRate"), VOUCHER_DECAY_RATE),
            MIN_DECAY_RATE,
            MAX_DECAY_RATE,
        ),
        min_decay_amount=max(
            0.0, to_number(_pick(raw, "min_decay_amount", "minDecayAmount"), VOUCHER_DECAY_MIN_AMOUNT)
        ),
        stake_decay_multiplier=max(
            0.0,
            to_number(
                _pick(raw, "stake_decay_multiplier", "stakeDecayMultiplier"),
                VOUCHER_DECAY_STAKE_MULTIPLIER,
            ),
        ),
        last_mode=str(last_mode) if last_mode else None,
    )


def resolve_voucher_max_cashout(voucher: Optional[Voucher], fallback_amount: Any = 0) -> float:
    """
    Effective max cashout for a voucher

    First positive of: the frozen column, the stored policy state,
    fallback_amount x default multiplier, the total credit.
    """
    if voucher is None:
        return 0.0

    state = normalize_policy_state(voucher.policy_state)
    amount = to_number(voucher.amount, 0.0)
    bonus = to_number(voucher.bonus_amount, 0.0)
    fallback = to_number(fallback_amount)

    candidates = (
        to_number(voucher.max_cashout),
        state.max_cashout,
        fallback * VOUCHER_DEFAULT_MAX_CASHOUT_MULTIPLIER if fallback else None,
        amount + bonus,
    )
    for value in candidates:
        if value is not None and value > 0:
            return to_money(value)
    return 0.0


def apply_round_outcome(
    voucher: Voucher,
    max_cashout: Any,
    outcome: PayoutOutcome,
    balance_after_settle: Any,
    now: Optional[datetime] = None,
) -> VoucherPolicyState:
    """
    Fold one settled round into the voucher's policy state

    The serialized state is reassigned onto voucher.policy_state; the caller
    flushes it as the last write of the bet transaction.

    Args:
        voucher: Voucher row (locked by the caller)
        max_cashout: Cap used for the round; only stored if none is frozen yet
        outcome: PayoutOutcome from compute_payout
        balance_after_settle: Balance attributable to the voucher after the round
        now: Timestamp for cap_reached_at

    Returns:
        Updated VoucherPolicyState
    """
    now = now or utcnow()
    state = normalize_policy_state(voucher.policy_state)

    if state.max_cashout <= 0:
        state.max_cashout = to_money(max_cashout)
    if not voucher.max_cashout or voucher.max_cashout <= 0:
        voucher.max_cashout = state.max_cashout

    state.tracked_balance = to_money(balance_after_settle)
    state.last_mode = outcome.mode.value

    if outcome.reached_or_exceeded_cap or state.decay_mode:
        was_decaying = state.decay_mode
        state.enter_decay(now)
        if not was_decaying:
            logger.info(
                f"Voucher {voucher.id} reached cap {state.max_cashout} "
                f"(balance {state.tracked_balance}), entering decay"
            )

    if outcome.mode == PayoutMode.DECAY:
        state.decay_rounds += 1

    voucher.policy_state = state.to_dict()
    return state


def build_initial_policy_state(max_cashout: Any, tracked_balance: Any, policy: Any = None) -> VoucherPolicyState:
    """Fresh NORMAL-phase state written at redemption"""
    return VoucherPolicyState(
        max_cashout=to_money(max_cashout),
        tracked_balance=to_money(tracked_balance),
        decay_rate=getattr(policy, "decay_rate", VOUCHER_DECAY_RATE),
        min_decay_amount=getattr(policy, "min_decay_amount", VOUCHER_DECAY_MIN_AMOUNT),
        stake_decay_multiplier=getattr(policy, "stake_decay_multiplier", VOUCHER_DECAY_STAKE_MULTIPLIER),
    )


# ===========================
# READ PATH
# ===========================


def build_voucher_policy_view(
    voucher: Optional[Voucher],
    wallet_balance: Any = 0,
    outcome_mode: Any = OutcomeMode.VOUCHER_CONTROLLED,
) -> Optional[Dict[str, Any]]:
    """Read-only projection of a voucher's cap/decay state for API consumers"""
    if voucher is None:
        return None

    controlled = normalize_outcome_mode(outcome_mode) == OutcomeMode.VOUCHER_CONTROLLED
    view = {
        "voucher_id": voucher.id,
        "status": voucher.status,
        "redeemed_at": voucher.redeemed_at,
        "expires_at": voucher.expires_at,
        "outcomes_controlled_by_voucher": controlled,
        "jackpot_excluded_from_cap": True,
        "max_cashout": None,
        "tracked_balance": None,
        "remaining_before_cap": None,
        "cap_progress": None,
        "decay_mode": None,
        "cap_reached_at": None,
        "decay_rounds": None,
        "last_mode": None,
    }
    if not controlled:
        return view

    state = normalize_policy_state(voucher.policy_state)
    max_cashout = resolve_voucher_max_cashout(
        voucher, to_number(voucher.amount, 0.0) + to_number(voucher.bonus_amount, 0.0)
    )
    if state.tracked_balance is not None:
        tracked = to_money(state.tracked_balance)
    else:
        tracked = to_money(max(0.0, min(max_cashout, to_number(wallet_balance, 0.0))))

    view.update(
        max_cashout=max_cashout,
        tracked_balance=tracked,
        remaining_before_cap=to_money(max(0.0, max_cashout - tracked)) if max_cashout > 0 else 0.0,
        cap_progress=to_money(min(1.0, tracked / max_cashout)) if max_cashout > 0 else 0.0,
        decay_mode=state.decay_mode,
        cap_reached_at=state.cap_reached_at,
        decay_rounds=state.decay_rounds,
        last_mode=state.last_mode,
    )
    return view


async def resolve_active_voucher_for_wallet(
    session: AsyncSession,
    wallet: Optional[Wallet],
    user_id: Optional[str],
    tenant_id: Optional[str] = None,
    lock: bool = False,
    persist_wallet_link: bool = False,
) -> Optional[Voucher]:
    """
    Find the voucher currently governing a wallet

    Explicit wallet.active_voucher_id link first, else the player's most
    recently redeemed voucher.

    Args:
        lock: SELECT ... FOR UPDATE the voucher row (bet path)
        persist_wallet_link: Store the resolved voucher on the wallet
    """
    if wallet is None or not user_id:
        return None

    tenant_id = tenant_id or wallet.tenant_id
    voucher = None

    if wallet.active_voucher_id:
        stmt = select(Voucher).where(
            Voucher.id == wallet.active_voucher_id,
            Voucher.tenant_id == tenant_id,
        )
        if lock:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        voucher = result.scalar_one_or_none()

    if voucher is None:
        stmt = (
            select(Voucher)
            .where(
                Voucher.tenant_id == tenant_id,
                Voucher.redeemed_by_user_id == str(user_id),
                Voucher.status == VoucherStatus.REDEEMED.value,
            )
            .order_by(Voucher.redeemed_at.desc(), Voucher.created_at.desc())
            .limit(1)
        )
        if lock:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        voucher = result.scalar_one_or_none()

    if persist_wallet_link and voucher is not None and wallet.active_voucher_id != voucher.id:
        wallet.active_voucher_id = voucher.id
        await session.flush()

    return voucher


async def resolve_wallet_voucher_policy_state(
    session: AsyncSession,
    wallet: Optional[Wallet],
    user_id: Optional[str],
    tenant_id: Optional[str] = None,
    outcome_mode: Any = OutcomeMode.VOUCHER_CONTROLLED,
    persist_wallet_link: bool = False,
) -> Optional[Dict[str, Any]]:
    """Active voucher lookup plus projection in one call"""
    if wallet is None or not user_id:
        return None

    voucher = await resolve_active_voucher_for_wallet(
        session,
        wallet,
        user_id,
        tenant_id=tenant_id,
        persist_wallet_link=persist_wallet_link,
    )
    return build_voucher_policy_view(voucher, wallet.balance, outcome_mode)
