# coding: utf-8
"""
Bet Service

One bet/settle cycle in a single transaction:

1. validate the stake (before anything touches the database)
2. replay a retried action_id from the ledger without mutating anything
3. loss-limit gate (hard, before any wallet debit)
4. lock the wallet row, re-check the replay under the lock, check funds
5. lock the active voucher and compute the payout under its cap
   (pure_rng tenants bypass the voucher policy)
6. debit stake, credit payout, append BET / WIN / SPIN ledger events
7. write the voucher policy state last, commit
8. after commit: score the session and maybe issue an intervention (best-effort)
"""

import uuid
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from wagering.core.enums import OutcomeMode, PayoutMode
from wagering.database import crud, ledger
from wagering.database.models import LedgerEventType, WalletTransactionType, utcnow
from wagering.services import safety_engine
from wagering.services.payout_engine import compute_payout, compute_pure_rng_payout, default_rng
from wagering.services.safety_engine import LossLimitError, SafetyContext
from wagering.services.voucher_policy_state import (
    apply_round_outcome,
    build_voucher_policy_view,
    normalize_policy_state,
    resolve_active_voucher_for_wallet,
    resolve_voucher_max_cashout,
)
from wagering.utils.money import to_cents, to_money, to_number


class BetRejectedError(Exception):
    """Bet refused before settlement (insufficient funds, missing wallet)"""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


@dataclass
class BetResult:
    action_id: str
    game_key: str
    stake: float
    payout: float
    balance_before: float
    balance_after: float
    mode: str
    voucher_id: Optional[int] = None
    outcome: Optional[Dict[str, Any]] = None
    policy: Optional[Dict[str, Any]] = None
    risk: Optional[Dict[str, Any]] = None
    action: Optional[Dict[str, Any]] = None
    replayed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def settlement_snapshot(self) -> Dict[str, Any]:
        """Fields stored on the SPIN ledger row for replays"""
        return {
            "action_id": self.action_id,
            "game_key": self.game_key,
            "stake": self.stake,
            "payout": self.payout,
            "balance_before": self.balance_before,
            "balance_after": self.balance_after,
            "mode": self.mode,
            "voucher_id": self.voucher_id,
            "outcome": self.outcome,
        }


class BetService:
    """Service for placing and settling bets"""

    @staticmethod
    async def _replay(
        session: AsyncSession,
        ctx: SafetyContext,
        user_id: str,
        action_id: str,
    ) -> Optional[BetResult]:
        event = await ledger.find_event(session, action_id, LedgerEventType.SPIN.value)
        if event is None:
            return None

        if not ledger.is_same_owner(event, ctx.tenant_id, user_id):
            logger.warning(
                f"Bet {action_id} from user {user_id} (tenant {ctx.tenant_id}) "
                f"reuses another player's action id"
            )
            raise BetRejectedError("ACTION_ID_CONFLICT", "action_id is already used by another bet")

        snapshot = event.meta.get("settlement") if isinstance(event.meta, dict) else None
        if not isinstance(snapshot, dict):
            return None

        logger.info(f"Bet {action_id} already settled, replaying stored result")
        return BetResult(**snapshot, replayed=True)

    @staticmethod
    async def place_bet(
        session: AsyncSession,
        ctx: SafetyContext,
        user_id: str,
        game_key: str,
        stake: Any,
        action_id: Optional[str] = None,
        currency: str = "FUN",
        rng=None,
        now: Optional[datetime] = None,
    ) -> BetResult:
        """
        Place a bet and settle it

        Args:
            session: Database session
            ctx: Safety context (tenant, play session, player)
            user_id: Wallet owner
            game_key: Game identifier
            stake: Bet amount (> 0)
            action_id: Idempotency key; retries with the same key replay the result
            currency: Wallet currency
            rng: Random source (tests pass fixed sequences)
            now: Settlement time

        Returns:
            BetResult

        Raises:
            ValueError: Invalid stake or game
            LossLimitError: Session loss limit reached (STOP recorded)
            BetRejectedError: INSUFFICIENT_FUNDS
        """
        stake_value = to_number(stake)
        if stake_value is None or stake_value <= 0:
            raise ValueError("stake must be > 0")
        if not game_key:
            raise ValueError("game_key is required")

        stake_value = to_money(stake_value)
        stake_cents = to_cents(stake_value)
        rng = rng or default_rng()
        now = now or utcnow()

        if action_id:
            replay = await BetService._replay(session, ctx, user_id, action_id)
            if replay is not None:
                return replay
        retry_key = action_id
        action_id = action_id or uuid.uuid4().hex

        try:
            await safety_engine.enforce_loss_limit(session, ctx, stake_cents)
        except LossLimitError as e:
            await session.rollback()
            await safety_engine.record_loss_limit_stop(session, ctx, e, game_key=game_key, now=now)
            await session.commit()
            raise

        wallet = await crud.get_wallet(session, user_id, ctx.tenant_id, currency, lock=True)

        # A concurrent request with the same key may have settled while we waited on the lock
        if retry_key:
            try:
                replay = await BetService._replay(session, ctx, user_id, retry_key)
            except BetRejectedError:
                await session.rollback()
                raise
            if replay is not None:
                await session.rollback()
                return replay

        if wallet is None or to_money(wallet.balance) < stake_value:
            await session.rollback()
            raise BetRejectedError("INSUFFICIENT_FUNDS", "Insufficient balance for this bet")

        config = await crud.get_effective_config(session, ctx.tenant_id)
        outcome_mode: OutcomeMode = config["outcome_mode"]

        balance_before = to_money(wallet.balance)
        balance_after_bet = to_money(balance_before - stake_value)
        voucher = None
        cap = 0.0
        outcome = None

        if outcome_mode == OutcomeMode.VOUCHER_CONTROLLED:
            voucher = await resolve_active_voucher_for_wallet(
                session, wallet, user_id, tenant_id=ctx.tenant_id, lock=True
            )
            state = normalize_policy_state(voucher.policy_state) if voucher else None
            if voucher is not None:
                cap = resolve_voucher_max_cashout(
                    voucher, to_money(voucher.amount) + to_money(voucher.bonus_amount)
                )
            outcome = compute_payout(
                stake_value, balance_before, balance_after_bet, cap, state, rng
            )
            payout = outcome.payout_amount
            mode = outcome.mode.value
        else:
            payout = compute_pure_rng_payout(stake_value, rng)
            mode = PayoutMode.PURE_RNG.value

        reference = f"bet:{action_id}"
        await crud.credit_debit(
            session, wallet, -stake_value, WalletTransactionType.BET,
            reference=reference, metadata={"game_key": game_key},
        )
        balance_after = to_money(wallet.balance)
        if payout > 0:
            balance_after = await crud.credit_debit(
                session, wallet, payout, WalletTransactionType.WIN,
                reference=reference, metadata={"game_key": game_key, "mode": mode},
            )

        result = BetResult(
            action_id=action_id,
            game_key=game_key,
            stake=stake_value,
            payout=payout,
            balance_before=balance_before,
            balance_after=balance_after,
            mode=mode,
            voucher_id=voucher.id if voucher else None,
            outcome=outcome.to_dict() if outcome else None,
        )

        common = dict(
            tenant_id=ctx.tenant_id,
            session_id=ctx.session_id,
            player_id=user_id,
            action_id=action_id,
            game_key=game_key,
            source="bet_service",
            ts=now,
        )
        await ledger.record_event(
            session, event_type=LedgerEventType.BET,
            amount_cents=-stake_cents, bet_cents=stake_cents, **common,
        )
        if payout > 0:
            await ledger.record_event(
                session, event_type=LedgerEventType.WIN,
                amount_cents=to_cents(payout), win_cents=to_cents(payout), **common,
            )
        await ledger.record_event(
            session, event_type=LedgerEventType.SPIN,
            bet_cents=stake_cents, win_cents=to_cents(payout),
            balance_cents=to_cents(balance_after),
            meta={"settlement": result.settlement_snapshot()},
            **common,
        )

        if voucher is not None and outcome is not None:
            apply_round_outcome(voucher, cap, outcome, outcome.balance_after_settle, now=now)
            await session.flush()
            result.policy = build_voucher_policy_view(voucher, balance_after, outcome_mode)

        await session.commit()

        logger.info(
            f"Bet {action_id} settled for user {user_id} on {game_key}: "
            f"stake {stake_value}, payout {payout}, balance {balance_before} -> {balance_after} ({mode})"
        )

        # Read-only scoring after commit; a failure only delays an intervention
        try:
            risk = await safety_engine.compute_risk(session, ctx, now=now)
            action = await safety_engine.maybe_issue_action(session, ctx, risk, game_key=game_key, now=now)
            await session.commit()
            result.risk = risk.to_dict()
            result.action = action.to_dict() if action else None
        except Exception as e:
            await session.rollback()
            logger.warning(f"Risk evaluation failed after bet {action_id}: {e}")

        return result
