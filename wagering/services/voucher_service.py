# coding: utf-8
"""
Voucher Service

Voucher lifecycle: issue (staff) -> redeem (player) | cancel | expire.

Features:
- Numeric codes and PINs, PIN stored only as SHA-256
- Win-cap selected at issuance, frozen onto the voucher at redemption
- Wallet credit, wallet -> voucher link and initial policy state in one transaction
- Ledger events for every lifecycle transition
"""

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.config import (
    VOUCHER_CODE_LENGTH,
    VOUCHER_PIN_LENGTH,
    VOUCHER_DEFAULT_EXPIRY_DAYS,
)
from wagering.core.enums import OutcomeMode, PayoutMode
from wagering.database import crud, ledger
from wagering.database.models import (
    LedgerEventType,
    Voucher,
    VoucherStatus,
    Wallet,
    WalletTransactionType,
    utcnow,
)
from wagering.services.voucher_policy_state import (
    VoucherPolicyState,
    build_initial_policy_state,
    resolve_voucher_max_cashout,
)
from wagering.services.win_cap_policy import compute_max_cashout, resolve_selection
from wagering.utils.money import to_cents, to_money, to_number


MAX_CODE_ATTEMPTS = 5


class VoucherError(Exception):
    """Voucher operation rejected"""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


@dataclass
class IssuedVoucher:
    voucher: Voucher
    pin: str  # Plain PIN, returned once for printing


@dataclass
class RedeemResult:
    voucher: Voucher
    wallet: Wallet
    credited: float
    max_cashout: float
    outcome_mode: OutcomeMode


def hash_pin(pin: str) -> str:
    return hashlib.sha256(str(pin).strip().encode("utf-8")).hexdigest()


def verify_pin(pin: str, pin_hash: str) -> bool:
    return hmac.compare_digest(hash_pin(pin), pin_hash or "")


def random_numeric(length: int) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


class VoucherService:
    """Service for issuing and redeeming vouchers"""

    @staticmethod
    async def get_by_code(
        session: AsyncSession,
        tenant_id: str,
        code: str,
        lock: bool = False,
    ) -> Optional[Voucher]:
        stmt = select(Voucher).where(
            Voucher.tenant_id == tenant_id,
            Voucher.code == str(code).strip(),
        )
        if lock:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def _generate_code(session: AsyncSession, tenant_id: str) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = random_numeric(VOUCHER_CODE_LENGTH)
            if await VoucherService.get_by_code(session, tenant_id, code) is None:
                return code
        raise VoucherError("CODE_GENERATION_FAILED", "Could not generate a unique voucher code")

    @staticmethod
    async def issue_voucher(
        session: AsyncSession,
        tenant_id: str,
        amount: Any,
        bonus_amount: Any = 0,
        created_by: Optional[str] = None,
        currency: str = "FUN",
        expires_in_days: Optional[int] = VOUCHER_DEFAULT_EXPIRY_DAYS,
        requested_mode: Any = None,
        requested_percent: Any = None,
        max_cashout: Any = None,
        rng=None,
    ) -> IssuedVoucher:
        """
        Issue a NEW voucher

        The cap percent is selected now (policy fallback never fails the
        request) and recorded as the voucher's cap strategy; the cap itself is
        frozen at redemption.

        Args:
            session: Database session
            tenant_id: Tenant ID
            amount: Principal (> 0)
            bonus_amount: Bonus credited with the principal (>= 0)
            created_by: Issuing staff member
            currency: Wallet currency
            expires_in_days: Days until expiry (None = never)
            requested_mode: fixed_percent / random_percent
            requested_percent: Requested cap percent (fixed mode)
            max_cashout: Manual cap amount, overrides percent selection
            rng: Random source for random_percent mode

        Returns:
            IssuedVoucher with the plain PIN

        Raises:
            ValueError: Invalid amounts
        """
        value_amount = to_number(amount)
        value_bonus = to_number(bonus_amount, 0.0)
        if value_amount is None or value_amount <= 0:
            raise ValueError("amount must be > 0")
        if value_bonus is None or value_bonus < 0:
            raise ValueError("bonus_amount must be >= 0")

        config = await crud.get_effective_config(session, tenant_id)
        outcome_mode: OutcomeMode = config["outcome_mode"]
        total_credit = to_money(value_amount + value_bonus)

        if outcome_mode == OutcomeMode.PURE_RNG:
            cap = 0.0
            cap_strategy = {"mode": OutcomeMode.PURE_RNG.value, "percent": None, "source": "outcome_mode"}
        elif max_cashout is not None:
            manual = to_number(max_cashout)
            if manual is None or manual < total_credit:
                raise ValueError("max_cashout must be greater than or equal to total voucher credit")
            cap = to_money(manual)
            cap_strategy = {"mode": "manual_amount", "percent": None, "source": "request_manual"}
        else:
            selection = resolve_selection(
                config["win_cap_policy"],
                requested_mode=requested_mode,
                requested_percent=requested_percent,
                rng=rng,
            )
            cap = compute_max_cashout(value_amount, value_bonus, selection.selected_percent)
            cap_strategy = {
                "mode": selection.mode.value,
                "percent": selection.selected_percent,
                "source": selection.source,
            }

        code = await VoucherService._generate_code(session, tenant_id)
        pin = random_numeric(VOUCHER_PIN_LENGTH)
        now = utcnow()

        voucher = Voucher(
            tenant_id=tenant_id,
            code=code,
            pin_hash=hash_pin(pin),
            amount=to_money(value_amount),
            bonus_amount=to_money(value_bonus),
            max_cashout=cap,
            currency=currency,
            status=VoucherStatus.NEW.value,
            created_by_user_id=created_by,
            expires_at=now + timedelta(days=expires_in_days) if expires_in_days else None,
            cap_strategy=cap_strategy,
        )
        session.add(voucher)
        await session.flush()

        await ledger.record_event(
            session,
            tenant_id=tenant_id,
            event_type=LedgerEventType.VOUCHER_ISSUED,
            action_id=f"voucher:{voucher.id}",
            amount_cents=to_cents(total_credit),
            source="voucher_service",
            meta={"code": code, "max_cashout": cap, "cap_strategy": cap_strategy, "created_by": created_by},
        )
        await session.commit()

        logger.info(
            f"Voucher {voucher.id} issued for tenant {tenant_id}: "
            f"{voucher.amount}+{voucher.bonus_amount} {currency}, cap {cap} ({cap_strategy['source']})"
        )
        return IssuedVoucher(voucher=voucher, pin=pin)

    @staticmethod
    async def redeem_voucher(
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        code: str,
        pin: str,
        session_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RedeemResult:
        """
        Redeem a NEW voucher into the player's wallet

        Freezes max_cashout (voucher_controlled) or zeroes it (pure_rng),
        credits amount + bonus, links the wallet to the voucher and writes the
        initial policy state, all in one transaction.

        Raises:
            VoucherError: VOUCHER_NOT_FOUND, INVALID_PIN, VOUCHER_NOT_REDEEMABLE, VOUCHER_EXPIRED
        """
        now = now or utcnow()

        voucher = await VoucherService.get_by_code(session, tenant_id, code, lock=True)
        if voucher is None:
            raise VoucherError("VOUCHER_NOT_FOUND", "Voucher not found")
        if not verify_pin(pin, voucher.pin_hash):
            logger.warning(f"Invalid PIN for voucher {voucher.id} (user {user_id})")
            raise VoucherError("INVALID_PIN", "Invalid voucher PIN")
        if voucher.status != VoucherStatus.NEW.value:
            raise VoucherError("VOUCHER_NOT_REDEEMABLE", f"Voucher is {voucher.status}")
        if voucher.expires_at and voucher.expires_at < now:
            await VoucherService._transition(session, voucher, VoucherStatus.EXPIRED, LedgerEventType.VOUCHER_EXPIRED)
            await session.commit()
            raise VoucherError("VOUCHER_EXPIRED", "Voucher has expired")

        config = await crud.get_effective_config(session, tenant_id)
        outcome_mode: OutcomeMode = config["outcome_mode"]

        amount = to_money(voucher.amount)
        bonus = to_money(voucher.bonus_amount)
        credited = to_money(amount + bonus)

        wallet = await crud.find_or_create_wallet(
            session, user_id, tenant_id, currency=voucher.currency, lock=True
        )
        await crud.credit_debit(
            session,
            wallet,
            credited,
            WalletTransactionType.VOUCHER_CREDIT,
            reference=f"voucher:{voucher.code}",
            metadata={
                "voucher_id": voucher.id,
                "amount": amount,
                "bonus_amount": bonus,
                "outcome_mode": outcome_mode.value,
            },
        )
        wallet.active_voucher_id = voucher.id

        if outcome_mode == OutcomeMode.VOUCHER_CONTROLLED:
            max_cashout = resolve_voucher_max_cashout(voucher, credited)
            state = build_initial_policy_state(max_cashout, credited, config["win_cap_policy"])
        else:
            max_cashout = 0.0
            state = VoucherPolicyState(last_mode=PayoutMode.PURE_RNG.value)

        voucher.max_cashout = max_cashout
        voucher.policy_state = state.to_dict()
        voucher.status = VoucherStatus.REDEEMED.value
        voucher.redeemed_at = now
        voucher.redeemed_by_user_id = str(user_id)
        await session.flush()

        await ledger.record_event(
            session,
            tenant_id=tenant_id,
            event_type=LedgerEventType.VOUCHER_REDEEMED,
            player_id=user_id,
            session_id=session_id,
            action_id=f"voucher:{voucher.id}",
            amount_cents=to_cents(credited),
            balance_cents=to_cents(wallet.balance),
            source="voucher_service",
            meta={"code": voucher.code, "max_cashout": max_cashout, "outcome_mode": outcome_mode.value},
            ts=now,
        )
        await session.commit()

        logger.info(
            f"Voucher {voucher.id} redeemed by user {user_id}: +{credited}, "
            f"max cashout {max_cashout} ({outcome_mode.value})"
        )
        return RedeemResult(
            voucher=voucher,
            wallet=wallet,
            credited=credited,
            max_cashout=max_cashout,
            outcome_mode=outcome_mode,
        )

    @staticmethod
    async def _transition(
        session: AsyncSession,
        voucher: Voucher,
        status: VoucherStatus,
        event_type: LedgerEventType,
        actor: Optional[str] = None,
    ) -> Voucher:
        """NEW -> CANCELLED | EXPIRED (flushes, caller commits)"""
        if voucher.status != VoucherStatus.NEW.value:
            raise VoucherError("VOUCHER_NOT_NEW", f"Voucher is {voucher.status}")

        voucher.status = status.value
        await session.flush()

        await ledger.record_event(
            session,
            tenant_id=voucher.tenant_id,
            event_type=event_type,
            action_id=f"voucher:{voucher.id}",
            amount_cents=to_cents(to_money(voucher.amount) + to_money(voucher.bonus_amount)),
            source="voucher_service",
            meta={"code": voucher.code, "actor": actor},
        )
        logger.info(f"Voucher {voucher.id} -> {status.value}")
        return voucher

    @staticmethod
    async def cancel_voucher(
        session: AsyncSession,
        tenant_id: str,
        code: str,
        cancelled_by: Optional[str] = None,
    ) -> Voucher:
        voucher = await VoucherService.get_by_code(session, tenant_id, code, lock=True)
        if voucher is None:
            raise VoucherError("VOUCHER_NOT_FOUND", "Voucher not found")
        await VoucherService._transition(
            session, voucher, VoucherStatus.CANCELLED, LedgerEventType.VOUCHER_CANCELLED, actor=cancelled_by
        )
        await session.commit()
        return voucher

    @staticmethod
    async def expire_voucher(session: AsyncSession, tenant_id: str, code: str) -> Voucher:
        voucher = await VoucherService.get_by_code(session, tenant_id, code, lock=True)
        if voucher is None:
            raise VoucherError("VOUCHER_NOT_FOUND", "Voucher not found")
        await VoucherService._transition(session, voucher, VoucherStatus.EXPIRED, LedgerEventType.VOUCHER_EXPIRED)
        await session.commit()
        return voucher

    @staticmethod
    async def expire_overdue_vouchers(
        session: AsyncSession,
        now: Optional[datetime] = None,
        tenant_id: Optional[str] = None,
    ) -> int:
        """
        Batch job: expire every NEW voucher past its expires_at

        Returns:
            Number of vouchers expired
        """
        now = now or utcnow()
        stmt = select(Voucher).where(
            Voucher.status == VoucherStatus.NEW.value,
            Voucher.expires_at.is_not(None),
            Voucher.expires_at < now,
        )
        if tenant_id:
            stmt = stmt.where(Voucher.tenant_id == tenant_id)

        result = await session.execute(stmt.with_for_update())
        vouchers: List[Voucher] = list(result.scalars().all())

        for voucher in vouchers:
            await VoucherService._transition(
                session, voucher, VoucherStatus.EXPIRED, LedgerEventType.VOUCHER_EXPIRED, actor="expiry_job"
            )
        await session.commit()

        if vouchers:
            logger.info(f"Expired {len(vouchers)} overdue vouchers")
        return len(vouchers)

    @staticmethod
    def to_public_dict(voucher: Voucher) -> Dict[str, Any]:
        """Voucher fields safe to return to clients (no PIN hash)"""
        return {
            "id": voucher.id,
            "code": voucher.code,
            "amount": voucher.amount,
            "bonus_amount": voucher.bonus_amount,
            "max_cashout": voucher.max_cashout,
            "currency": voucher.currency,
            "status": voucher.status,
            "redeemed_at": voucher.redeemed_at,
            "expires_at": voucher.expires_at,
            "cap_strategy": voucher.cap_strategy,
        }
