"""
CRUD operations for the voucher wagering core

Async database operations using SQLAlchemy 2.0
"""

import logging
from copy import deepcopy
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.config import DEFAULT_OUTCOME_MODE
from config.win_cap_config import DEFAULT_WIN_CAP_POLICY
from wagering.database.models import (
    TenantSetting,
    Wallet,
    WalletTransaction,
    WalletTransactionType,
)
from wagering.services.outcome_mode import normalize_outcome_mode
from wagering.services.win_cap_policy import normalize_win_cap_policy
from wagering.utils.money import to_money, to_number

logger = logging.getLogger(__name__)


SYSTEM_CONFIG_KEY = "system:config"

DEFAULT_SYSTEM_CONFIG: Dict[str, Any] = {
    "vouchers_enabled": True,
    "deposits_enabled": True,
    "withdrawals_enabled": True,
    "outcome_mode": DEFAULT_OUTCOME_MODE,
    "win_cap_policy": DEFAULT_WIN_CAP_POLICY,
}


def tenant_config_key(tenant_id: str) -> str:
    return f"tenant:{tenant_id}:config"


# ===========================
# TENANT CONFIG OPERATIONS
# ===========================


async def get_setting(session: AsyncSession, key: str) -> Optional[TenantSetting]:
    stmt = select(TenantSetting).where(TenantSetting.key == key)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_setting_value(session: AsyncSession, key: str) -> Dict[str, Any]:
    """Stored JSON object for a key ({} when missing or not an object)"""
    setting = await get_setting(session, key)
    if setting is None or not isinstance(setting.value, dict):
        return {}
    return dict(setting.value)


async def set_setting_value(
    session: AsyncSession,
    key: str,
    value: Dict[str, Any],
    description: Optional[str] = None,
) -> TenantSetting:
    """Upsert a settings row (flushes, does not commit)"""
    setting = await get_setting(session, key)
    if setting is None:
        setting = TenantSetting(key=key, value=value, description=description)
        session.add(setting)
    else:
        # Reassign so the JSON column is marked dirty
        setting.value = dict(value)
        if description is not None:
            setting.description = description
    await session.flush()
    return setting


async def get_effective_config(session: AsyncSession, tenant_id: Optional[str]) -> Dict[str, Any]:
    """
    Effective configuration for a tenant

    System defaults <- system row <- tenant row (shallow merge), then
    outcome_mode and win_cap_policy are normalised.

    Args:
        session: Database session
        tenant_id: Tenant ID (None for system-only config)

    Returns:
        Dict with outcome_mode (OutcomeMode) and win_cap_policy (WinCapPolicy)
    """
    effective = deepcopy(DEFAULT_SYSTEM_CONFIG)
    effective.update(await get_setting_value(session, SYSTEM_CONFIG_KEY))
    if tenant_id:
        effective.update(await get_setting_value(session, tenant_config_key(tenant_id)))

    effective["outcome_mode"] = normalize_outcome_mode(effective.get("outcome_mode"))
    effective["win_cap_policy"] = normalize_win_cap_policy(effective.get("win_cap_policy"))
    return effective


async def update_tenant_config(
    session: AsyncSession,
    tenant_id: str,
    patch: Dict[str, Any],
) -> Dict[str, Any]:
    """
    Merge operator overrides into a tenant's stored config

    outcome_mode and win_cap_policy are normalised before they are stored.

    Returns:
        Stored tenant config
    """
    current = await get_setting_value(session, tenant_config_key(tenant_id))
    current.update(patch or {})

    if "outcome_mode" in current:
        current["outcome_mode"] = normalize_outcome_mode(current["outcome_mode"]).value
    if "win_cap_policy" in current:
        current["win_cap_policy"] = normalize_win_cap_policy(current["win_cap_policy"]).to_dict()

    await set_setting_value(session, tenant_config_key(tenant_id), current)
    logger.info(f"Tenant {tenant_id} config updated: {sorted((patch or {}).keys())}")
    return current


# ===========================
# WALLET OPERATIONS
# ===========================


async def get_wallet(
    session: AsyncSession,
    user_id: str,
    tenant_id: str,
    currency: str = "FUN",
    lock: bool = False,
) -> Optional[Wallet]:
    stmt = select(Wallet).where(
        Wallet.tenant_id == tenant_id,
        Wallet.user_id == str(user_id),
        Wallet.currency == currency,
    )
    if lock:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def find_or_create_wallet(
    session: AsyncSession,
    user_id: str,
    tenant_id: str,
    currency: str = "FUN",
    lock: bool = False,
) -> Wallet:
    """
    Get existing wallet or create a zero-balance one

    Args:
        session: Database session
        user_id: Player ID
        tenant_id: Tenant ID
        currency: Wallet currency
        lock: SELECT ... FOR UPDATE (bet path)

    Returns:
        Wallet model
    """
    wallet = await get_wallet(session, user_id, tenant_id, currency, lock=lock)
    if wallet is not None:
        return wallet

    wallet = Wallet(tenant_id=tenant_id, user_id=str(user_id), currency=currency, balance=0)
    session.add(wallet)
    await session.flush()

    logger.info(f"Wallet created for user {user_id} (tenant {tenant_id}, {currency})")
    return wallet


async def credit_debit(
    session: AsyncSession,
    wallet: Wallet,
    amount: Any,
    tx_type: WalletTransactionType,
    reference: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> float:
    """
    Apply a signed amount to a wallet and record the transaction

    Positive amounts credit, negative amounts debit. Flushes, does not commit.

    Returns:
        New balance

    Raises:
        ValueError: If the balance would go negative
    """
    delta = to_money(amount)
    balance_before = to_money(wallet.balance)
    balance_after = to_money(balance_before + delta)

    if balance_after < 0:
        raise ValueError(
            f"Insufficient balance: {balance_before} available, {abs(delta)} requested"
        )

    wallet.balance = balance_after
    session.add(
        WalletTransaction(
            tenant_id=wallet.tenant_id,
            wallet_id=wallet.id,
            tx_type=tx_type.value if isinstance(tx_type, WalletTransactionType) else str(tx_type),
            amount=delta,
            balance_before=balance_before,
            balance_after=balance_after,
            reference=reference,
            meta=metadata,
        )
    )
    await session.flush()

    logger.debug(
        f"Wallet {wallet.id} {tx_type}: {delta:+.4f} ({balance_before} -> {balance_after})"
    )
    return balance_after


async def get_wallet_transactions(
    session: AsyncSession,
    wallet_id: int,
    limit: int = 50,
) -> List[WalletTransaction]:
    stmt = (
        select(WalletTransaction)
        .where(WalletTransaction.wallet_id == wallet_id)
        .order_by(WalletTransaction.id.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


def wallet_balance(wallet: Optional[Wallet]) -> float:
    return to_money(to_number(wallet.balance, 0.0)) if wallet is not None else 0.0
