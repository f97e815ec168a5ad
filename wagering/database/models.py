"""
Database models for the voucher wagering core

SQLAlchemy 2.0 models with full type hints
"""

from datetime import datetime, UTC
from typing import Optional, Any
from enum import Enum

from sqlalchemy import (
    String,
    Text,
    Integer,
    BigInteger,
    Numeric,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    Index,
    JSON,
)
from sqlalchemy.types import TypeDecorator
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import JSONB


class Base(DeclarativeBase):
    """Base class for all models"""

    pass


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime stored as UTC

    SQLite drops tzinfo on the way in and hands back naive values; this keeps
    every value the application sees aware and in UTC on both backends.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Money is kept at 4 decimal places and handled as float in the engines
Money = Numeric(18, 4, asdecimal=False)


def utcnow() -> datetime:
    return datetime.now(UTC)


# ===========================
# ENUMS
# ===========================


class VoucherStatus(str, Enum):
    """Voucher lifecycle status"""

    NEW = "new"  # Issued by staff, not yet redeemed
    REDEEMED = "redeemed"  # Credited to a player wallet, cap frozen
    CANCELLED = "cancelled"  # Voided by staff while NEW
    EXPIRED = "expired"  # Passed expires_at while NEW


class WalletTransactionType(str, Enum):
    """Wallet transaction types"""

    VOUCHER_CREDIT = "voucher_credit"
    BET = "bet"
    WIN = "win"
    ADJUSTMENT = "adjustment"


class LedgerEventType(str, Enum):
    """Ledger event types"""

    BET = "BET"
    SPIN = "SPIN"
    WIN = "WIN"
    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"
    VOUCHER_ISSUED = "VOUCHER_ISSUED"
    VOUCHER_REDEEMED = "VOUCHER_REDEEMED"
    VOUCHER_EXPIRED = "VOUCHER_EXPIRED"
    VOUCHER_CANCELLED = "VOUCHER_CANCELLED"
    LOGIN = "LOGIN"
    JACKPOT_WIN = "JACKPOT_WIN"


class SafetyActionType(str, Enum):
    """Player safety interventions"""

    NUDGE = "NUDGE"  # Soft check-in message
    COOLDOWN = "COOLDOWN"  # Forced short pause
    STOP = "STOP"  # Session halted


# ===========================
# MODELS
# ===========================


class Voucher(Base):
    """
    Voucher model - tenant-scoped redeemable credit

    Tracks:
    - Principal and bonus amounts
    - Lifecycle status (new -> redeemed | cancelled | expired)
    - Frozen max cashout (set once at redemption)
    - Per-round cap/decay bookkeeping in policy_state
    """

    __tablename__ = "vouchers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64), index=True, nullable=False, comment="Owning tenant"
    )
    code: Mapped[str] = mapped_column(String(32), nullable=False, comment="Redeem code")
    pin_hash: Mapped[str] = mapped_column(
        String(64), nullable=False, comment="SHA-256 of the voucher PIN"
    )

    amount: Mapped[float] = mapped_column(
        Money, nullable=False, comment="Principal credited on redeem"
    )
    bonus_amount: Mapped[float] = mapped_column(
        Money, default=0, nullable=False, comment="Bonus credited on redeem"
    )
    max_cashout: Mapped[float] = mapped_column(
        Money,
        default=0,
        nullable=False,
        comment="Maximum cashout, frozen at redemption",
    )
    currency: Mapped[str] = mapped_column(String(16), default="FUN", nullable=False)

    status: Mapped[str] = mapped_column(
        String(16),
        default=VoucherStatus.NEW.value,
        nullable=False,
        index=True,
        comment="new | redeemed | cancelled | expired",
    )

    created_by_user_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, comment="Issuing staff member"
    )
    redeemed_by_user_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, index=True, comment="Redeeming player"
    )
    redeemed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    policy_state: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Cap/decay state: max_cashout, tracked_balance, phase, decay_rounds, ...",
    )
    cap_strategy: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="How the cap percent was selected (mode, percent, source)",
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (UniqueConstraint("tenant_id", "code", name="uix_voucher_tenant_code"),)

    def __repr__(self) -> str:
        return f"<Voucher(id={self.id}, code={self.code}, status={self.status}, max_cashout={self.max_cashout})>"


class Wallet(Base):
    """
    Wallet model - one balance per player, tenant and currency

    active_voucher_id links the voucher whose cap governs payouts.
    """

    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    currency: Mapped[str] = mapped_column(String(16), default="FUN", nullable=False)

    balance: Mapped[float] = mapped_column(
        Money, default=0, nullable=False, comment="Current balance"
    )

    active_voucher_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("vouchers.id", ondelete="SET NULL"),
        nullable=True,
        comment="Voucher currently governing outcomes",
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    transactions = relationship(
        "WalletTransaction",
        back_populates="wallet",
        cascade="all, delete-orphan",
        order_by="WalletTransaction.id.desc()",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", "currency", name="uix_wallet_owner"),
    )

    def __repr__(self) -> str:
        return f"<Wallet(id={self.id}, user_id={self.user_id}, balance={self.balance})>"


class WalletTransaction(Base):
    """
    Wallet transaction model - balance snapshots for every credit/debit
    """

    __tablename__ = "wallet_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    wallet_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("wallets.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    tx_type: Mapped[str] = mapped_column(
        String(32), nullable=False, index=True, comment="voucher_credit | bet | win | adjustment"
    )
    amount: Mapped[float] = mapped_column(
        Money, nullable=False, comment="Signed amount (negative for debits)"
    )
    balance_before: Mapped[float] = mapped_column(Money, nullable=False)
    balance_after: Mapped[float] = mapped_column(Money, nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    meta: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False, index=True
    )

    wallet = relationship("Wallet", back_populates="transactions")

    def __repr__(self) -> str:
        return f"<WalletTransaction(id={self.id}, type={self.tx_type}, amount={self.amount})>"


class LedgerEvent(Base):
    """
    Ledger event model - immutable append-only record

    Features:
    - Single source of truth for bets, spins, wins and voucher lifecycle
    - Idempotency via unique (action_id, event_type); rows without an
      action_id are never deduplicated here
    """

    __tablename__ = "ledger_events"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    ts: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False, comment="Server event time"
    )
    client_ts: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True, comment="Device clock, spin pacing only"
    )

    player_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    action_id: Mapped[Optional[str]] = mapped_column(
        String(128), nullable=True, comment="Idempotency key"
    )
    game_key: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    amount_cents: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    bet_cents: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    win_cents: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    balance_cents: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    source: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    meta: Mapped[Optional[Any]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("action_id", "event_type", name="uix_ledger_action_event"),
        Index("ix_ledger_session_type_ts", "tenant_id", "session_id", "event_type", "ts"),
    )

    def __repr__(self) -> str:
        return f"<LedgerEvent(id={self.id}, type={self.event_type}, session={self.session_id}, action={self.action_id})>"


class PlayerSafetyLimit(Base):
    """
    Player safety limit - one loss limit per play session

    The limit may only ever be lowered once set.
    """

    __tablename__ = "player_safety_limits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    player_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    session_id: Mapped[str] = mapped_column(String(128), nullable=False)

    loss_limit_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    locked_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "session_id", name="uix_safety_limit_session"),
    )

    def __repr__(self) -> str:
        return f"<PlayerSafetyLimit(session_id={self.session_id}, loss_limit_cents={self.loss_limit_cents})>"


class PlayerSafetyAction(Base):
    """
    Player safety action - immutable audit trail of interventions
    """

    __tablename__ = "player_safety_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    player_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    session_id: Mapped[str] = mapped_column(String(128), nullable=False)
    game_key: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    action_type: Mapped[str] = mapped_column(
        String(16), nullable=False, comment="NUDGE | COOLDOWN | STOP"
    )
    reason_codes: Mapped[list] = mapped_column(JSONType, nullable=False)
    severity: Mapped[int] = mapped_column(Integer, nullable=False, comment="1-5")
    details: Mapped[dict] = mapped_column(
        JSONType, nullable=False, comment="score, band, evidence, cooldown_seconds"
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_safety_action_session_type", "tenant_id", "session_id", "action_type", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<PlayerSafetyAction(id={self.id}, type={self.action_type}, session={self.session_id})>"


class TenantSetting(Base):
    """
    Tenant setting - key/value JSON configuration

    Keys: "system:config" for system-wide defaults and
    "tenant:<id>:config" for per-tenant overrides.
    """

    __tablename__ = "tenant_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    value: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<TenantSetting(key={self.key})>"
