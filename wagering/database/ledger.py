"""
Ledger Store - append-only event log

Single source of truth for bets, spins, wins, deposits, withdrawals and
voucher lifecycle events. Every query is scoped by tenant_id explicitly.

Writes are idempotent on (action_id, event_type) and best-effort: a failed
ledger insert is logged and never blocks the financial path.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.safety_config import MAX_SPINS
from wagering.database.models import LedgerEvent, LedgerEventType, utcnow


@dataclass
class SpinSample:
    """One SPIN row with its bet/win amounts resolved"""

    ts: datetime
    game_key: Optional[str]
    bet_cents: int
    win_cents: int
    balance_cents: Optional[int]
    action_id: Optional[str] = None
    client_ts: Optional[datetime] = None


def normalize_event_type(value: Any) -> str:
    """Upper-case event type, SPIN when missing"""
    if value is None:
        return LedgerEventType.SPIN.value
    if isinstance(value, LedgerEventType):
        return value.value
    raw = str(value).strip().upper()
    return raw or LedgerEventType.SPIN.value


def _insert_ignore(session: AsyncSession, values: Dict[str, Any]):
    """INSERT ... ON CONFLICT (action_id, event_type) DO NOTHING, where supported"""
    dialect = session.bind.dialect.name if session.bind is not None else ""
    if dialect == "postgresql":
        stmt = pg_insert(LedgerEvent)
    elif dialect == "sqlite":
        stmt = sqlite_insert(LedgerEvent)
    else:
        return None
    return stmt.values(**values).on_conflict_do_nothing(
        index_elements=["action_id", "event_type"]
    )


async def find_event(
    session: AsyncSession,
    action_id: str,
    event_type: str,
    tenant_id: Optional[str] = None,
    player_id: Optional[str] = None,
) -> Optional[LedgerEvent]:
    """
    Get the ledger row for an idempotency key

    With tenant_id/player_id the row must also belong to that owner.
    """
    stmt = select(LedgerEvent).where(
        LedgerEvent.action_id == str(action_id),
        LedgerEvent.event_type == normalize_event_type(event_type),
    )
    if tenant_id is not None:
        stmt = stmt.where(LedgerEvent.tenant_id == str(tenant_id))
    if player_id is not None:
        stmt = stmt.where(LedgerEvent.player_id == str(player_id))
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


def is_same_owner(event: LedgerEvent, tenant_id: Any, player_id: Any) -> bool:
    """Whether a stored row belongs to the given tenant and player"""
    player = str(player_id) if player_id is not None else None
    return event.tenant_id == str(tenant_id) and event.player_id == player


async def _write_event(session: AsyncSession, values: Dict[str, Any]) -> Optional[LedgerEvent]:
    if values["action_id"]:
        stmt = _insert_ignore(session, values)
        if stmt is not None:
            await session.execute(stmt)
            return await find_event(session, values["action_id"], values["event_type"])

        existing = await find_event(session, values["action_id"], values["event_type"])
        if existing:
            logger.debug(
                f"Ledger event {values['event_type']}:{values['action_id']} already exists, skipping"
            )
            return existing

    event = LedgerEvent(**values)
    session.add(event)
    await session.flush()
    return event


async def record_event(
    session: AsyncSession,
    tenant_id: str,
    event_type: Any,
    session_id: Optional[str] = None,
    player_id: Optional[str] = None,
    action_id: Optional[str] = None,
    game_key: Optional[str] = None,
    amount_cents: Optional[int] = None,
    bet_cents: Optional[int] = None,
    win_cents: Optional[int] = None,
    balance_cents: Optional[int] = None,
    source: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
    ts: Optional[datetime] = None,
    client_ts: Optional[datetime] = None,
) -> Optional[LedgerEvent]:
    """
    Append an event to the ledger

    With an action_id the insert is insert-or-ignore on (action_id, event_type)
    and the stored row is returned whether it was just written or already
    existed. Rows without an action_id are always appended.

    The write runs in a SAVEPOINT: on failure only the ledger row is rolled
    back and the caller's transaction stays usable.

    Returns:
        LedgerEvent, or None if the write failed or the action_id belongs
        to another player
    """
    values = {
        "tenant_id": str(tenant_id),
        "ts": ts or utcnow(),
        "client_ts": client_ts,
        "player_id": str(player_id) if player_id is not None else None,
        "session_id": str(session_id) if session_id is not None else None,
        "action_id": str(action_id) if action_id else None,
        "game_key": str(game_key) if game_key else None,
        "event_type": normalize_event_type(event_type),
        "amount_cents": amount_cents,
        "bet_cents": bet_cents,
        "win_cents": win_cents,
        "balance_cents": balance_cents,
        "source": source,
        "meta": meta,
    }

    try:
        async with session.begin_nested():
            event = await _write_event(session, values)
    except SQLAlchemyError as e:
        logger.warning(
            f"[LEDGER] failed to record {values['event_type']} "
            f"(session={session_id}, action={action_id}): {e}"
        )
        return None

    if event is not None and not is_same_owner(event, tenant_id, player_id):
        logger.warning(
            f"[LEDGER] action {values['action_id']} ({values['event_type']}) belongs to "
            f"another player, not recorded for tenant={tenant_id} player={player_id}"
        )
        return None

    return event


async def query_recent_spins(
    session: AsyncSession,
    tenant_id: str,
    session_id: str,
    limit: int = MAX_SPINS,
) -> List[SpinSample]:
    """
    Get the most recent SPIN events for a play session, newest first

    SPIN rows missing bet/win amounts are completed from the BET/WIN rows
    that share their action_id.
    """
    stmt = (
        select(LedgerEvent)
        .where(
            LedgerEvent.tenant_id == str(tenant_id),
            LedgerEvent.session_id == str(session_id),
            LedgerEvent.event_type == LedgerEventType.SPIN.value,
        )
        .order_by(LedgerEvent.ts.desc(), LedgerEvent.id.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    rows = list(result.scalars().all())

    incomplete = {
        row.action_id
        for row in rows
        if row.action_id and (row.bet_cents is None or row.win_cents is None)
    }
    bets: Dict[str, int] = {}
    wins: Dict[str, int] = {}
    if incomplete:
        stmt = select(LedgerEvent).where(
            LedgerEvent.tenant_id == str(tenant_id),
            LedgerEvent.action_id.in_(incomplete),
            LedgerEvent.event_type.in_(
                [LedgerEventType.BET.value, LedgerEventType.WIN.value]
            ),
        )
        result = await session.execute(stmt)
        for row in result.scalars().all():
            if row.event_type == LedgerEventType.BET.value:
                bets[row.action_id] = row.bet_cents if row.bet_cents is not None else abs(row.amount_cents or 0)
            else:
                wins[row.action_id] = row.win_cents if row.win_cents is not None else (row.amount_cents or 0)

    samples = []
    for row in rows:
        bet = row.bet_cents if row.bet_cents is not None else bets.get(row.action_id, 0)
        win = row.win_cents if row.win_cents is not None else wins.get(row.action_id, 0)
        samples.append(
            SpinSample(
                ts=row.ts,
                game_key=row.game_key,
                bet_cents=int(bet or 0),
                win_cents=int(win or 0),
                balance_cents=row.balance_cents,
                action_id=row.action_id,
                client_ts=row.client_ts,
            )
        )
    return samples


async def sum_bets_and_wins(
    session: AsyncSession,
    tenant_id: str,
    session_id: str,
) -> Tuple[int, int]:
    """
    Session-to-date bet and win totals over SPIN rows

    Returns:
        Tuple of (bet_cents, win_cents)
    """
    stmt = select(
        func.coalesce(func.sum(LedgerEvent.bet_cents), 0),
        func.coalesce(func.sum(LedgerEvent.win_cents), 0),
    ).where(
        LedgerEvent.tenant_id == str(tenant_id),
        LedgerEvent.session_id == str(session_id),
        LedgerEvent.event_type == LedgerEventType.SPIN.value,
    )
    result = await session.execute(stmt)
    bets, wins = result.one()
    return int(bets or 0), int(wins or 0)


async def session_start_balance_cents(
    session: AsyncSession,
    tenant_id: str,
    session_id: str,
) -> Optional[int]:
    """Balance carried by the earliest event of the session, if any"""
    stmt = (
        select(LedgerEvent.balance_cents)
        .where(
            LedgerEvent.tenant_id == str(tenant_id),
            LedgerEvent.session_id == str(session_id),
            LedgerEvent.balance_cents.is_not(None),
        )
        .order_by(LedgerEvent.ts.asc(), LedgerEvent.id.asc())
        .limit(1)
    )
    result = await session.execute(stmt)
    value = result.scalar_one_or_none()
    return int(value) if value is not None else None
