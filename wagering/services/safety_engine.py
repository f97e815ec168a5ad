"""
Player Safety Risk Engine

Scores a play session from its recent ledger activity and issues throttled
interventions (NUDGE / COOLDOWN / STOP). Independently enforces the
player-declared session loss limit as a hard pre-commit gate.

Signals (over the last 20 spins unless noted):
- BET_ACCEL: >= 3 bet increases between consecutive spins (25)
- SPIN_RATE: median inter-spin interval < 1200 ms, >= 6 samples (20)
- GAME_HOP: >= 3 distinct games in the trailing 5 minutes (15)
- LOSS_STREAK: >= 12 consecutive zero-win spins, newest first (20)
- LOSS_CLUSTER: trailing 5-minute net loss >= max(5000c, 30% of session start balance) (20)

Bands are cumulative thresholds on the additive score:
STOP >= 75, TILT_RISK >= 50, ELEVATED >= 25, else CALM.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from statistics import median
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.safety_config import (
    MAX_SPINS,
    RECENT_SPINS,
    GAME_HOP_WINDOW_SECONDS,
    LOSS_CLUSTER_WINDOW_SECONDS,
    BET_ACCEL_MIN_INCREASES,
    SPIN_RATE_MEDIAN_MS,
    SPIN_RATE_MIN_SAMPLES,
    GAME_HOP_MIN_GAMES,
    LOSS_STREAK_MIN_SPINS,
    LOSS_CLUSTER_ABSOLUTE_CENTS,
    LOSS_CLUSTER_BALANCE_SHARE,
    SIGNAL_SCORES,
    BAND_STOP_SCORE,
    BAND_TILT_RISK_SCORE,
    BAND_ELEVATED_SCORE,
    NUDGE_THROTTLE_SECONDS,
    COOLDOWN_THROTTLE_SECONDS,
    COOLDOWN_SECONDS,
    ACTION_SEVERITY,
    get_action_message,
)
from wagering.core.enums import RiskBand, RiskSignal
from wagering.database import ledger
from wagering.database.models import (
    PlayerSafetyAction,
    PlayerSafetyLimit,
    SafetyActionType,
    utcnow,
)
from wagering.utils.money import to_number


LOSS_LIMIT_HIT = "LOSS_LIMIT_HIT"
DEFAULT_REASON = "RISK_SIGNAL"


# ===========================
# EXCEPTIONS
# ===========================


class LossLimitError(Exception):
    """Session loss limit would be reached; the round must be aborted"""

    code = "LOSS_LIMIT_REACHED"

    def __init__(self, loss_limit_cents: int, current_loss_cents: int, projected_loss_cents: int):
        super().__init__("Loss limit reached for this session.")
        self.loss_limit_cents = loss_limit_cents
        self.current_loss_cents = current_loss_cents
        self.projected_loss_cents = projected_loss_cents

    def to_evidence(self) -> Dict[str, int]:
        return {
            "loss_limit_cents": self.loss_limit_cents,
            "current_loss_cents": self.current_loss_cents,
            "projected_loss_cents": self.projected_loss_cents,
        }


class LossLimitLockedError(Exception):
    """Attempt to raise a loss limit that is already set"""

    code = "LOSS_LIMIT_LOCKED"

    def __init__(self, current_limit_cents: int, requested_limit_cents: int):
        super().__init__("Loss limit cannot be increased once set.")
        self.current_limit_cents = current_limit_cents
        self.requested_limit_cents = requested_limit_cents


# ===========================
# TYPES
# ===========================


@dataclass(frozen=True)
class SafetyContext:
    """Request-scoped identity every safety query is filtered by"""

    tenant_id: str
    session_id: Optional[str]
    player_id: Optional[str] = None


@dataclass
class RiskAssessment:
    score: int = 0
    band: RiskBand = RiskBand.CALM
    reasons: List[str] = field(default_factory=list)
    evidence: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "band": self.band.value,
            "reasons": list(self.reasons),
            "evidence": dict(self.evidence),
        }


@dataclass
class IssuedAction:
    action_type: SafetyActionType
    message: str
    severity: int
    reason_codes: List[str]
    cooldown_seconds: Optional[int] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action_type": self.action_type.value,
            "message": self.message,
            "severity": self.severity,
            "reason_codes": list(self.reason_codes),
            "cooldown_seconds": self.cooldown_seconds,
        }


@dataclass
class TelemetryResult:
    risk: RiskAssessment
    action: Optional[IssuedAction] = None
    event_id: Optional[int] = None


def band_for_score(score: int) -> RiskBand:
    if score >= BAND_STOP_SCORE:
        return RiskBand.STOP
    if score >= BAND_TILT_RISK_SCORE:
        return RiskBand.TILT_RISK
    if score >= BAND_ELEVATED_SCORE:
        return RiskBand.ELEVATED
    return RiskBand.CALM


# ===========================
# RISK SCORING
# ===========================


async def compute_risk(
    session: AsyncSession,
    ctx: SafetyContext,
    now: Optional[datetime] = None,
) -> RiskAssessment:
    """
    Score a session from its last SPIN events (read-only)

    Args:
        session: Database session
        ctx: Safety context (tenant + session)
        now: Reference time for the trailing windows

    Returns:
        RiskAssessment with score, band, reason codes and evidence
    """
    if not ctx.session_id:
        return RiskAssessment()

    spins = await ledger.query_recent_spins(session, ctx.tenant_id, ctx.session_id, limit=MAX_SPINS)
    if not spins:
        return RiskAssessment(evidence={"spin_count": 0})

    now = now or utcnow()
    reasons: List[str] = []
    evidence: Dict[str, Any] = {"spin_count": len(spins)}
    score = 0

    def trip(signal: RiskSignal) -> None:
        nonlocal score
        reasons.append(signal.value)
        score += SIGNAL_SCORES[signal.value]

    # Oldest -> newest
    recent = list(reversed(spins[:RECENT_SPINS]))

    bets = [spin.bet_cents for spin in recent]
    bet_increases = sum(1 for prev, cur in zip(bets, bets[1:]) if cur > prev)
    evidence["bet_increases"] = bet_increases
    if bet_increases >= BET_ACCEL_MIN_INCREASES:
        trip(RiskSignal.BET_ACCEL)

    # Pacing uses the device clock when the client reported one
    times = sorted(spin.client_ts or spin.ts for spin in recent)
    if len(times) >= SPIN_RATE_MIN_SAMPLES:
        deltas = [
            (cur - prev).total_seconds() * 1000
            for prev, cur in zip(times, times[1:])
            if cur > prev
        ]
        median_ms = median(deltas) if deltas else None
        evidence["median_spin_ms"] = median_ms
        if median_ms is not None and median_ms < SPIN_RATE_MEDIAN_MS:
            trip(RiskSignal.SPIN_RATE)

    hop_start = now - timedelta(seconds=GAME_HOP_WINDOW_SECONDS)
    games = {spin.game_key for spin in spins if spin.ts >= hop_start and spin.game_key}
    evidence["distinct_games_5m"] = len(games)
    if len(games) >= GAME_HOP_MIN_GAMES:
        trip(RiskSignal.GAME_HOP)

    loss_streak = 0
    for spin in spins:
        if spin.win_cents > 0:
            break
        loss_streak += 1
    evidence["loss_streak"] = loss_streak
    if loss_streak >= LOSS_STREAK_MIN_SPINS:
        trip(RiskSignal.LOSS_STREAK)

    cluster_start = now - timedelta(seconds=LOSS_CLUSTER_WINDOW_SECONDS)
    window = [spin for spin in spins if spin.ts >= cluster_start]
    loss_5m = max(0, sum(s.bet_cents for s in window) - sum(s.win_cents for s in window))
    evidence["loss_5m_cents"] = loss_5m

    start_balance = await ledger.session_start_balance_cents(session, ctx.tenant_id, ctx.session_id)
    evidence["session_start_balance_cents"] = start_balance
    if start_balance is not None:
        threshold = max(LOSS_CLUSTER_ABSOLUTE_CENTS, start_balance * LOSS_CLUSTER_BALANCE_SHARE)
        evidence["loss_cluster_threshold_cents"] = threshold
        if loss_5m >= threshold:
            trip(RiskSignal.LOSS_CLUSTER)

    return RiskAssessment(score=score, band=band_for_score(score), reasons=reasons, evidence=evidence)


# ===========================
# INTERVENTIONS
# ===========================


async def last_action_at(
    session: AsyncSession,
    ctx: SafetyContext,
    action_type: SafetyActionType,
) -> Optional[datetime]:
    stmt = (
        select(PlayerSafetyAction.created_at)
        .where(
            PlayerSafetyAction.tenant_id == ctx.tenant_id,
            PlayerSafetyAction.session_id == str(ctx.session_id),
            PlayerSafetyAction.action_type == action_type.value,
        )
        .order_by(PlayerSafetyAction.created_at.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def save_action(
    session: AsyncSession,
    ctx: SafetyContext,
    action: IssuedAction,
    details: Dict[str, Any],
    game_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> IssuedAction:
    """Persist an intervention to the audit trail (flushes, does not commit)"""
    row = PlayerSafetyAction(
        tenant_id=ctx.tenant_id,
        player_id=ctx.player_id,
        session_id=str(ctx.session_id),
        game_key=game_key,
        action_type=action.action_type.value,
        reason_codes=list(action.reason_codes),
        severity=action.severity,
        details=details,
        created_at=now or utcnow(),
    )
    session.add(row)
    await session.flush()
    action.id = row.id

    logger.info(
        f"Safety action {action.action_type.value} issued for session {ctx.session_id} "
        f"(player {ctx.player_id}, reasons {action.reason_codes})"
    )
    return action


async def maybe_issue_action(
    session: AsyncSession,
    ctx: SafetyContext,
    risk: RiskAssessment,
    game_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[IssuedAction]:
    """
    Issue an intervention for a risk band, subject to throttling

    ELEVATED -> NUDGE (at most one per 5 minutes)
    TILT_RISK -> COOLDOWN of 90s (at most one per 10 minutes)
    STOP -> STOP (every evaluation)

    The throttle lookup is not locked; two concurrent evaluations may both
    issue a NUDGE.

    Returns:
        Persisted IssuedAction, or None when nothing was issued
    """
    if not ctx.session_id or risk is None:
        return None

    now = now or utcnow()
    cooldown_seconds = None

    if risk.band == RiskBand.ELEVATED:
        action_type = SafetyActionType.NUDGE
        last = await last_action_at(session, ctx, action_type)
        if last and now - last < timedelta(seconds=NUDGE_THROTTLE_SECONDS):
            return None
    elif risk.band == RiskBand.TILT_RISK:
        action_type = SafetyActionType.COOLDOWN
        last = await last_action_at(session, ctx, action_type)
        if last and now - last < timedelta(seconds=COOLDOWN_THROTTLE_SECONDS):
            return None
        cooldown_seconds = COOLDOWN_SECONDS
    elif risk.band == RiskBand.STOP:
        action_type = SafetyActionType.STOP
    else:
        return None

    action = IssuedAction(
        action_type=action_type,
        message=get_action_message(action_type.value, COOLDOWN_SECONDS),
        severity=ACTION_SEVERITY[action_type.value],
        reason_codes=list(risk.reasons) or [DEFAULT_REASON],
        cooldown_seconds=cooldown_seconds,
    )
    details = {
        "score": risk.score,
        "band": risk.band.value,
        "evidence": risk.evidence,
        "cooldown_seconds": cooldown_seconds,
    }
    return await save_action(session, ctx, action, details, game_key=game_key, now=now)


async def get_recent_actions(
    session: AsyncSession,
    ctx: SafetyContext,
    limit: int = 20,
) -> List[PlayerSafetyAction]:
    stmt = (
        select(PlayerSafetyAction)
        .where(
            PlayerSafetyAction.tenant_id == ctx.tenant_id,
            PlayerSafetyAction.session_id == str(ctx.session_id),
        )
        .order_by(PlayerSafetyAction.created_at.desc(), PlayerSafetyAction.id.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ===========================
# LOSS LIMIT
# ===========================


async def get_loss_limit(session: AsyncSession, ctx: SafetyContext) -> Optional[PlayerSafetyLimit]:
    stmt = select(PlayerSafetyLimit).where(
        PlayerSafetyLimit.tenant_id == ctx.tenant_id,
        PlayerSafetyLimit.session_id == str(ctx.session_id),
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def set_loss_limit(
    session: AsyncSession,
    ctx: SafetyContext,
    loss_limit_cents: Any,
) -> PlayerSafetyLimit:
    """
    Set or lower the session loss limit

    First call creates and locks the limit; later calls may only lower it.

    Raises:
        ValueError: Missing session or non-positive limit
        LossLimitLockedError: Requested limit is higher than the current one
    """
    if not ctx.session_id:
        raise ValueError("Missing session id")

    requested = to_number(loss_limit_cents)
    if requested is None or requested <= 0:
        raise ValueError("loss_limit_cents must be > 0")
    requested = math.floor(requested)

    limit = await get_loss_limit(session, ctx)
    if limit is None:
        limit = PlayerSafetyLimit(
            tenant_id=ctx.tenant_id,
            player_id=ctx.player_id,
            session_id=str(ctx.session_id),
            loss_limit_cents=requested,
            locked_at=utcnow(),
        )
        session.add(limit)
        await session.commit()
        logger.info(f"Loss limit set for session {ctx.session_id}: {requested}c")
        return limit

    if requested > limit.loss_limit_cents:
        logger.warning(
            f"Rejected loss limit increase for session {ctx.session_id}: "
            f"{limit.loss_limit_cents}c -> {requested}c"
        )
        raise LossLimitLockedError(limit.loss_limit_cents, requested)

    if requested < limit.loss_limit_cents:
        logger.info(
            f"Loss limit lowered for session {ctx.session_id}: "
            f"{limit.loss_limit_cents}c -> {requested}c"
        )
        limit.loss_limit_cents = requested
        await session.commit()

    return limit


async def current_loss_cents(session: AsyncSession, ctx: SafetyContext) -> int:
    """Session-to-date net loss, max(0, bets - wins)"""
    bets, wins = await ledger.sum_bets_and_wins(session, ctx.tenant_id, ctx.session_id)
    return max(0, bets - wins)


async def enforce_loss_limit(
    session: AsyncSession,
    ctx: SafetyContext,
    proposed_additional_loss_cents: Any = 0,
) -> Optional[Dict[str, int]]:
    """
    Hard gate: abort the round if the session loss limit would be reached

    No-op when the session has no limit.

    Returns:
        Loss summary when a limit is set, else None

    Raises:
        LossLimitError: current + proposed >= limit
    """
    if not ctx.session_id:
        return None

    limit = await get_loss_limit(session, ctx)
    if limit is None:
        return None

    proposed = max(0, int(to_number(proposed_additional_loss_cents, 0)))
    current = await current_loss_cents(session, ctx)
    projected = current + proposed

    if projected >= limit.loss_limit_cents:
        logger.warning(
            f"Loss limit reached for session {ctx.session_id}: "
            f"projected {projected}c >= limit {limit.loss_limit_cents}c"
        )
        raise LossLimitError(limit.loss_limit_cents, current, projected)

    return {
        "loss_limit_cents": limit.loss_limit_cents,
        "current_loss_cents": current,
        "projected_loss_cents": projected,
    }


async def record_loss_limit_stop(
    session: AsyncSession,
    ctx: SafetyContext,
    error: LossLimitError,
    game_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> IssuedAction:
    """STOP action for a tripped loss limit (flushes, caller commits)"""
    action = IssuedAction(
        action_type=SafetyActionType.STOP,
        message=get_action_message(SafetyActionType.STOP.value),
        severity=ACTION_SEVERITY[SafetyActionType.STOP.value],
        reason_codes=[LOSS_LIMIT_HIT],
    )
    details = {
        "score": 100,
        "band": RiskBand.STOP.value,
        "evidence": error.to_evidence(),
    }
    return await save_action(session, ctx, action, details, game_key=game_key, now=now)


# ===========================
# TELEMETRY
# ===========================


def _parse_client_ts(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _cents(value: Any) -> Optional[int]:
    number = to_number(value)
    return int(round(number)) if number is not None else None


async def record_telemetry_event(
    session: AsyncSession,
    ctx: SafetyContext,
    payload: Dict[str, Any],
    now: Optional[datetime] = None,
):
    """
    Append a client telemetry event to the ledger

    The event time is the server clock; a parsed client timestamp is kept
    separately for spin pacing. SPIN events that carry the bet's action_id
    collapse onto the server-side row.
    """
    if not ctx.session_id:
        return None

    payload = payload or {}
    return await ledger.record_event(
        session,
        tenant_id=ctx.tenant_id,
        event_type=payload.get("event_type"),
        session_id=ctx.session_id,
        player_id=ctx.player_id,
        action_id=payload.get("action_id"),
        game_key=payload.get("game_key"),
        amount_cents=_cents(payload.get("amount_cents")),
        bet_cents=_cents(payload.get("bet_cents")),
        win_cents=_cents(payload.get("win_cents")),
        balance_cents=_cents(payload.get("balance_cents")),
        source="telemetry",
        meta=payload.get("meta"),
        ts=now,
        client_ts=_parse_client_ts(payload.get("client_ts")),
    )


async def process_telemetry_event(
    session: AsyncSession,
    ctx: SafetyContext,
    payload: Dict[str, Any],
    now: Optional[datetime] = None,
) -> TelemetryResult:
    """
    Record a telemetry event, gate on the loss limit, score and act

    The event is already in the ledger when the gate runs, so the gate is
    evaluated with no additional proposed loss.

    Raises:
        ValueError: Missing session id
        LossLimitError: Limit reached; a STOP action has been committed
    """
    if not ctx.session_id:
        raise ValueError("Missing session id")

    payload = payload or {}
    event = await record_telemetry_event(session, ctx, payload, now=now)

    try:
        await enforce_loss_limit(session, ctx, 0)
    except LossLimitError as e:
        await record_loss_limit_stop(session, ctx, e, game_key=payload.get("game_key"), now=now)
        await session.commit()
        raise

    risk = await compute_risk(session, ctx, now=now)
    action = await maybe_issue_action(session, ctx, risk, game_key=payload.get("game_key"), now=now)
    await session.commit()

    return TelemetryResult(risk=risk, action=action, event_id=event.id if event else None)
