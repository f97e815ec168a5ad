# coding: utf-8
"""
Player Safety API Endpoints
Loss limit, telemetry events and intervention history for the current play session
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.safety_config import get_action_message
from config.sentry import capture_exception
from wagering.api.context import get_player_context, require_session
from wagering.database.engine import get_session
from wagering.database.models import SafetyActionType
from wagering.services import safety_engine
from wagering.services.safety_engine import (
    LossLimitError,
    LossLimitLockedError,
    SafetyContext,
)

router = APIRouter(prefix="/safety", tags=["safety"])


# ===========================
# REQUEST / RESPONSE MODELS
# ===========================


class LossLimitRequest(BaseModel):
    loss_limit_cents: float


class LossLimitResponse(BaseModel):
    ok: bool = True
    loss_limit_cents: int
    locked: bool = True


class TelemetryEventRequest(BaseModel):
    """Client-side game event"""

    event_type: Optional[str] = "SPIN"
    game_key: Optional[str] = None
    action_id: Optional[str] = None
    bet_cents: Optional[float] = None
    win_cents: Optional[float] = None
    balance_cents: Optional[float] = None
    amount_cents: Optional[float] = None
    client_ts: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None


class RiskSummary(BaseModel):
    score: int
    band: str
    reasons: List[str]


class TelemetryEventResponse(BaseModel):
    ok: bool = True
    risk: RiskSummary
    action: Optional[Dict[str, Any]] = None


class SafetyActionResponse(BaseModel):
    id: int
    action_type: str
    reason_codes: List[str]
    severity: int
    game_key: Optional[str]
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


def loss_limit_reached_detail(error: LossLimitError) -> Dict[str, Any]:
    return {
        "ok": False,
        "code": error.code,
        "message": str(error),
        "evidence": error.to_evidence(),
        "action": {
            "action_type": SafetyActionType.STOP.value,
            "message": get_action_message(SafetyActionType.STOP.value),
        },
    }


# ===========================
# ENDPOINTS
# ===========================


@router.post("/loss-limit", response_model=LossLimitResponse)
async def set_loss_limit(
    request: LossLimitRequest,
    ctx: SafetyContext = Depends(get_player_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Set the session loss limit (once), or lower it

    Errors:
        400: Missing session id or non-positive limit
        409: LOSS_LIMIT_LOCKED - limit cannot be increased
    """
    require_session(ctx)
    try:
        limit = await safety_engine.set_loss_limit(session, ctx, request.loss_limit_cents)
        return LossLimitResponse(loss_limit_cents=limit.loss_limit_cents)

    except ValueError as e:
        raise HTTPException(status_code=400, detail={"ok": False, "error": str(e)})
    except LossLimitLockedError as e:
        raise HTTPException(
            status_code=409,
            detail={"ok": False, "code": e.code, "error": str(e)},
        )
    except Exception as e:
        logger.exception(f"Error setting loss limit for session {ctx.session_id}: {e}")
        capture_exception(e, session_id=ctx.session_id)
        raise HTTPException(status_code=500, detail="Failed to set loss limit")


@router.post("/event", response_model=TelemetryEventResponse)
async def post_event(
    request: TelemetryEventRequest,
    ctx: SafetyContext = Depends(get_player_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Record a telemetry event and evaluate the session

    Errors:
        400: Missing session id
        403: LOSS_LIMIT_REACHED - STOP action recorded
    """
    require_session(ctx)
    try:
        result = await safety_engine.process_telemetry_event(session, ctx, request.model_dump())
        return TelemetryEventResponse(
            risk=RiskSummary(
                score=result.risk.score,
                band=result.risk.band.value,
                reasons=result.risk.reasons,
            ),
            action=result.action.to_dict() if result.action else None,
        )

    except LossLimitError as e:
        raise HTTPException(status_code=403, detail=loss_limit_reached_detail(e))
    except Exception as e:
        logger.exception(f"Error processing safety event for session {ctx.session_id}: {e}")
        capture_exception(e, session_id=ctx.session_id)
        raise HTTPException(status_code=500, detail="Failed to process safety event")


@router.get("/actions", response_model=List[SafetyActionResponse])
async def list_actions(
    ctx: SafetyContext = Depends(get_player_context),
    session: AsyncSession = Depends(get_session),
    limit: int = Query(20, ge=1, le=100, description="Number of actions to return"),
):
    """Interventions issued for the current session, newest first"""
    require_session(ctx)
    actions = await safety_engine.get_recent_actions(session, ctx, limit=limit)
    return [
        SafetyActionResponse(
            id=a.id,
            action_type=a.action_type,
            reason_codes=list(a.reason_codes or []),
            severity=a.severity,
            game_key=a.game_key,
            details=a.details or {},
            created_at=a.created_at,
        )
        for a in actions
    ]
