# coding: utf-8
"""
Wallet API Endpoints
Bets and read-only wallet / voucher policy projections
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.sentry import capture_exception
from wagering.api.context import get_player_context
from wagering.api.safety import loss_limit_reached_detail
from wagering.database import crud
from wagering.database.engine import get_session
from wagering.services.bet_service import BetRejectedError, BetService
from wagering.services.safety_engine import LossLimitError, SafetyContext
from wagering.services.voucher_policy_state import resolve_wallet_voucher_policy_state

router = APIRouter(prefix="/wallets", tags=["wallets"])


# ===========================
# REQUEST / RESPONSE MODELS
# ===========================


class BetRequest(BaseModel):
    game_key: str
    stake: float
    action_id: Optional[str] = None
    currency: str = "FUN"


class BetResponse(BaseModel):
    ok: bool = True
    action_id: str
    game_key: str
    stake: float
    payout: float
    balance_before: float
    balance_after: float
    mode: str
    voucher_id: Optional[int] = None
    replayed: bool = False
    policy: Optional[Dict[str, Any]] = None
    risk: Optional[Dict[str, Any]] = None
    action: Optional[Dict[str, Any]] = None


class WalletResponse(BaseModel):
    balance: float
    currency: str
    active_voucher_id: Optional[int]
    voucher_policy: Optional[Dict[str, Any]] = None


# ===========================
# ENDPOINTS
# ===========================


@router.post("/bet", response_model=BetResponse)
async def place_bet(
    request: BetRequest,
    ctx: SafetyContext = Depends(get_player_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Place and settle a bet

    Errors:
        400: Invalid stake / game
        403: LOSS_LIMIT_REACHED
        409: INSUFFICIENT_FUNDS
    """
    try:
        result = await BetService.place_bet(
            session,
            ctx,
            user_id=ctx.player_id,
            game_key=request.game_key,
            stake=request.stake,
            action_id=request.action_id,
            currency=request.currency,
        )
        return BetResponse(
            action_id=result.action_id,
            game_key=result.game_key,
            stake=result.stake,
            payout=result.payout,
            balance_before=result.balance_before,
            balance_after=result.balance_after,
            mode=result.mode,
            voucher_id=result.voucher_id,
            replayed=result.replayed,
            policy=result.policy,
            risk=result.risk,
            action=result.action,
        )

    except ValueError as e:
        raise HTTPException(status_code=400, detail={"ok": False, "error": str(e)})
    except LossLimitError as e:
        raise HTTPException(status_code=403, detail=loss_limit_reached_detail(e))
    except BetRejectedError as e:
        raise HTTPException(status_code=409, detail={"ok": False, "code": e.code, "error": str(e)})
    except Exception as e:
        logger.exception(f"Error placing bet for player {ctx.player_id}: {e}")
        capture_exception(e, player_id=ctx.player_id, session_id=ctx.session_id)
        raise HTTPException(status_code=500, detail="Failed to place bet")


@router.get("/voucher-policy")
async def get_voucher_policy(
    currency: str = "FUN",
    ctx: SafetyContext = Depends(get_player_context),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Read-only cap/decay projection of the player's active voucher

    Returns:
        {"ok": true, "outcome_mode": "...", "voucher_policy": {...} | null}
    """
    config = await crud.get_effective_config(session, ctx.tenant_id)
    wallet = await crud.get_wallet(session, ctx.player_id, ctx.tenant_id, currency)
    view = await resolve_wallet_voucher_policy_state(
        session,
        wallet,
        ctx.player_id,
        tenant_id=ctx.tenant_id,
        outcome_mode=config["outcome_mode"],
    )
    return {
        "ok": True,
        "outcome_mode": config["outcome_mode"].value,
        "voucher_policy": view,
    }


@router.get("", response_model=WalletResponse)
async def get_wallet(
    currency: str = "FUN",
    ctx: SafetyContext = Depends(get_player_context),
    session: AsyncSession = Depends(get_session),
):
    """Current balance plus the active voucher projection"""
    wallet = await crud.get_wallet(session, ctx.player_id, ctx.tenant_id, currency)
    if wallet is None:
        raise HTTPException(status_code=404, detail="Wallet not found")

    config = await crud.get_effective_config(session, ctx.tenant_id)
    view = await resolve_wallet_voucher_policy_state(
        session,
        wallet,
        ctx.player_id,
        tenant_id=ctx.tenant_id,
        outcome_mode=config["outcome_mode"],
    )
    return WalletResponse(
        balance=crud.wallet_balance(wallet),
        currency=wallet.currency,
        active_voucher_id=wallet.active_voucher_id,
        voucher_policy=view,
    )
