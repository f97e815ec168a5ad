# coding: utf-8
"""
Voucher API Endpoints
Player redemption and win-cap option lists
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.sentry import capture_exception
from wagering.api.context import get_player_context
from wagering.database import crud
from wagering.database.engine import get_session
from wagering.services.outcome_mode import build_outcome_mode_options
from wagering.services.safety_engine import SafetyContext
from wagering.services.voucher_policy_state import build_voucher_policy_view
from wagering.services.voucher_service import VoucherError, VoucherService
from wagering.services.win_cap_policy import build_win_cap_options

router = APIRouter(prefix="/vouchers", tags=["vouchers"])


VOUCHER_ERROR_STATUS = {
    "VOUCHER_NOT_FOUND": 404,
    "INVALID_PIN": 404,
    "VOUCHER_NOT_REDEEMABLE": 409,
    "VOUCHER_EXPIRED": 410,
}


class RedeemRequest(BaseModel):
    code: str
    pin: str


class RedeemResponse(BaseModel):
    ok: bool = True
    voucher_id: int
    credited: float
    balance: float
    max_cashout: float
    outcome_mode: str
    voucher_policy: Optional[Dict[str, Any]] = None


@router.post("/redeem", response_model=RedeemResponse)
async def redeem(
    request: RedeemRequest,
    ctx: SafetyContext = Depends(get_player_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Redeem a voucher into the player's wallet

    Errors:
        404: Unknown code or wrong PIN
        409: Voucher already redeemed / cancelled / expired
        410: Voucher expired on redemption
    """
    try:
        result = await VoucherService.redeem_voucher(
            session,
            tenant_id=ctx.tenant_id,
            user_id=ctx.player_id,
            code=request.code,
            pin=request.pin,
            session_id=ctx.session_id,
        )
        return RedeemResponse(
            voucher_id=result.voucher.id,
            credited=result.credited,
            balance=crud.wallet_balance(result.wallet),
            max_cashout=result.max_cashout,
            outcome_mode=result.outcome_mode.value,
            voucher_policy=build_voucher_policy_view(
                result.voucher, result.wallet.balance, result.outcome_mode
            ),
        )

    except VoucherError as e:
        status = VOUCHER_ERROR_STATUS.get(e.code, 400)
        if e.code == "INVALID_PIN":
            code, message = "VOUCHER_NOT_FOUND", "Voucher not found"
        else:
            code, message = e.code, str(e)
        raise HTTPException(status_code=status, detail={"ok": False, "code": code, "error": message})
    except Exception as e:
        logger.exception(f"Error redeeming voucher for player {ctx.player_id}: {e}")
        capture_exception(e, player_id=ctx.player_id)
        raise HTTPException(status_code=500, detail="Failed to redeem voucher")


@router.get("/win-cap-options")
async def win_cap_options(
    ctx: SafetyContext = Depends(get_player_context),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Win-cap option lists and outcome mode for the tenant"""
    config = await crud.get_effective_config(session, ctx.tenant_id)
    return {
        "ok": True,
        "win_cap": build_win_cap_options(config["win_cap_policy"].to_dict()),
        "outcome_mode": build_outcome_mode_options(config["outcome_mode"]),
    }
