# coding: utf-8
"""
Request identity for player endpoints

Tenant, player and play session arrive as headers set by the upstream auth
layer; every core call receives them explicitly through SafetyContext.
"""

from typing import Optional

from fastapi import Header, HTTPException

from config.sentry import set_player_context
from wagering.services.safety_engine import SafetyContext


async def get_player_context(
    x_tenant_id: Optional[str] = Header(None),
    x_player_id: Optional[str] = Header(None),
    x_session_id: Optional[str] = Header(None),
) -> SafetyContext:
    """
    Dependency: build the request-scoped context

    Raises:
        HTTPException 401: Missing tenant or player
    """
    tenant_id = (x_tenant_id or "").strip()
    player_id = (x_player_id or "").strip()
    if not tenant_id or not player_id:
        raise HTTPException(status_code=401, detail="Missing player identity")

    session_id = (x_session_id or "").strip() or None
    set_player_context(player_id, session_id=session_id, tenant_id=tenant_id)

    return SafetyContext(tenant_id=tenant_id, session_id=session_id, player_id=player_id)


def require_session(ctx: SafetyContext) -> str:
    if not ctx.session_id:
        raise HTTPException(status_code=400, detail={"ok": False, "error": "Missing session id"})
    return ctx.session_id
