# coding: utf-8
"""
Sentry configuration for error monitoring and tracking
"""
import sentry_sdk
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from loguru import logger

from config.config import SENTRY_DSN, ENVIRONMENT

# Request fields that must never leave the process
SENSITIVE_FIELDS = {"pin", "pin_hash", "Authorization", "X-API-Key"}


def init_sentry() -> None:
    """
    Initialize Sentry SDK for error monitoring

    Captures unhandled errors from the API, the database layer and
    background tasks. Disabled when SENTRY_DSN is empty.
    """
    if not SENTRY_DSN:
        logger.warning("SENTRY_DSN not configured - error monitoring disabled")
        return

    try:
        sentry_sdk.init(
            dsn=SENTRY_DSN,
            environment=ENVIRONMENT,
            integrations=[
                AsyncioIntegration(),
                SqlalchemyIntegration(),
                FastApiIntegration(),
            ],
            traces_sample_rate=0.1 if ENVIRONMENT == "production" else 1.0,
            sample_rate=1.0,
            attach_stacktrace=True,
            send_default_pii=False,
            max_breadcrumbs=50,
            before_send=before_send_hook,
        )

        logger.info(f"Sentry initialized successfully (Environment: {ENVIRONMENT})")

    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")


def before_send_hook(event, hint):
    """
    Filter events before sending to Sentry

    Drops KeyboardInterrupt and strips voucher PINs and auth headers.
    """
    if 'exc_info' in hint:
        exc_type, exc_value, tb = hint['exc_info']
        if isinstance(exc_value, KeyboardInterrupt):
            return None

    request = event.get('request')
    if request:
        headers = request.get('headers', {})
        for key in list(headers):
            if key in SENSITIVE_FIELDS:
                headers[key] = '[Filtered]'

        data = request.get('data')
        if isinstance(data, dict):
            for key in list(data):
                if key in SENSITIVE_FIELDS:
                    data[key] = '[Filtered]'

    return event


def set_player_context(player_id: str, session_id: str = None, tenant_id: str = None):
    """
    Set player context for Sentry events

    Args:
        player_id: Player (user) ID
        session_id: Play session ID (optional)
        tenant_id: Tenant ID (optional)
    """
    sentry_sdk.set_user({"id": str(player_id)})
    if session_id:
        sentry_sdk.set_tag("session_id", session_id)
    if tenant_id:
        sentry_sdk.set_tag("tenant_id", tenant_id)


def capture_exception(error: Exception, **extra_context):
    """
    Manually capture an exception with extra context

    Args:
        error: Exception to capture
        extra_context: Additional context data
    """
    with sentry_sdk.new_scope() as scope:
        for key, value in extra_context.items():
            scope.set_extra(key, value)

        sentry_sdk.capture_exception(error)
