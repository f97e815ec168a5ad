# coding: utf-8
"""
Logging configuration with loguru for the voucher wagering core

Sinks:
- console
- wagering_{date}.log: everything at DEBUG
- error_{date}.log: ERROR and above
- safety_{date}.log: risk engine, loss limits and ledger warnings, kept
  longer for responsible-gaming audits
- Sentry for ERROR and CRITICAL when SENTRY_DSN is set
"""
import sys
from pathlib import Path
from typing import Optional

from loguru import logger
import sentry_sdk

from config.config import LOG_LEVEL, ENVIRONMENT, SENTRY_DSN


FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"

# Modules whose records also go to the safety audit log
AUDIT_MODULES = (
    "wagering.services.safety_engine",
    "wagering.services.bet_service",
    "wagering.database.ledger",
)


def is_audit_record(record) -> bool:
    return (record["name"] or "").startswith(AUDIT_MODULES) and record["level"].no >= logger.level("INFO").no


def setup_logging(logs_dir: Optional[Path] = None, console: bool = True) -> Path:
    """
    Install loguru sinks

    Args:
        logs_dir: Log directory (default: <repo>/logs)
        console: Also log to stdout

    Returns:
        The log directory in use
    """
    logger.remove()

    logs_dir = Path(logs_dir) if logs_dir else Path(__file__).parent.parent / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)

    if console:
        logger.add(
            sys.stdout,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "<level>{message}</level>"
            ),
            level=LOG_LEVEL,
            colorize=True,
        )

    logger.add(
        logs_dir / "wagering_{time:YYYY-MM-DD}.log",
        format=FILE_FORMAT,
        level="DEBUG",
        rotation="00:00",
        retention="7 days",
        compression="zip",
        encoding="utf-8",
    )

    logger.add(
        logs_dir / "error_{time:YYYY-MM-DD}.log",
        format=FILE_FORMAT,
        level="ERROR",
        rotation="00:00",
        retention="30 days",
        compression="zip",
        encoding="utf-8",
    )

    logger.add(
        logs_dir / "safety_{time:YYYY-MM-DD}.log",
        format=FILE_FORMAT,
        filter=is_audit_record,
        rotation="00:00",
        retention="90 days",
        compression="zip",
        encoding="utf-8",
    )

    if SENTRY_DSN:
        logger.add(sentry_sink, level="ERROR", format="{message}")

    import logging
    logging.getLogger("sqlalchemy.engine").setLevel(logging.ERROR)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logger.info(f"Wagering core initialized | Environment: {ENVIRONMENT} | Log level: {LOG_LEVEL}")
    return logs_dir


def sentry_sink(message):
    """Forward ERROR/CRITICAL records to Sentry"""
    record = message.record

    with sentry_sdk.push_scope() as scope:
        scope.set_extra("module", record["name"])
        scope.set_extra("function", record["function"])
        scope.set_extra("line", record["line"])
        if record["exception"]:
            exc = record["exception"]
            sentry_sdk.capture_exception((exc.type, exc.value, exc.traceback))
        else:
            level = "fatal" if record["level"].name == "CRITICAL" else "error"
            sentry_sdk.capture_message(record["message"], level=level)
