"""Loguru sinks and the structured log lines emitted by the research pipeline.

Each helper writes one line of the form ``TAG key=value ...``; fields whose
value is None are left out so failures and successes share a shape.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from app.config import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{line} - {message}"

QUIET_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "httpx", "httpcore", "asyncpg", "openai")


def configure_logging(log_dir: str = settings.log_dir, level: str = settings.app_log_level) -> Path:
    """Install a console sink and a daily rotating file sink; returns the log directory."""
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level.upper(), colorize=True)
    logger.add(
        directory / "research_{time:YYYY-MM-DD}.log",
        format=FILE_FORMAT,
        level="DEBUG",
        rotation="00:00",
        retention="7 days",
        compression="zip",
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(settings.noisy_log_level.upper())
    return directory


def format_fields(**fields: Any) -> str:
    return " ".join(f"{key}={value}" for key, value in fields.items() if value is not None)


def log_llm_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    line = format_fields(
        caller=caller,
        model=model,
        status=status,
        tokens=f"{input_tokens}/{output_tokens}",
        ms=duration_ms,
        error=error,
    )
    if error:
        logger.error(f"LLM_CALL_FAILED {line}")
    else:
        logger.info(f"LLM_CALL {line}")


def log_state_transition(request_id: str, from_status: str, to_status: str, **extra: Any) -> None:
    logger.info(f"STATE {request_id} {from_status} -> {to_status} {format_fields(**extra)}".rstrip())


def log_db_operation(
    operation: str,
    table: str,
    status: str,
    details: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    line = format_fields(op=operation, table=table, status=status, details=details, error=error)
    if error:
        logger.error(f"DB_FAILED {line}")
    else:
        logger.debug(f"DB {line}")


def log_event(event_type: str, message: str, **extra: Any) -> None:
    """Log a named pipeline event with arbitrary context fields."""
    logger.info(f"EVENT {event_type}: {message} {format_fields(**extra)}".rstrip())


configure_logging()
