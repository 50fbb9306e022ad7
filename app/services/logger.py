"""Centralized logging service using loguru."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger

from app.config import settings

LOG_DIR = Path("logs")
LOG_DIR.mkdir(exist_ok=True)

logger.remove()

logger.add(
    sys.stderr,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    level=settings.app_log_level.upper(),
    colorize=True,
)

logger.add(
    LOG_DIR / "howitlands_{time:YYYY-MM-DD}.log",
    format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
    level="DEBUG",
    rotation="00:00",
    retention="7 days",
    compression="zip",
)

# Reduce noise from framework/network libraries
for logger_name in (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "sse_starlette.sse",
    "httpx",
    "httpcore",
    "openai._base_client",
    "chromadb",
    "asyncio",
):
    logging.getLogger(logger_name).setLevel(settings.noisy_log_level.upper())


def log_agent_call(
    caller: str,
    conversation_id: str,
    backend: str,
    duration_ms: int = 0,
    input_tokens: int = 0,
    output_tokens: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    """Log a call to the generation capability."""
    call_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "caller": caller,
        "conversation_id": conversation_id,
        "backend": backend,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "duration_ms": duration_ms,
        "status": status,
        "error": error,
    }
    if error:
        logger.error(f"AGENT_CALL_FAILED: {call_data}")
    else:
        logger.info(f"AGENT_CALL: {call_data}")


def log_analysis_step(
    analysis_id: str,
    step_type: str,
    status: str,
    data: Optional[dict] = None,
) -> None:
    """Log a lifecycle step of one analysis."""
    step_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "analysis_id": analysis_id,
        "step_type": step_type,
        "status": status,
        "data": data,
    }
    logger.info(f"ANALYSIS_STEP: {step_data}")


def log_db_operation(
    operation: str,
    table: str,
    status: str,
    details: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    """Log a document store operation."""
    op_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "operation": operation,
        "table": table,
        "status": status,
        "details": details,
        "error": error,
    }
    if error:
        logger.error(f"DB_OPERATION_FAILED: {op_data}")
    else:
        logger.info(f"DB_OPERATION: {op_data}")


def log_event(
    event_type: str,
    message: str,
    **kwargs,
) -> None:
    """Log a generic event."""
    event_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type,
        "message": message,
        **kwargs,
    }
    logger.info(f"EVENT: {event_data}")


def log_request(method: str, path: str, status_code: int, duration_ms: int) -> None:
    """Log one handled HTTP request."""
    level = "WARNING" if status_code >= 500 else "INFO"
    logger.log(level, f"HTTP {method} {path} -> {status_code} ({duration_ms}ms)")
