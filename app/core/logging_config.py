"""
Centralized logging configuration with request_id and job_id context support using loguru.

All stdlib logging calls are intercepted and routed to a single JSON sink on
stderr. request_id is set by RequestIDMiddleware, job_id by the verification
monitor sweeps.
"""

import json
import logging
import sys
from contextvars import ContextVar
from types import FrameType
import traceback
from typing import Optional

from loguru import logger

from app.core.config import settings

# Async-safe context for request and job correlation
request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
job_id_var: ContextVar[str] = ContextVar("job_id", default="-")


class InterceptHandler(logging.Handler):
    """
    Handler that intercepts standard logging calls and redirects them to loguru.

    Modules keep using logging.getLogger(__name__).
    """

    def emit(self, record: logging.LogRecord):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where the logging call originated
        frame: Optional[FrameType] = sys._getframe(settings.LOGGING_FRAME_DEPTH)
        depth: int = settings.LOGGING_FRAME_DEPTH

        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def context_filter(record):
    """Copy request_id and job_id from contextvars onto the loguru record."""
    request_id = request_id_var.get()
    if request_id and request_id != "-":
        record["extra"]["request_id"] = request_id

    job_id = job_id_var.get()
    if job_id and job_id != "-":
        record["extra"]["job_id"] = job_id

    return record


def build_json_record(record) -> dict:
    """
    Build the JSON log line for a loguru record.

    Fields: timestamp, level, message, logger, request_id / job_id (when
    present), exception, process.
    """
    log_record = {
        "timestamp": record["time"].strftime("%Y-%m-%d %H:%M:%S"),
        "level": record["level"].name,
        "message": record["message"],
        "logger": record["name"],
    }

    if "request_id" in record["extra"]:
        log_record["request_id"] = record["extra"]["request_id"]

    if "job_id" in record["extra"]:
        log_record["job_id"] = record["extra"]["job_id"]

    if record["exception"]:
        traceback_text = None
        if record["exception"].traceback:
            try:
                traceback_text = "".join(
                    traceback.format_exception(
                        record["exception"].type,
                        record["exception"].value,
                        record["exception"].traceback,
                    )
                ).strip()
            except Exception:
                traceback_text = str(record["exception"].traceback)

        log_record["exception"] = {
            "type": (
                record["exception"].type.__name__ if record["exception"].type else None
            ),
            "value": (
                str(record["exception"].value) if record["exception"].value else None
            ),
            "traceback": traceback_text,
        }
    else:
        log_record["exception"] = None

    log_record["process"] = {
        "id": record["process"].id,
        "name": record["process"].name,
    }

    return log_record


def json_sink(message):
    """Write one JSON object per log line to stderr."""
    sys.stderr.write(json.dumps(build_json_record(message.record), default=str) + "\n")


def configure_logging():
    """
    Configure loguru as the single logging backend.

    Removes the default loguru handler, installs the JSON sink with the
    context filter, and intercepts stdlib logging at the level from settings.
    """
    logger.remove()

    # LOG_LEVEL is required in the environment
    log_level = settings.LOG_LEVEL

    logger.add(
        json_sink,
        level=log_level,
        backtrace=True,
        diagnose=False,  # Locals may contain credential numbers
        filter=context_filter,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # Set logging level for commonly verbose libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logger.info("Logging configured successfully with loguru")


def set_request_id(request_id: str):
    """Set the request_id for the current context."""
    request_id_var.set(request_id)


def set_job_id(job_id: str):
    """Set the job_id for the current context (one monitor sweep)."""
    job_id_var.set(job_id)


def clear_request_id():
    request_id_var.set("-")


def clear_job_id():
    job_id_var.set("-")


def get_request_id() -> str:
    """Get the current request_id from context."""
    return request_id_var.get()


def get_job_id() -> str:
    """Get the current job_id from context."""
    return job_id_var.get()
