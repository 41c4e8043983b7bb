"""Structlog-based logging for the ancestor engine.

Library modules log through structlog with dotted event names; only the CLI
writes to the console.
"""
from __future__ import annotations

from typing import Literal

import logging
import structlog

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def configure_logging(level: LogLevel = "INFO", json_output: bool = True) -> None:
    logging.basicConfig(format="%(message)s", level=getattr(logging, level))
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level)),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "ancestor_engine"):
    return structlog.get_logger(name)


def bind_job(job_id: str) -> None:
    """Attach the job id to every log line emitted from the current task."""
    structlog.contextvars.bind_contextvars(job_id=job_id)


def unbind_job() -> None:
    structlog.contextvars.unbind_contextvars("job_id")


# Initialize default config
configure_logging()
