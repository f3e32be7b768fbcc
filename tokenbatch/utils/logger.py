"""
Structured logging with run_id tracking.

Every planning run (a batch grouping or a task build) executes inside
``run_context`` so all events it emits, including those from worker
threads started with ``asyncio.to_thread``, carry the same ``run_id``.
"""

import structlog
import logging
import sys
from contextlib import contextmanager
from uuid import uuid4
from contextvars import ContextVar
from typing import Iterator

NO_RUN = "no-run"

# Context variable for planning-run tracking
run_id_ctx: ContextVar[str] = ContextVar("run_id", default=NO_RUN)


def new_run_id() -> str:
    return str(uuid4())[:8]


def get_run_id() -> str:
    """Get current run ID from context."""
    return run_id_ctx.get()


def set_run_id(run_id: str | None = None) -> str:
    """Set run ID in context. Generates one if not provided."""
    rid = run_id or new_run_id()
    run_id_ctx.set(rid)
    return rid


@contextmanager
def run_context(run_id: str | None = None) -> Iterator[str]:
    """
    Scope a run id to one planning run.

    An explicit id wins; otherwise an id already set by the host is
    reused, and only a bare context gets a fresh one. The previous id is
    restored on exit.
    """
    current = run_id_ctx.get()
    rid = run_id or (current if current != NO_RUN else new_run_id())
    token = run_id_ctx.set(rid)
    try:
        yield rid
    finally:
        run_id_ctx.reset(token)


def add_run_id(logger, method_name, event_dict):
    """Processor to add run_id to all log entries."""
    event_dict["run_id"] = get_run_id()
    return event_dict


def setup_logging(debug: bool = False):
    """Configure structured logging for the planner."""
    log_level = logging.DEBUG if debug else logging.INFO

    stdout_encoding = (getattr(sys.stdout, "encoding", None) or "").lower()
    use_console_renderer = debug and ("utf" in stdout_encoding)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_run_id,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer() if use_console_renderer else structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Also configure standard logging for host libraries
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
