"""
Structured logging configuration for the rebate trace pipeline.

Uses structlog for structured, context-aware logging with:
- JSON output for production
- Pretty console output for development
- Run-scoped fields (run id, source, period) on every event
- Stage timing for the pipeline phases
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Generator

import structlog
from structlog.types import Processor

# Fields bound for the duration of one pipeline run
_run_context: ContextVar[dict[str, str] | None] = ContextVar('run_context', default=None)


def get_run_context() -> dict[str, str]:
    """Fields bound by the innermost logging_context, or an empty dict."""
    return dict(_run_context.get() or {})


def add_context_info(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Processor that copies the run context onto log entries without overriding explicit keys."""
    for key, value in get_run_context().items():
        event_dict.setdefault(key, value)
    return event_dict

def configure_logging(
    json_output: bool = False,
    log_level: str = 'INFO',
) -> None:
    """
    Configure structlog for the application.

    Args:
        json_output: If True, output JSON logs (for production).
                    If False, output pretty console logs (for development).
        log_level: Minimum log level name
    """
    level_num = getattr(logging, log_level.upper(), logging.INFO)

    # Logs go to stderr; stdout carries the run summary
    logging.basicConfig(
        format='%(message)s',
        stream=sys.stderr,
        level=level_num,
    )

    # Shared processors
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_context_info,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt='iso'),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_num),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


@contextmanager
def logging_context(**fields: str | None) -> Generator[None, None, None]:
    """
    Bind run fields for every log event emitted inside the block.

    Fields left as None are ignored; nested blocks extend the outer context.

    Usage:
        with logging_context(run_id="abc123", source="MEDLINE"):
            logger.info("join.started")  # Includes run_id and source
    """
    bound = {**get_run_context(), **{k: v for k, v in fields.items() if v is not None}}
    token = _run_context.set(bound)
    try:
        yield
    finally:
        _run_context.reset(token)


class PipelineTimer:
    """
    Wall-clock durations of the pipeline stages, in milliseconds.

    Usage:
        timer = PipelineTimer()
        with timer.stage("license_index"):
            ...
        logger.info("pipeline.complete", **timer.summary())
    """

    def __init__(self):
        self.stages: dict[str, float] = {}
        self.start_time: float = time.perf_counter()

    @contextmanager
    def stage(self, name: str) -> Generator[None, None, None]:
        """Time a stage; the duration is kept even if the stage raises."""
        stage_start = time.perf_counter()
        try:
            yield
        finally:
            self.stages[name] = (time.perf_counter() - stage_start) * 1000

    @property
    def total_ms(self) -> float:
        return (time.perf_counter() - self.start_time) * 1000

    def summary(self) -> dict[str, Any]:
        return {
            'total_ms': round(self.total_ms, 2),
            'stages': {k: round(v, 2) for k, v in self.stages.items()},
        }


# Development mode by default; the CLI reconfigures from settings
configure_logging(json_output=False)
