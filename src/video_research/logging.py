"""structlog configuration for research runs.

Provides run ID generation, a topic-scoped logging context manager and
structured log configuration for console or JSON output with an optional
log file. Credentials are scrubbed from every event before rendering.
"""

from __future__ import annotations

import logging
import sys
import uuid
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Iterator, MutableMapping
    from pathlib import Path

_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_SECRET_KEYS = {"api_key", "key", "token", "authorization"}


def generate_run_id() -> str:
    """Return a short unique identifier for one research run."""
    return uuid.uuid4().hex[:12]


def _redact_secrets(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for key in list(event_dict):
        if key.lower() in _SECRET_KEYS and event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def configure_logging(
    level: str = "INFO",
    fmt: str = "console",
    log_file: str | Path | None = None,
    run_id: str | None = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        fmt: ``"console"`` for human-readable or ``"json"`` for
            machine-parseable output.
        log_file: Optional file that receives a copy of every entry.
        run_id: Optional run ID bound to all log entries.

    Raises:
        ValueError: If ``level`` is not a recognized log level.
    """
    level_upper = level.upper()
    if level_upper not in _VALID_LEVELS:
        msg = f"Invalid log level: {level!r}. Must be one of {sorted(_VALID_LEVELS)}"
        raise ValueError(msg)
    numeric_level = getattr(logging, level_upper)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer()
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(str(log_file), encoding="utf-8"))

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    # httpx logs every request URL at INFO, including the key query param.
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    if run_id:
        structlog.contextvars.bind_contextvars(run_id=run_id)


@contextmanager
def topic_logging_context(
    topic: str,
    phase: str = "research",
    **extra: Any,
) -> Iterator[structlog.stdlib.BoundLogger]:
    """Bind topic and phase to every log entry emitted inside the block.

    Logs ``topic_phase_start`` on entry and ``topic_phase_end`` on exit;
    exceptions are logged as ``topic_phase_error`` and re-raised.

    Args:
        topic: The industry / topic being researched.
        phase: Pipeline phase name (discovery, analysis, ...).
        **extra: Additional key-value pairs to bind.

    Yields:
        A bound structlog logger.

    Example::

        with topic_logging_context("fitness", phase="discovery") as log:
            log.info("search_terms_generated", count=10)
    """
    with structlog.contextvars.bound_contextvars(topic=topic, phase=phase, **extra):
        log: structlog.stdlib.BoundLogger = structlog.get_logger(
            "video_research.topic"
        )
        log.info("topic_phase_start")
        try:
            yield log
        except Exception:
            log.exception("topic_phase_error")
            raise
        finally:
            log.info("topic_phase_end")
