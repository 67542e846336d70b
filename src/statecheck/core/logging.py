# src/statecheck/core/logging.py
"""Structured logging for harness runs.

Engine threads, the coordinator and the snapshot reader all log through
structlog. Third-party libraries (SQLAlchemy, concurrent.futures) log
through stdlib logging. Both are rendered by one ProcessorFormatter on the
root handler so a run reads as a single stream.

Every event carries a ``component`` field (``engine``, ``harness``,
``snapshot``...) derived from the emitting module, and whatever context the
caller bound with ``structlog.contextvars`` (e.g. the state semantics under
verification).
"""

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.stdlib import ProcessorFormatter

# Chatty at DEBUG while snapshots are written, read and jobs shut down
_NOISY_LOGGERS: tuple[str, ...] = (
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "concurrent.futures",
)

_PACKAGE = "statecheck"


def _add_component(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Tag events from statecheck modules with their subpackage.

    ``statecheck.core.snapshot.reader`` -> ``snapshot``;
    ``statecheck.engine.runtime`` -> ``engine``. Foreign loggers are left alone.
    """
    name = event_dict.get("logger")
    if not isinstance(name, str) or not name.startswith(f"{_PACKAGE}."):
        return event_dict
    parts = name.split(".")
    component = parts[2] if parts[1] == "core" and len(parts) > 3 else parts[1]
    event_dict.setdefault("component", component)
    return event_dict


def _drop_formatter_bookkeeping(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    event_dict.pop("_record", None)
    event_dict.pop("_from_structlog", None)
    return event_dict


def _renderer_chain(json_output: bool) -> list[Any]:
    if json_output:
        return [
            _drop_formatter_bookkeeping,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ]
    return [
        _drop_formatter_bookkeeping,
        structlog.dev.ConsoleRenderer(colors=False),
    ]


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
    stream: TextIO | None = None,
) -> None:
    """Route structlog and stdlib logging to one handler.

    Args:
        json_output: One JSON object per line instead of console text
        level: Root log level name (DEBUG, INFO, WARNING, ERROR)
        stream: Destination, stdout by default

    Raises:
        ValueError: If level is not a logging level name
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        raise ValueError(f"Unknown log level: {level!r}")

    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        _add_component,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=[*pre_chain, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Tests reconfigure between cases
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setFormatter(ProcessorFormatter(processors=_renderer_chain(json_output), foreign_pre_chain=pre_chain))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))
