"""structlog configuration for the API process and the CLI.

Output is a coloured console stream while developing and one JSON object
per line when ``APP_ENV=production`` (or ``json_output=True``).  The same
processors format records from the standard ``logging`` module, so lines
from uvicorn and the SDKs interleave cleanly with ours.

A processing job wraps its work in :func:`bind_book_context`; everything
logged inside, retry attempts and provider errors included, then carries
the ``book_id``.
"""

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

# Libraries that log every request at INFO.
_QUIET_LOGGERS = ("chromadb", "httpx", "httpcore", "openai")


def _shared_processors() -> list[structlog.types.Processor]:
    # merge_contextvars must run first so bound book/request ids are present
    # for everything after it.
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]


def _renderer(use_json: bool) -> structlog.types.Processor:
    if use_json:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def _route_stdlib(level: str, processors: list, renderer: structlog.types.Processor) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *processors,
                renderer,
            ],
        )
    )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> structlog.BoundLogger:
    """Install the structlog pipeline and return a root logger.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR.
        json_output: Emit JSON regardless of ``APP_ENV``.
    """
    level = log_level.upper()
    use_json = json_output or os.environ.get("APP_ENV", "development") == "production"
    processors = _shared_processors()
    renderer = _renderer(use_json)

    structlog.configure(
        processors=[*processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _route_stdlib(level, processors, renderer)
    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a logger tagged with *name*, configuring defaults on first use."""
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(logger_name=name)


@contextmanager
def bind_book_context(book_id: str) -> Iterator[None]:
    """Tag every log line emitted inside the block with ``book_id``."""
    with structlog.contextvars.bound_contextvars(book_id=book_id):
        yield
