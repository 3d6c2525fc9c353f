"""
structlog configuration shared by the server and the terminal client.
"""

from __future__ import annotations

from typing import TextIO

import structlog


def configure_logging(level: str = "info", fmt: str = "json", stream: TextIO | None = None) -> None:
    """Configure structlog with the given level and renderer.

    ``fmt`` is ``json`` for one JSON object per line, anything else for the
    console renderer. The client passes ``sys.stderr`` as ``stream`` so log
    lines never mix with chat output on stdout.
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=False,
    )
