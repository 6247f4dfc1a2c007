"""
log_config.py - structlog configuration shared by the scripts.

Library modules only call structlog.get_logger(__name__). Nothing is emitted
in a useful format until an entry point calls configure_logging() once.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, List

import structlog


def configure_logging(level: str = "INFO", json: bool = False) -> None:
    """
    Route structlog through stdlib logging with ISO timestamps.

    Args:
        level: Root log level name ("DEBUG", "INFO", ...)
        json: Render one JSON object per line instead of the console format
    """
    shared_processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    # Logs go to stderr; stdout is reserved for the scripts' reports
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level.upper())

    # sentence-transformers and its dependencies are chatty at INFO
    logging.getLogger("sentence_transformers").setLevel(logging.WARNING)
    logging.getLogger("faiss").setLevel(logging.WARNING)
