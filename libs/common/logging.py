"""Structlog setup shared by the search service and its libraries.

Log lines carry the service name and, for search events, a query clipped to
``QUERY_LOG_LENGTH`` characters so free-text input never floods the log
pipeline. ``json`` output is meant for deployed environments; ``console``
renders coloured lines for local runs and tests.
"""

import logging
import sys
from typing import Any, MutableMapping

import structlog
from structlog.stdlib import LoggerFactory, add_logger_name

QUERY_LOG_LENGTH = 50


def truncate_query(_logger: Any, _method: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Clip the ``query`` field of an event."""
    query = event_dict.get("query")
    if isinstance(query, str) and len(query) > QUERY_LOG_LENGTH:
        event_dict["query"] = query[:QUERY_LOG_LENGTH]
    return event_dict


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    log_format: str = "json",
) -> None:
    """Route structlog through stdlib logging on stdout.

    ``log_level`` is matched case-insensitively and unknown names fall back
    to ``INFO``.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_logger_name,
        truncate_query,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name)


def log_performance(operation: str, duration_ms: float, **kwargs: Any) -> None:
    """Emit a timing event for a search operation."""
    logger = structlog.get_logger("search_service.performance")
    logger.info(
        "Search operation timed",
        operation=operation,
        duration_ms=duration_ms,
        **kwargs
    )
