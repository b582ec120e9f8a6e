"""structlog setup shared by the controller, the gateway and the scripts.

Events are snake_case names with key/value fields (``pending_flush_failed``,
``failed=2``). Fields bound through structlog.contextvars, such as the
controller operation in progress, are attached to every event logged inside
that block.
"""

import logging
import sys

import structlog


def setup_logging(json_output: bool = False, log_level: str = "INFO") -> None:
    """Install the processor chain and route stdlib logging to stderr.

    Args:
        json_output: JSON lines for the deployed service, console text otherwise.
        log_level: Minimum level name; unknown names fall back to INFO.
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    processors.append(
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )

    # stdout belongs to the scripts' tables and JSON
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.handlers = [logging.StreamHandler(sys.stderr)]
    root.setLevel(numeric_level)
    # one line per backend request is only interesting when debugging
    logging.getLogger("urllib3").setLevel(numeric_level if numeric_level <= logging.DEBUG else logging.WARNING)


def get_logger(name: str) -> structlog.BoundLogger:
    """Module logger; pass ``__name__``."""
    return structlog.get_logger(name)


def setup_logging_from_config(config) -> None:
    setup_logging(json_output=config.log_json, log_level=config.log_level)
