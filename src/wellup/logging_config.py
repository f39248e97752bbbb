"""Structured logging for the progress engine.

Every record carries the engine's environment and version. The progress
services log through stdlib ``logging``; structlog's ProcessorFormatter
renders those records with the same processors as structlog's own.
"""

import logging

import structlog

from wellup.config import Settings

# Loggers that flood INFO with per-statement or per-poll lines.
_NOISY_LOGGERS = ("sqlalchemy.engine", "arq.worker", "aiosqlite")


def setup_logging(settings: Settings) -> None:
    """Configure structlog and stdlib logging from settings."""
    use_console = settings.debug or settings.log_format != "json"
    renderer: structlog.types.Processor = (
        structlog.dev.ConsoleRenderer() if use_console else structlog.processors.JSONRenderer()
    )
    shared: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    structlog.configure(
        processors=[
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(handlers=[handler], level=level)
    logging.getLogger().setLevel(level)

    quiet = logging.DEBUG if settings.debug else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        service="wellup-progress",
        environment=settings.environment,
        version=settings.app_version,
    )
