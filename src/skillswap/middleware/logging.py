"""structlog configuration shared by the API and the booking worker."""

import logging

import structlog

from skillswap.config import Settings

SERVICE_NAME = "skillswap-core"


def _service_fields(component: str, settings: Settings) -> structlog.types.Processor:
    fields = {"service": SERVICE_NAME, "component": component, "env": settings.environment}

    def add_service_fields(
        logger: structlog.types.WrappedLogger, method_name: str, event_dict: structlog.types.EventDict
    ) -> structlog.types.EventDict:
        for key, value in fields.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_service_fields


def setup_logging(settings: Settings, component: str = "api") -> None:
    """Configure structlog for one process.

    ``component`` names the process ("api" or "booking-worker") so lines
    from both can share one log stream. Output is JSON lines unless
    ``log_format`` asks for the console renderer.
    """
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            _service_fields(component, settings),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(message)s")
    # Engine echo is noise at INFO; the ledger logs its own store errors
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    # arq logs every cron tick at INFO
    logging.getLogger("arq").setLevel(max(level, logging.WARNING) if component == "api" else level)
