import logging
import sys
import structlog
from app.core.config import Settings, settings

def configure_logging(config: Settings = settings):
    """
    Configures structlog over the standard library logger: console rendering
    in development, JSON everywhere else.
    """
    is_local = config.ENV.lower() == "development"

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if is_local:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer()
        ]
    else:
        processors = shared_processors + [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer()
        ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    level = logging.DEBUG if is_local else logging.INFO
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    # httpx logs every request at INFO; the providers log their own failures
    logging.getLogger("httpx").setLevel(logging.WARNING)

    # Route uvicorn's own loggers through the root logger
    for _log in ["uvicorn", "uvicorn.error", "uvicorn.access"]:
        logger = logging.getLogger(_log)
        logger.handlers = []
        logger.propagate = True
