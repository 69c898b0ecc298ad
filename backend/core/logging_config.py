"""structlog setup for the engine and the executor service.

Every record carries the service name and environment. Console output in
development (or with ``LOG_FORMAT=text``), one JSON object per line
otherwise, with exceptions rendered as structured tracebacks.

Levels:
    LOG_LEVEL          root level
    LOG_MODULE_LEVELS  per-logger overrides, ``"workflow.bridge=DEBUG,worker=WARNING"``
    ACCESS_LOG         keep uvicorn's per-request access lines
"""

import logging
import sys
from typing import Optional

import structlog
from app.config import Settings, get_settings

# Chatty libraries held at WARNING unless LOG_MODULE_LEVELS says otherwise
QUIET_LOGGERS = ("httpx", "httpcore", "websockets")


def _level(name: str, default: int = logging.INFO) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else default


def _add_service(settings: Settings):
    def processor(logger, method_name, event_dict):
        event_dict.setdefault("service", settings.APP_NAME)
        event_dict.setdefault("environment", settings.ENVIRONMENT)
        return event_dict

    return processor


def logger_levels(settings: Settings) -> dict[str, int]:
    """Levels applied to named loggers, after the root level."""
    levels = {name: logging.WARNING for name in QUIET_LOGGERS}
    levels["uvicorn.access"] = logging.INFO if settings.ACCESS_LOG else logging.WARNING
    for name, level in settings.module_log_levels.items():
        levels[name] = _level(level)
    return levels


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Route structlog and stdlib logging through one handler on stdout."""
    settings = settings or get_settings()
    text_output = settings.is_development or settings.LOG_FORMAT == "text"

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        _add_service(settings),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if text_output:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
        render_chain = [renderer]
    else:
        render_chain = [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *render_chain,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(_level(settings.LOG_LEVEL))

    for name, level in logger_levels(settings).items():
        logging.getLogger(name).setLevel(level)
