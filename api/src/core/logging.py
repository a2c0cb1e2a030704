"""Structlog configuration with console and file output.

Every log line carries the request context (request_id, user_id,
correlation_id) and the application identity. Payment signatures, gateway
secrets and bearer tokens are masked before rendering.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, Processor


if TYPE_CHECKING:
    from src.config.settings import Settings

from src.core.context import get_context


SENSITIVE_KEYS = frozenset(
    {
        "password",
        "secret",
        "signature",
        "token",
        "api_key",
        "authorization",
        "credentials",
        "card_number",
        "cvv",
    }
)

# Values up to this length are fully masked; longer ones keep 2 chars each side
_MIN_MASK_LENGTH = 4


def add_context_processor(
    logger: logging.Logger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Inject request context variables into every log entry."""
    event_dict.update(get_context())
    return event_dict


def add_app_info_processor(app_name: str, environment: str) -> Processor:
    """Create a processor that stamps the application name and environment."""

    def processor(
        logger: logging.Logger,
        method_name: str,
        event_dict: EventDict,
    ) -> EventDict:
        event_dict.setdefault("app", app_name)
        event_dict.setdefault("environment", environment)
        return event_dict

    return processor


def _mask(key: str, value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _mask(k, v) for k, v in value.items()}
    if isinstance(value, str) and any(s in key.lower() for s in SENSITIVE_KEYS):
        if len(value) > _MIN_MASK_LENGTH:
            return value[:2] + "*" * (len(value) - _MIN_MASK_LENGTH) + value[-2:]
        return "***"
    return value


def filter_sensitive_data(
    logger: logging.Logger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Mask signatures, secrets and tokens in log events."""
    return {k: _mask(k, v) for k, v in event_dict.items()}


def _handler(
    handler: logging.Handler,
    level: str,
    renderer: Processor,
    pre_chain: list[Processor],
) -> logging.Handler:
    handler.setLevel(getattr(logging, level.upper()))
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=pre_chain,
        )
    )
    return handler


def _rotating_file(log_dir: Path, name: str, settings: "Settings") -> RotatingFileHandler:
    log_dir.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        filename=str(log_dir / name),
        maxBytes=settings.log_file_max_bytes,
        backupCount=settings.log_file_backup_count,
        encoding="utf-8",
    )


def build_shared_processors(settings: "Settings") -> list[Processor]:
    """Processor chain shared by structlog and foreign (stdlib) log records."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_context_processor,
        add_app_info_processor(settings.app_name, settings.environment),
        filter_sensitive_data,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if settings.log_include_caller_info:
        processors.append(
            structlog.processors.CallsiteParameterAdder(
                parameters=[
                    structlog.processors.CallsiteParameter.FILENAME,
                    structlog.processors.CallsiteParameter.LINENO,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                ]
            )
        )
    return processors


def configure_structlog(
    settings: "Settings",
    log_dir: Path | str | None = None,
    *,
    to_files: bool = True,
) -> None:
    """Configure structlog with console output and rotating JSON files.

    Args:
        settings: Application settings.
        log_dir: Directory for log files. Defaults to ``settings.log_dir``.
        to_files: Disable to keep tests from writing log files.
    """
    log_level = settings.log_level
    log_dir = Path(log_dir or settings.log_dir)
    shared = build_shared_processors(settings)

    if settings.log_format == "json":
        console_renderer: Processor = structlog.processors.JSONRenderer()
    else:
        console_renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        )
    json_renderer = structlog.processors.JSONRenderer()

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.addHandler(
        _handler(logging.StreamHandler(sys.stdout), log_level, console_renderer, shared)
    )

    if to_files:
        root_logger.addHandler(
            _handler(
                _rotating_file(log_dir, f"{settings.app_name}.log", settings),
                log_level,
                json_renderer,
                shared,
            )
        )
        root_logger.addHandler(
            _handler(
                _rotating_file(log_dir, f"{settings.app_name}.error.log", settings),
                "ERROR",
                json_renderer,
                shared,
            )
        )

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    for noisy in ("uvicorn.access", "uvicorn.error", "cassandra", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger instance."""
    return structlog.get_logger(name)
