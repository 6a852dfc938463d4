"""structlog setup for the bot process.

Engine components log snake_case events with key/value context through
loggers handed to them at construction. ``configure_logging`` routes those
events, and any stdlib records from requests/urllib3 or uvicorn, through one
stderr handler so stdout stays free for CLI output.
"""

from __future__ import annotations

import logging
import logging.config
from typing import Any

import structlog

SERVICE_NAME = "assign-bot"
NOISY_LOGGERS = ("urllib3", "uvicorn.access")


def _tag_service(logger: Any, method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _renderer(json_logs: bool) -> Any:
    if json_logs:
        return structlog.processors.JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer()


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _tag_service,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "assign_bot": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "processors": [
                        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                        _renderer(json_logs),
                    ],
                    "foreign_pre_chain": pre_chain,
                },
            },
            "handlers": {
                "stderr": {
                    "class": "logging.StreamHandler",
                    "formatter": "assign_bot",
                    "stream": "ext://sys.stderr",
                },
            },
            "root": {"handlers": ["stderr"], "level": log_level.upper()},
            "loggers": {name: {"level": "WARNING"} for name in NOISY_LOGGERS},
        }
    )

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str, **context: Any) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger(name)
    return logger.bind(**context) if context else logger
