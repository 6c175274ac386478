"""
Structured logging for the triage pipeline

structlog events and plain stdlib records (mitmproxy, aiohttp) share one
processor chain and are rendered per handler: the console gets readable
key=value lines, triage.log and errors.log get one JSON object per line.
"""

import logging.config
import sys
from typing import Any, Dict

import structlog

from .config import LoggingConfig

# Applied to foreign stdlib records before they reach a formatter
PRE_CHAIN = [
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
]


def console_renderer(console_format: str):
    if console_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def _formatter(renderer, extra=()) -> Dict[str, Any]:
    return {
        "()": structlog.stdlib.ProcessorFormatter,
        "foreign_pre_chain": PRE_CHAIN,
        "processors": [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *extra,
            renderer,
        ],
    }


def build_logging_dict(config: LoggingConfig) -> Dict[str, Any]:
    """
    dictConfig for the console and rotating file handlers

    Args:
        config: Level, directory, rotation and console format

    Returns:
        A dictionary accepted by logging.config.dictConfig
    """
    directory = config.directory

    def rotating(filename: str, level: str) -> Dict[str, Any]:
        return {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": "json",
            "filename": str(directory / filename),
            "maxBytes": config.max_bytes,
            "backupCount": config.backup_count,
            "encoding": "utf-8",
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": _formatter(console_renderer(config.console_format)),
            "json": _formatter(
                structlog.processors.JSONRenderer(),
                extra=[structlog.processors.format_exc_info],
            ),
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": config.level,
                "formatter": "console",
                "stream": "ext://sys.stderr",
            },
            "file": rotating("triage.log", config.level),
            "error_file": rotating("errors.log", "ERROR"),
        },
        "loggers": {
            "": {
                "handlers": ["console", "file", "error_file"],
                "level": config.level,
            },
            **{name: {"level": "WARNING"} for name in config.quiet_loggers},
        },
    }


def configure_logging(config: LoggingConfig):
    """Route structlog through stdlib handlers built from the logging settings"""
    config.directory.mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(build_logging_dict(config))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *PRE_CHAIN,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
