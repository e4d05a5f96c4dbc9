"""Logging configuration utilities."""

import logging
import logging.config
import sys
from typing import Optional

from loguru import logger as loguru_logger

from watermark_relay.core.config import get_settings


def get_logging_config(level: Optional[str] = None, json_logs: Optional[bool] = None) -> dict:
    """Return a dictConfig-compatible logging configuration."""

    settings = get_settings()
    log_level = (level or settings.LOG_LEVEL).upper()
    use_json = json_logs if json_logs is not None else settings.LOG_JSON

    formatter = (
        {
            "format": "%(message)s",
            "class": "pythonjsonlogger.jsonlogger.JsonFormatter",
        }
        if use_json
        else {
            "format": "%(levelname)s | %(asctime)s | %(name)s | %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        }
    )

    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": formatter,
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            }
        },
        "loggers": {
            "": {
                "handlers": ["default"],
                "level": log_level,
            },
            # requests/urllib3 connection chatter stays out of pipeline logs.
            "urllib3": {"handlers": ["default"], "level": "WARNING", "propagate": False},
            "botocore": {"handlers": ["default"], "level": "WARNING", "propagate": False},
        },
    }

    return config


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """Configure logging for the application."""

    logging_config = get_logging_config(level=level, json_logs=json_logs)
    logging.config.dictConfig(logging_config)

    # Align loguru output (used by the hosting and inference clients) with stdlib logging level.
    use_json = json_logs if json_logs is not None else get_settings().LOG_JSON
    loguru_logger.remove()
    loguru_logger.add(
        sys.stdout,
        level=(level or get_settings().LOG_LEVEL).upper(),
        serialize=use_json,
    )
