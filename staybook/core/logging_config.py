"""Logging configuration shared by the API and the Celery worker."""

import logging.config

from staybook.core.config import Settings


def configure_logging(settings: Settings) -> None:
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {"format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"},
            },
            "handlers": {
                "console": {"class": "logging.StreamHandler", "formatter": "standard"},
            },
            "loggers": {
                "staybook": {"handlers": ["console"], "level": settings.log_level, "propagate": False},
            },
        }
    )
