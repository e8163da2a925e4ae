import logging.config

from tvtracker.config import settings


def configure_logging():
    """Route application logs through one console handler tagged with the request context."""
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_context": {"()": "tvtracker.request_context.RequestContextFilter"},
        },
        "formatters": {
            "std": {
                "format": (
                    "%(asctime)s %(levelname)s [%(correlation_id)s user=%(user_id)s] "
                    f"{settings.environment_name} %(name)s: %(message)s"
                ),
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "std",
                "filters": ["request_context"],
            },
        },
        "loggers": {
            "tvtracker": {"level": settings.log_level, "handlers": ["console"], "propagate": False},
            "sqlalchemy": {"level": "WARNING", "handlers": ["console"], "propagate": False},
            "httpx": {"level": "WARNING", "handlers": ["console"], "propagate": False},
        },
    })
