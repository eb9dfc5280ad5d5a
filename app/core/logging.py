"""Logging configuration.

Application modules log through the standard library
(``logging.getLogger(__name__)``). This module funnels those records,
together with uvicorn and SQLAlchemy output, into loguru: JSON lines
in production and a coloured console format everywhere else.
"""

import logging
import sys

from loguru import logger

from app.core.config import Settings

INTERCEPTED_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "sqlalchemy",
)


class InterceptHandler(logging.Handler):
    """Redirect standard logging records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk back to the frame that issued the log call
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(settings: Settings) -> None:
    """Configure loguru sinks and intercept standard library loggers.

    Args:
        settings: Application settings; ``APP_ENV`` and ``DEBUG`` pick
            the output format and level.
    """
    logger.remove()

    if settings.APP_ENV == "production":
        logger.add(
            sys.stderr,
            format="{message}",
            serialize=True,
            level="INFO",
            backtrace=False,
            diagnose=False,
        )
    else:
        logger.add(
            sys.stderr,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
                "<level>{message}</level>"
            ),
            level="DEBUG" if settings.DEBUG else "INFO",
            colorize=True,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in INTERCEPTED_LOGGERS:
        intercepted = logging.getLogger(name)
        intercepted.handlers = [InterceptHandler()]
        intercepted.propagate = False
