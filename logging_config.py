"""Logging setup shared by the API server and the maintenance scripts."""
import logging
from logging.handlers import RotatingFileHandler

from config import Settings

LOGGER_NAME = "blog_api"

formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")


def get_logger(name: str) -> logging.Logger:
    """Return a child of the application logger, e.g. ``blog_api.posts``"""
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


def setup_logging(settings: Settings) -> logging.Logger:
    """Attach console and rotating file handlers to the application logger.

    Calling it again replaces the handlers, so tests and the app factory can
    both call it without duplicating output.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(settings.log_level.upper())
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if settings.log_file:
        file_handler = RotatingFileHandler(settings.log_file,
                                           maxBytes=2000000,
                                           backupCount=3,
                                           encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
