"""
Logging configuration for the authentication backend.
"""
import logging
from typing import Optional

from telecare.core.config import Settings, settings as default_settings


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Configure application logging."""
    settings = settings or default_settings

    root_logger = logging.getLogger()
    level = logging.DEBUG if settings.DEBUG else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    root_logger.setLevel(level)

    # Clear existing handlers
    root_logger.handlers.clear()

    formatter = logging.Formatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    setup_specific_loggers(settings)

    logging.info("Logging configuration completed")
    logging.info(f"Log level: {logging.getLevelName(level)}")


def setup_specific_loggers(settings: Settings) -> None:
    """Tune third-party loggers."""
    # SQL echo is only useful while debugging queries
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.DEBUG else logging.WARNING
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("passlib").setLevel(logging.ERROR)
