"""Logging configuration."""
import logging
import sys

from app.core.config import settings

# Third-party loggers kept at WARNING or above
NOISY_LOGGERS = ("httpx", "sqlalchemy.engine", "aiosqlite", "uvicorn.access", "websockets")


def setup_logging() -> None:
    """Configure application logging from LOG_LEVEL."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    logging.getLogger(__name__).debug(f"[LOGGING] Configured at {logging.getLevelName(level)}")
