"""Logging configuration."""
import logging
import sys
from typing import Optional

from supportline.core.config import settings

# Chatty client libraries only log warnings and above
QUIET_LOGGERS = ("httpx", "httpcore", "openai", "twilio", "aiosqlite", "sqlalchemy.engine")


def setup_logging(level: Optional[str] = None) -> None:
    """Configure application logging to stdout."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
