import sys
from pathlib import Path
from typing import Optional

from loguru import logger

LOG_FILE_NAME = "event_pricing.log"


def setup_logger(level: str = "INFO", log_dir: Optional[str] = None):
    """Configures the loguru logger for the application."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:HH:mm:ss}</green>(<level>{level: <8}</level>) - <level>{message}</level>",
        colorize=True,
    )
    if not log_dir:
        return logger

    try:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        logger.add(
            path / LOG_FILE_NAME,
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}",
            rotation="10 MB",
            retention=5,
            encoding="utf-8",
            enqueue=True,
        )
    except OSError as exc:
        logger.warning("File logging disabled, cannot write to {}: {}", log_dir, exc)
    return logger
