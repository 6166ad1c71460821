import sys
from typing import Optional

from loguru import logger


LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}"


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    logger.remove()

    logger.add(sys.stdout, level=level, format=LOG_FORMAT)

    if log_file:
        logger.add(
            log_file,
            rotation="10 MB",
            retention="14 days",
            level=level,
            format=LOG_FORMAT,
        )

    logger.info(f"Logging initialized | level={level}")
