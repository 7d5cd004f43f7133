"""Loguru sink configuration."""

import sys
from pathlib import Path

from loguru import logger

from relaybot.config.schema import LoggingConfig


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logging(config: LoggingConfig | None = None, verbose: bool = False) -> None:
    """
    Reconfigure loguru sinks.

    Args:
        config: Logging configuration. Defaults are used if omitted.
        verbose: Force DEBUG level on stderr.
    """
    config = config or LoggingConfig()
    level = "DEBUG" if verbose else config.level.upper()

    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)

    if config.log_to_file:
        log_dir = Path(config.log_dir).expanduser()
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "relaybot.log",
            level=level,
            rotation=config.rotation,
            retention=config.retention,
            enqueue=False,
        )
