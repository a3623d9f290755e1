"""Logging setup for Mensura.

All modules log through loguru via ``from loguru import logger``. This
module only configures the sinks: a coloured console sink and a rotating
file sink in the user's log directory.

Usage:
    from mensura.core.logging import setup_logging
    setup_logging(config)
"""

import sys
from pathlib import Path

from loguru import logger
from platformdirs import user_log_dir

from mensura.config.manager import ConfigManager


_LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

_LOG_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"

LOG_FILENAME = "mensura.log"


def get_log_dir() -> Path:
    """Return the directory where log files are stored."""
    return Path(user_log_dir("Mensura", "Mensura"))


def setup_logging(config: ConfigManager, log_dir: Path | None = None) -> Path | None:
    """Replace loguru's default handler with the configured sinks.

    Returns the log file path, or None when file logging is off.
    """
    level = config.get("logging", "log_level", "INFO")
    console_output = config.get("logging", "log_console_output", True)

    logger.remove()

    if console_output:
        logger.add(sys.stderr, format=_LOG_FORMAT, level=level, colorize=True)

    if not config.get("logging", "log_to_file", True):
        logger.info(f"Logging initialized (console={level}, no file)")
        return None

    log_dir = Path(log_dir) if log_dir is not None else get_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILENAME
    logger.add(
        str(log_path),
        format=_LOG_FILE_FORMAT,
        level="DEBUG",  # file always gets everything
        rotation=f"{config.get('logging', 'log_max_size_mb', 10)} MB",
        retention=f"{config.get('logging', 'log_retention_days', 30)} days",
        encoding="utf-8",
    )
    logger.info(f"Logging initialized (console={level}, file={log_path})")
    return log_path
