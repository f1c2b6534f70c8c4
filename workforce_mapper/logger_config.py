"""
Logging setup for the Workforce Mapper.

Streamlit re-executes app.py on every interaction, so setup_logging() runs
once per rerun. Handlers are attached to the root logger only the first
time for a given log file.
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = (
    "urllib3",
    "requests",
    "shapely",
    "pyproj",
    "fiona",
    "pyogrio",
    "geopandas",
    "streamlit",
    "watchdog",
)

def _has_file_handler(logger: logging.Logger, log_file: Path) -> bool:
    return any(
        isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == log_file
        for handler in logger.handlers
    )

def setup_logging(
    level: Optional[str] = None,
    log_dir: Optional[Union[str, Path]] = None
) -> Path:
    """
    Configure logging for the entire application.

    Args:
        level: Root log level name; defaults to Config.LOG_LEVEL
        log_dir: Directory for app.log; defaults to Config.LOG_DIR

    Returns:
        Path of the log file
    """
    from .config import Config

    # Create logs directory if it doesn't exist
    log_dir = Path(log_dir or Config.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = Path(os.path.abspath(log_dir / "app.log"))

    root = logging.getLogger()
    root.setLevel((level or Config.LOG_LEVEL).upper())

    if not _has_file_handler(root, log_file):
        handlers = [logging.FileHandler(log_file)]
        # Console handler
        if not any(type(handler) is logging.StreamHandler for handler in root.handlers):
            handlers.append(logging.StreamHandler())

        formatter = logging.Formatter(LOG_FORMAT)
        for handler in handlers:
            handler.setFormatter(formatter)
            root.addHandler(handler)

    # Reduce logging level for some third-party libraries
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return log_file
