"""
Logging setup for applications embedding the driver.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler

from esper_triggerbox.config.models import LoggingConfig


LOG_FORMAT = "[%(asctime)s] %(levelname)s [%(name)s]: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3


def setup_logging(config: LoggingConfig) -> None:
    """
    Replace the root logger's handlers with a stdout handler and, when
    config.file is set, a rotating file handler.

    A log file that cannot be opened is reported and skipped.
    """
    root = logging.getLogger()
    root.setLevel(config.level)
    root.handlers.clear()

    handlers = [logging.StreamHandler(sys.stdout)]
    file_error = None
    if config.file:
        try:
            handlers.append(RotatingFileHandler(
                config.file,
                maxBytes=LOG_FILE_MAX_BYTES,
                backupCount=LOG_FILE_BACKUPS,
                encoding="utf-8",
            ))
        except OSError as e:
            file_error = e

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    for handler in handlers:
        handler.setLevel(config.level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    if file_error is not None:
        root.error(f"Failed to open log file {config.file}: {file_error}")
    elif config.file:
        root.info(f"Logging to file: {config.file}")
    root.info(f"Logging initialized at level: {config.level}")
