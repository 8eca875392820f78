"""Logging setup for applications using the Audio Station client.

Handlers go on the ``audiostation`` package logger rather than the root
logger, so an application's own logging configuration is left alone.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional, Union

import colorlog

PACKAGE_LOGGER = __name__.rpartition('.')[0]

CONSOLE_FORMAT = "%(log_color)s%(levelname)-8s%(reset)s %(cyan)s%(name)s%(reset)s %(message)s"
FILE_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s (%(filename)s:%(lineno)d)'
LOG_COLORS = {
    'DEBUG': 'white',
    'INFO': 'green',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'bold_red,bg_white',
}


def setup_logging(level: Union[str, int, None] = None, log_file: Optional[str] = None) -> logging.Logger:
    """Attach a colored console handler and an optional rotating file handler.

    Unset arguments fall back to AUDIOSTATION_LOG_LEVEL and
    AUDIOSTATION_LOG_FILE. The file rotates according to
    AUDIOSTATION_LOG_MAX_BYTES and AUDIOSTATION_LOG_BACKUP_COUNT. Calling it
    again only changes the level.

    Args:
        level: Level name or number (default INFO)
        log_file: Path of the log file

    Returns:
        The package logger
    """
    if level is None:
        level = os.getenv('AUDIOSTATION_LOG_LEVEL', 'INFO')
    if isinstance(level, str):
        level = level.upper()
    log_file = log_file or os.getenv('AUDIOSTATION_LOG_FILE')
    max_bytes = int(os.getenv('AUDIOSTATION_LOG_MAX_BYTES', '10485760'))  # 10 MB
    backup_count = int(os.getenv('AUDIOSTATION_LOG_BACKUP_COUNT', '5'))

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    if not logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(colorlog.ColoredFormatter(CONSOLE_FORMAT, log_colors=LOG_COLORS))
        logger.addHandler(console_handler)

        if log_file:
            file_handler = RotatingFileHandler(
                log_file, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8'
            )
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
            logger.addHandler(file_handler)

        logger.propagate = False

    # httpx INFO request lines include the _sid query parameter
    logging.getLogger('httpx').setLevel(max(logger.level, logging.WARNING))
    return logger
