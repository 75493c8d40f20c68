import logging
import sys
from datetime import datetime
from pathlib import Path

from scoreboard.config import Config

PACKAGE_LOGGER = 'scoreboard'


def _configure_package_logger() -> logging.Logger:
    """Attach console and daily file handlers to the package logger, once"""
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if package_logger.handlers:
        return package_logger

    log_level = logging.DEBUG if Config.DEBUG else logging.INFO
    package_logger.setLevel(log_level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    # Empty LOG_DIR means console only
    if Config.LOG_DIR:
        log_dir = Path(Config.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(
            log_dir / f'scoreboard_{datetime.now().strftime("%Y%m%d")}.log',
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    return package_logger


def setup_logger(name: str) -> logging.Logger:
    """
    Get a logger that writes through the shared package handlers.

    Names outside the package are nested under it so every module of the
    ledger shares one console stream and one daily log file.
    """
    _configure_package_logger()

    if name != PACKAGE_LOGGER and not name.startswith(f'{PACKAGE_LOGGER}.'):
        name = f'{PACKAGE_LOGGER}.{name}'
    return logging.getLogger(name)
