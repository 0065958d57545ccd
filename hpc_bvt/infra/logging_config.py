"""
Logging configuration module.

Console output plus one log file per BVT run:
logs/hpc_bvt_YYYYMMDD_HHMMSS_<pid>.log
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional

LOGGER_NAME = "hpc_bvt"

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def run_log_path(log_dir: str, started: Optional[datetime] = None) -> Path:
    """
    Path of the log file for a run started at `started` (default: now).

    The process id keeps two runs started in the same second apart.
    The directory is created if missing.
    """
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    stamp = (started or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return directory / f"{LOGGER_NAME}_{stamp}_{os.getpid()}.log"


def setup_logging(log_level: str = "INFO", log_dir: Optional[str] = "logs") -> logging.Logger:
    """
    Configure the package logger and return it.

    Module loggers (hpc_bvt.*) propagate into this one, so they share its
    handlers.

    Args:
        log_level (str): Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir (Optional[str]): Directory for the run's log file, None for console only

    Returns:
        logging.Logger: Configured logger instance
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)

    # Prevent propagation to root logger (avoid duplicate logs)
    logger.propagate = False

    if logger.handlers:
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_dir is not None:
        file_handler = logging.FileHandler(run_log_path(log_dir), mode='w', encoding='utf-8')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        logger.info(f"Logging started - level: {log_level}, log file: {file_handler.baseFilename}")
    else:
        logger.info(f"Logging started - level: {log_level}")

    return logger
