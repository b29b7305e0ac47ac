"""
Logging configuration for Upstox Bridge.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Any

# websockets logs every handshake at INFO
QUIET_LOGGERS = ('websockets', 'urllib3')


def setup_logging(config: Dict[str, Any]) -> None:
    """
    Set up logging for the Upstox Bridge.

    Args:
        config: Logging configuration dictionary
    """
    # Set log level from config
    log_level_str = str(config.get('level', 'INFO')).upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    # Get log file path, an empty value disables the file handler
    log_file = config.get('file', 'logs/bridge.log')

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear any existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Create formatters
    main_formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s', datefmt='%H:%M:%S')

    # Create console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(main_formatter)
    console_handler.setLevel(log_level)
    root_logger.addHandler(console_handler)

    if log_file:
        # Create logs directory if it doesn't exist
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

        # Create file handler for main log file with rotation
        max_size_mb = config.get('max_size_mb', 10)
        backup_count = config.get('backup_count', 5)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count
        )
        file_handler.setFormatter(main_formatter)
        file_handler.setLevel(log_level)
        root_logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    # Log setup completion
    root_logger.info("Logging initialized at %s level", log_level_str)
    if log_file:
        root_logger.info("Main log file: %s", log_file)
