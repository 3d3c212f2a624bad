import logging
import os
from datetime import datetime
from typing import Optional

LOG_DIR = "logs"
LOGGER_NAME = "MACROX"

# Default settings, replaced by configure_logging()
ENABLE_FILE_LOGGING = False  # Log to file
ENABLE_CONSOLE_LOGGING = True  # Log to console (for developers)
DEBUG_MODE = True  # Show detailed logs

# Track current log file
_current_log_file: Optional[str] = None


def configure_logging(debug_mode: Optional[bool] = None,
                      enable_file_logging: Optional[bool] = None,
                      enable_console_logging: Optional[bool] = None,
                      log_dir: Optional[str] = None):
    """Apply logging switches (taken from the app settings) and rebuild the handlers"""
    global DEBUG_MODE, ENABLE_FILE_LOGGING, ENABLE_CONSOLE_LOGGING, LOG_DIR
    if debug_mode is not None:
        DEBUG_MODE = bool(debug_mode)
    if enable_file_logging is not None:
        ENABLE_FILE_LOGGING = bool(enable_file_logging)
    if enable_console_logging is not None:
        ENABLE_CONSOLE_LOGGING = bool(enable_console_logging)
    if log_dir is not None:
        LOG_DIR = log_dir
    return setup_logger()


def set_debug_mode(enabled: bool):
    """Enable/disable debug mode (for production builds)"""
    configure_logging(debug_mode=enabled, enable_console_logging=enabled)


def is_debug_mode() -> bool:
    """Check if debug mode is enabled"""
    return DEBUG_MODE


def current_log_file() -> Optional[str]:
    return _current_log_file


def setup_logger(name=LOGGER_NAME):
    global _current_log_file

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    # Close and clear existing handlers
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    _current_log_file = None

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(message)s"
    )

    # File handler - only when ENABLE_FILE_LOGGING = True
    if ENABLE_FILE_LOGGING:
        os.makedirs(LOG_DIR, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = os.path.join(LOG_DIR, f"run_{timestamp}.log")
        _current_log_file = log_file

        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    # Console handler - only when ENABLE_CONSOLE_LOGGING = True
    if ENABLE_CONSOLE_LOGGING:
        ch = logging.StreamHandler()
        ch.setLevel(logging.INFO)
        ch.setFormatter(formatter)
        logger.addHandler(ch)

    return logger


def _get_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        logger = setup_logger()
    return logger


def log(message: str):
    """Convenience function for quick logging - respects DEBUG_MODE"""
    if not DEBUG_MODE:
        return  # Skip logging in production mode
    _get_logger().info(message)


def log_error(message: str):
    """Failure paths are always logged, even outside debug mode"""
    _get_logger().error(message)
