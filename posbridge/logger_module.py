"""
Centralized logging configuration for POS Bridge.

Provides the application logger. Console output is configured on import;
the rotating log file is attached by the process entry points through
init_file_logging() once the configuration is known.
"""

import json
import logging
from logging.handlers import RotatingFileHandler
import os
import sys
import threading

# Determine base directory
_env_base = os.environ.get("POS_BRIDGE_BASE")
if _env_base:
    BASE_DIR = _env_base.strip()
elif getattr(sys, 'frozen', False):
    # Running as compiled executable
    BASE_DIR = os.path.dirname(sys.executable)
else:
    # Running from source - go up 2 levels from posbridge/logger_module.py to the repo root
    BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# Application logger; modules log through logging.getLogger(__name__) as its children
logger = logging.getLogger('posbridge')
logger.setLevel(logging.DEBUG)

# Create formatters
detailed_formatter = logging.Formatter(
    '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)

simple_formatter = logging.Formatter(
    '%(levelname)s - %(message)s'
)

LEVEL_MAP = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL,
}


def _load_config_log_level():
    level_name = os.environ.get('LOG_LEVEL')
    if not level_name:
        config_path = os.path.join(BASE_DIR, 'config.json')
        try:
            with open(config_path, 'r', encoding='utf-8') as handle:
                config = json.load(handle)
            level_name = config.get('system', {}).get('log_level', 'INFO')
        except Exception:
            level_name = 'INFO'

    return LEVEL_MAP.get(str(level_name).upper(), logging.INFO)


# Console handler
console_handler = logging.StreamHandler()
console_handler.setLevel(logging.INFO)
console_handler.setFormatter(simple_formatter)

# Add handlers to logger (avoid duplicates on re-import)
_added_handlers = False
if not logger.handlers:
    logger.addHandler(console_handler)
    _added_handlers = True

# Prevent logging from propagating to root logger
logger.propagate = False

_file_handler = None


def init_file_logging(base_dir=None, level_name=None, filename='log.log'):
    """
    Attach the rotating file handler to the application logger.

    Args:
        base_dir: Directory for the log file (defaults to BASE_DIR)
        level_name: Log level name (defaults to system.log_level in config.json)
        filename: Log file name

    Returns:
        str: Path of the log file
    """
    global _file_handler

    log_file = os.path.join(base_dir or BASE_DIR, filename)
    if _file_handler is not None:
        logger.removeHandler(_file_handler)
        _file_handler.close()

    _file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10*1024*1024,  # 10 MB
        backupCount=5,
        encoding='utf-8'
    )
    if level_name:
        _file_handler.setLevel(LEVEL_MAP.get(str(level_name).upper(), logging.INFO))
    else:
        _file_handler.setLevel(_load_config_log_level())
    _file_handler.setFormatter(detailed_formatter)
    logger.addHandler(_file_handler)
    return log_file


if _added_handlers:
    logger.debug("Logger initialized")


def install_exception_hooks():
    """
    Route uncaught exceptions from the main thread and worker threads to the
    application logger. The process keeps running for worker threads.
    """
    def _log_uncaught(exc_type, exc_value, exc_tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return
        logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_tb))

    def _log_thread_exception(args):
        if args.exc_type is SystemExit:
            return
        name = args.thread.name if args.thread else '?'
        logger.error(f"Uncaught exception in thread {name}",
                     exc_info=(args.exc_type, args.exc_value, args.exc_traceback))

    sys.excepthook = _log_uncaught
    threading.excepthook = _log_thread_exception


def asyncio_exception_handler(loop, context):
    """asyncio loop exception handler that logs instead of printing."""
    exc = context.get('exception')
    message = context.get('message', 'Unhandled exception in event loop')
    if exc is not None:
        logger.error(f"Event loop error: {message}", exc_info=(type(exc), exc, exc.__traceback__))
    else:
        logger.error(f"Event loop error: {message}")
