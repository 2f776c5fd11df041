import atexit
import logging
import logging.handlers
import os
from pathlib import (
    Path,
)
import queue
import sys
import threading
from typing import (
    Any,
)

ROOT_LOGGER_NAME = "conntest"

# Create a log queue
log_queue: "queue.Queue[Any]" = queue.Queue()

# Store the current listener to stop it on exit
_current_listener: logging.handlers.QueueListener | None = None

# Event to track when the listener is ready
_listener_ready = threading.Event()

# Default format for log messages
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _parse_debug_modules(debug_str: str) -> dict[str, int]:
    """
    Parse the CONNTEST_DEBUG environment variable into per-module log levels.

    Format examples:
    - "DEBUG"  # All modules at DEBUG level
    - "conntest.transport.udp:DEBUG"  # Only the UDP transport at DEBUG
    - "transport.udp:DEBUG"  # Same as above, conntest prefix is optional
    - "transport.udp:DEBUG,protocol:INFO"  # Multiple modules
    """
    module_levels: dict[str, int] = {}

    if not debug_str or debug_str.isspace():
        return module_levels

    # If it's a plain log level without any colons, apply to all
    if ":" not in debug_str and debug_str.upper() in logging._nameToLevel:
        return {"": getattr(logging, debug_str.upper())}

    for part in debug_str.split(","):
        if ":" not in part:
            continue

        module, level = part.split(":", 1)
        level = level.strip().upper()

        if level not in logging._nameToLevel:
            continue

        module = module.strip()
        # Remove the prefix if present, it is added back when creating the logger
        if module == ROOT_LOGGER_NAME:
            module = ""
        elif module.startswith(f"{ROOT_LOGGER_NAME}."):
            module = module[len(ROOT_LOGGER_NAME) + 1 :]
        module = module.replace("/", ".").strip(".")

        module_levels[module] = getattr(logging, level)

    return module_levels


def setup_logging(output_level: int = logging.INFO) -> None:
    """
    Set up logging configuration based on environment variables.

    Environment Variables:
        CONNTEST_DEBUG
            Controls logging levels. Examples:
            - "DEBUG" (all modules at DEBUG level)
            - "transport.udp:DEBUG" (only the UDP transport at DEBUG)
            - "transport.udp:DEBUG,protocol:INFO" (multiple modules)
            When unset, only warnings and errors are shown, apart from
            probe results on the "conntest.output" logger, which are
            logged at ``output_level``.

        CONNTEST_DEBUG_FILE
            If set, log records are also written to this file.
    """
    global _current_listener, _listener_ready

    _listener_ready.clear()

    if _current_listener is not None:
        _current_listener.stop()
        _current_listener = None

    debug_str = os.environ.get("CONNTEST_DEBUG", "")
    module_levels = _parse_debug_modules(debug_str)

    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)

    handlers: list[logging.Handler] = []

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    log_file = os.environ.get("CONNTEST_DEBUG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode="w")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    queue_handler = logging.handlers.QueueHandler(log_queue)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.handlers.clear()
    root_logger.addHandler(queue_handler)
    root_logger.propagate = False

    if "" in module_levels:
        root_logger.setLevel(module_levels[""])
    elif module_levels:
        # Default to INFO for module-specific logging
        root_logger.setLevel(logging.INFO)
    else:
        root_logger.setLevel(logging.WARNING)

    if "output" not in module_levels:
        logging.getLogger(f"{ROOT_LOGGER_NAME}.output").setLevel(
            min(output_level, module_levels.get("", output_level))
        )

    for module, level in module_levels.items():
        if module:
            logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{module}")
            logger.setLevel(level)

    # Start the listener AFTER configuring all loggers
    _current_listener = logging.handlers.QueueListener(
        log_queue, *handlers, respect_handler_level=True
    )
    _current_listener.start()

    _listener_ready.set()


@atexit.register
def cleanup_logging() -> None:
    """Clean up logging resources on exit."""
    global _current_listener
    if _current_listener is not None:
        _current_listener.stop()
        _current_listener = None
