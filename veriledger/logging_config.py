"""Shared logging configuration for veriledger.

``configure_logging()`` is called by the CLI entry point. It only touches the
root logger when nothing else (a test runner, an embedding app, uvicorn) has
configured it already.

``VERILEDGER_LOG_LEVEL`` overrides the level passed in, e.g. ``DEBUG``.
"""

import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] %(message)s"
LOG_FILE_NAME = "veriledger.log"

# HTTP client chatter drowns out per-gateway messages
NOISY_LOGGERS = ("urllib3", "httpx", "httpcore")


def _level_from_env(default: int) -> int:
    name = os.environ.get("VERILEDGER_LOG_LEVEL", "").strip().upper()
    if not name:
        return default
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else default


def configure_logging(level: int = logging.INFO, log_dir: Optional[str] = "logs") -> None:
    """Attach console and file handlers to the root logger, once.

    Args:
        level: Root level unless VERILEDGER_LOG_LEVEL is set
        log_dir: Directory for veriledger.log; None disables the file handler
    """
    root = logging.getLogger()
    if root.handlers:
        return

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_dir:
        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(os.path.join(log_dir, LOG_FILE_NAME), mode="a")
        except OSError as e:
            root.warning(f"File logging disabled, cannot write to {log_dir}: {e}")
        else:
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

    root.setLevel(_level_from_env(level))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
