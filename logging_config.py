"""Process-wide logging setup."""

import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """Configure the root logger once; later calls just reset the level."""
    root = logging.getLogger()
    level = getattr(logging, str(log_level).upper(), logging.INFO)
    root.setLevel(level)
    if getattr(setup_logging, "_configured", False):
        return

    formatter = logging.Formatter(LOG_FORMAT)
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # websockets logs every handshake at INFO
    logging.getLogger("websockets").setLevel(max(level, logging.WARNING))
    setup_logging._configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
