"""
Logging configuration utilities.

Both the API process and the notification worker call ``setup_logging``
once at startup so every component logger shares one format.
"""

import logging
import os
from typing import Optional


def setup_logging(level: Optional[int] = None, log_file: Optional[str] = None) -> None:
    """Configure root logger with a basic formatter.

    Parameters
    ----------
    level: Optional[int]
        Logging level (e.g. ``logging.INFO``). Defaults to ``LOG_LEVEL``
        from the environment, then ``INFO``.
    log_file: Optional[str]
        Optional file path to log to. If provided, logs are also written to
        the specified file.
    """
    if level is None:
        level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
