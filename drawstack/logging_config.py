"""
Logging configuration for drawstack.

Quiet by default: warnings and errors on stderr. Verbose mode adds debug
output from the drawstack loggers and SQLAlchemy's engine.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from . import PROJECT_ROOT

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_FILE = os.path.join(PROJECT_ROOT, "drawstack.log")


def configure_logging(verbose: bool = False, log_file: Optional[str] = None) -> logging.Logger:
    """
    Attach a stderr handler to the `drawstack` logger and, when `log_file`
    is given, a rotating file log (1MB max, 3 backups). Calling this twice
    does not duplicate handlers.
    """
    logger = logging.getLogger("drawstack")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    if not any(isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
               for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
        logger.addHandler(handler)

    if log_file and not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=3)
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(file_handler)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if verbose else logging.WARNING)
    return logger
