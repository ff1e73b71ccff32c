"""
Centralised logging configuration.

Call `configure_logging()` once at app startup. Each module should then use:

    import logging
    logger = logging.getLogger(__name__)

and pass request-specific context (user_id, dates, counts) through ``extra``
rather than formatting it into the message.
"""

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Configure root logger with a structured formatter."""
    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    datefmt = "%Y-%m-%dT%H:%M:%S"

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    # Avoid duplicate handlers if called more than once
    if not root.handlers:
        root.addHandler(handler)
    else:
        root.handlers = [handler]

    # Quieten noisy third-party loggers
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
