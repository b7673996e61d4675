# orderflow/utils/logging.py
import logging
import sys

from orderflow.utils.settings import LOG_LEVEL

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_configured = False


def _configure():
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_FORMAT))

    root = logging.getLogger("orderflow")
    root.addHandler(handler)
    root.setLevel(LOG_LEVEL.upper())
    root.propagate = False

    # third-party loggers are noisy at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    _configure()
    if not name.startswith("orderflow"):
        name = f"orderflow.{name}"
    return logging.getLogger(name)
