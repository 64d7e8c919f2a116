"""
Shared helpers.
"""
import logging

from orgaccess.core import config


_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

_root = logging.getLogger("orgaccess")
if not _root.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    _root.addHandler(_handler)
_root.setLevel(config.LOG_LEVEL)


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger.

    Loggers live under the ``orgaccess`` hierarchy so a single handler and
    level apply to the whole package, including ``server`` and ``__main__``.

    Usage:
        log = get_logger(__name__)
    """
    if not name.startswith("orgaccess"):
        name = f"orgaccess.{name}"
    return logging.getLogger(name)
