import logging
import os

_PACKAGE_LOGGER = "foodlens"
_FORMAT = "%(asctime)s %(levelname)s:     [%(name)s] %(message)s"


def _configure_package_logger() -> logging.Logger:
    package_logger = logging.getLogger(_PACKAGE_LOGGER)
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        package_logger.addHandler(handler)
        level = os.environ.get("FOODLENS_LOG_LEVEL", "INFO").upper()
        package_logger.setLevel(getattr(logging, level, logging.INFO))
    return package_logger


def create_logger(name: str) -> logging.Logger:
    """Returns a logger under the package hierarchy.

    The package logger gets a single stream handler the first time any
    module asks for a logger; child loggers propagate to it.
    """
    _configure_package_logger()
    if name != _PACKAGE_LOGGER and not name.startswith(_PACKAGE_LOGGER + "."):
        name = f"{_PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)
