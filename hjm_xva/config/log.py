"""
Logging setup for scripts driving the engine.

Library modules only create module loggers; handlers are installed here on
request so that embedding applications keep control of their own logging.
"""

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | int = "INFO") -> None:
    """
    Configure root logging with the engine's standard format.

    Parameters
    ----------
    level : str | int
        Logging level name (e.g. 'DEBUG') or numeric level
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("hjm_xva").setLevel(level)
