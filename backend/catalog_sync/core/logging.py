"""
Logging setup for the catalog sync service
"""
import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """
    Configure the root logger once

    Repeated calls only adjust the level, so importing the app twice
    (tests, reloaders) never duplicates handlers.
    """
    root = logging.getLogger()
    root.setLevel(level.upper())

    if any(getattr(h, "_catalog_sync", False) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._catalog_sync = True
    root.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
