"""
Logging setup shared by the FastAPI application and the CLI.
"""

import logging
import sys

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging and quieten the per-request httpx logger."""
    logging.basicConfig(level=level.upper(), format=_FORMAT, stream=sys.stdout)
    if level.upper() != "DEBUG":
        logging.getLogger("httpx").setLevel(logging.WARNING)


__all__ = ["configure_logging"]
