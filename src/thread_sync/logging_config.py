"""Logging setup for the thread-sync CLI.

Engine modules log through loguru. Third-party libraries (requests, urllib3)
use the standard library logger, which is configured alongside so that
``--verbose`` also shows their connection traces.
"""

import logging
import sys

from loguru import logger


def configure_logging(*, verbose: bool = False) -> None:
    """Route engine logs to stderr, DEBUG when verbose and INFO otherwise."""
    fmt = "{level.icon} {name}: {message}" if verbose else "{level.icon} {message}"
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO", format=fmt)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="[%(levelname).1s] %(name)s: %(message)s",
        force=True,
    )
