"""
common.logging_setup

Set up standard logging for the project.
"""
import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: int = logging.INFO, verbose: bool = False):
    if verbose:
        level = logging.DEBUG
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(max(level, logging.INFO))
