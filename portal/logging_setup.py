import logging
import os

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = None) -> None:
    """
    Install the root handler used by both the API and the broker process.
    Safe to call more than once, later calls are ignored by basicConfig.
    """
    level = level or os.getenv('LOG_LEVEL', 'INFO')
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
