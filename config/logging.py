"""
Logging setup for the service.

Modules use:
    logger = logging.getLogger(__name__)
and configure_logging() is called once when the app is created.
"""
import logging
import sys

DEFAULT_FORMAT = "[%(levelname)s] %(name)s - %(message)s"


def configure_logging(level: int | str = logging.INFO, fmt: str = DEFAULT_FORMAT, stream=sys.stdout) -> None:
    """Install one stream handler on the root logger; repeated calls only change the level."""
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(stream)
        handler.setFormatter(logging.Formatter(fmt))
        root.addHandler(handler)

    root.setLevel(level)
