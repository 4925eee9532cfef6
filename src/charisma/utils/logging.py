"""Logging setup for command-line entry points."""

import logging


def setup_logging(level: str = "INFO", verbose: bool = False) -> None:
    """Configure root logging.

    Args:
        level: Logging level name
        verbose: Force DEBUG regardless of ``level``
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # Frame-level traces from the WebSocket library drown out session events
    logging.getLogger("websockets").setLevel(logging.WARNING)
