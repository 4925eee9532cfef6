"""Unit tests for CLI logging setup."""

import logging
from collections.abc import Iterator

import pytest

from charisma.utils.logging import setup_logging


@pytest.fixture
def clean_root() -> Iterator[logging.Logger]:
    """Detach root handlers so basicConfig applies, then restore them."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    root.handlers.clear()
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def test_level_from_name(clean_root: logging.Logger) -> None:
    setup_logging("warning")

    assert clean_root.level == logging.WARNING
    assert logging.getLogger("websockets").level == logging.WARNING


def test_verbose_forces_debug(clean_root: logging.Logger) -> None:
    setup_logging("ERROR", verbose=True)

    assert clean_root.level == logging.DEBUG
