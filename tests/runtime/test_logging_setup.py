"""Tests for the Rich logging setup helper."""

from __future__ import annotations

import io
import logging
from contextlib import contextmanager
from typing import Iterator

from rich.console import Console
from rich.logging import RichHandler

from cxxindex.utils.logging_setup import setup_logging


@contextmanager
def _bare_root_logger() -> Iterator[logging.Logger]:
    """Detach the root handlers (pytest's included) and restore them afterwards."""
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    for handler in saved_handlers:
        root.removeHandler(handler)
    try:
        yield root
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)


def test_verbose_logging_goes_to_rich_console() -> None:
    buffer = io.StringIO()
    console = Console(file=buffer, width=200)

    with _bare_root_logger() as root:
        handler = setup_logging(verbose=True, console=console)
        logging.getLogger("cxxindex.test").debug("resolved %d overrides", 3)

        assert isinstance(handler, RichHandler)
        assert root.handlers == [handler]
        assert root.level == logging.DEBUG

    assert "[cxxindex.test] [DEBUG] resolved 3 overrides" in buffer.getvalue()


def test_default_level_is_warning() -> None:
    buffer = io.StringIO()

    with _bare_root_logger() as root:
        setup_logging(console=Console(file=buffer, width=200))
        logging.getLogger("cxxindex.test").info("hidden")
        logging.getLogger("cxxindex.test").warning("shown")

        assert root.level == logging.WARNING

    assert "hidden" not in buffer.getvalue()
    assert "shown" in buffer.getvalue()


def test_existing_root_handlers_are_replaced() -> None:
    buffer = io.StringIO()
    stale = logging.StreamHandler(io.StringIO())

    with _bare_root_logger() as root:
        root.addHandler(stale)
        first = setup_logging(console=Console(file=buffer, width=200))
        second = setup_logging(verbose=True, console=Console(file=buffer, width=200))
        logging.getLogger("cxxindex.test").debug("after reconfiguration")

        assert root.handlers == [second]
        assert first is not second
        assert root.level == logging.DEBUG

    assert "after reconfiguration" in buffer.getvalue()
    assert stale.stream.getvalue() == ""
