"""Rich-based logging configuration for applications embedding cxxindex."""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = "[%(name)s] [%(levelname)s] %(message)s"


def setup_logging(verbose: bool = False, console: Optional[Console] = None) -> RichHandler:
    """Route every log record through one Rich handler on the root logger.

    Handlers already attached to the root logger are replaced, so the
    returned handler is always the one in use.

    Args:
        verbose: Log at DEBUG with locals in tracebacks; WARNING otherwise.
        console: Console to render to; Rich's global console when omitted.

    Returns:
        The handler now installed on the root logger.
    """
    handler = RichHandler(
        console=console,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
        tracebacks_show_locals=verbose,
        log_time_format="[%H:%M:%S]",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        handlers=[handler],
        force=True,
    )
    return handler
