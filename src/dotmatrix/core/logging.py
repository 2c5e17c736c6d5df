"""Logging configuration for dotmatrix.

Console output goes through a rich handler so log lines blend with the
command output; an optional log file receives everything at debug level
in a plain format that is easy to grep.

Example:
    ```python
    from dotmatrix.core.logging import setup_logging

    setup_logging(debug=True, log_file="~/.cache/dotmatrix/dotmatrix.log")

    import logging
    logger = logging.getLogger(__name__)
    logger.info("Backed up %d files", 12)
    ```
"""

import logging
import sys
from pathlib import Path
from types import TracebackType
from typing import Optional, Type

from rich.console import Console
from rich.logging import RichHandler

console = Console(stderr=True)


def setup_logging(
    debug: bool = False,
    log_file: Optional[str] = None,
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
) -> None:
    """Set up logging configuration.

    Args:
        debug: Whether to enable debug logging on the console (default: False).
            Without it only warnings and errors reach the console, since
            commands print their own progress.
        log_file: Optional path to a log file. ``~`` is expanded and parent
            directories are created.
        log_format: Format string for the file handler.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = RichHandler(
        console=console,
        show_path=debug,
        enable_link_path=debug,
        markup=False,
        rich_tracebacks=True,
        tracebacks_show_locals=debug,
    )
    console_handler.setLevel(logging.DEBUG if debug else logging.WARNING)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(log_format))
        root_logger.addHandler(file_handler)

    logger = logging.getLogger(__name__)
    logger.debug("Logging initialized (debug=%s)", debug)
    if log_file:
        logger.debug("Log file: %s", log_file)

    def handle_exception(
        exc_type: Type[BaseException],
        exc_value: BaseException,
        exc_traceback: Optional[TracebackType],
    ) -> None:
        """Log uncaught exceptions instead of letting them vanish with the process."""
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return

        logger.critical(
            "Uncaught exception",
            exc_info=(exc_type, exc_value, exc_traceback),
        )

    sys.excepthook = handle_exception
