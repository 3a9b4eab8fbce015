"""Rich-based output helpers for the depot CLI tools.

Two channels exist. ``Logger`` is the facade commands use for user-facing
messages; library modules log through stdlib ``logging`` under the
``depot_cli`` namespace, which ``configure_library_logging`` routes onto the
same Rich stderr console.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from rich.console import Console
from rich.highlighter import NullHighlighter
from rich.logging import RichHandler
from rich.theme import Theme
from rich.traceback import install

install(show_locals=False)

LIBRARY_LOGGER = "depot_cli"

_THEME = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "bold green",
        "debug": "dim",
    }
)

# stdout carries extracted payloads (CSV/JSON); everything else goes to stderr.
# Highlighting stays off so amounts like "30.090,76" are never re-styled mid-string.
_stderr_console = Console(stderr=True, theme=_THEME, highlight=False)


@dataclass(slots=True)
class Logger:
    """Lightweight logger facade backed by a Rich stderr console."""

    verbose: bool = False

    def info(self, message: str) -> None:
        self._emit(message, "info")

    def success(self, message: str) -> None:
        self._emit(message, "success")

    def warning(self, message: str) -> None:
        self._emit(message, "warning")

    def error(self, message: str) -> None:
        self._emit(message, "error")

    def debug(self, message: str) -> None:
        if self.verbose:
            self._emit(message, "debug")

    @staticmethod
    def _emit(message: str, style: str) -> None:
        # Messages quote document text and plugin origins; brackets stay literal.
        _stderr_console.print(message, style=style, markup=False)


def get_logger(verbose: bool = False) -> Logger:
    """Return a configured Logger instance."""
    return Logger(verbose=verbose)


def configure_library_logging(verbose: bool = False) -> logging.Logger:
    """Route ``depot_cli`` library records to the Rich stderr console.

    Engine diagnostics (abandoned blocks, skipped units, plugin probing) are
    debug records and only show with ``--verbose``. Warnings are reported by the
    commands themselves, so without ``--verbose`` only errors pass through.
    """

    library_logger = logging.getLogger(LIBRARY_LOGGER)
    handler = next(
        (h for h in library_logger.handlers if isinstance(h, RichHandler)),
        None,
    )
    if handler is None:
        handler = RichHandler(
            console=_stderr_console,
            show_time=False,
            show_path=False,
            markup=False,
            highlighter=NullHighlighter(),
        )
        library_logger.addHandler(handler)
        library_logger.propagate = False

    level = logging.DEBUG if verbose else logging.ERROR
    library_logger.setLevel(level)
    handler.setLevel(level)
    return library_logger
