"""Diagnostic output on stderr with Rich support.

netpipe is a library, so it never writes to stdout. Everything it has to
say (dispatches, retries, cache evictions, callback failures) goes to
stderr through an :class:`OutputManager`:

* **Levels** -- :meth:`~OutputManager.debug` is shown only in verbose
  mode, :meth:`~OutputManager.info` is suppressed in quiet mode, and
  :meth:`~OutputManager.warning` / :meth:`~OutputManager.error` are always
  shown.
* **Colour control** -- respects ``NO_COLOR``, ``TERM=dumb``, and the
  ``no_color`` option of :class:`~netpipe.models.OutputConfig`.

Module-level functions (:func:`info`, :func:`debug`, ...) delegate to a
global manager so callers do not need to pass one around. Applications
install their own with :func:`set_output`.
"""

from __future__ import annotations

import os
import sys
from typing import Optional

from rich.console import Console

from netpipe.models import OutputConfig


class OutputManager:
    """Routes diagnostics to stderr with optional Rich markup.

    Args:
        no_color: Disable all colour and Rich markup.
        quiet: Suppress informational messages.
        verbose: Enable debug-level messages.
    """

    def __init__(
        self,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = verbose
        self._stderr = Console(
            file=sys.stderr,
            no_color=self._no_color,
            stderr=True,
        )

    @classmethod
    def from_config(cls, config: OutputConfig) -> OutputManager:
        """Build a manager from the ``output`` section of the global config."""
        return cls(no_color=config.no_color, quiet=config.quiet, verbose=config.verbose)

    @property
    def is_quiet(self) -> bool:
        """Whether quiet mode is enabled."""
        return self._quiet

    @property
    def is_verbose(self) -> bool:
        """Whether verbose mode is enabled."""
        return self._verbose

    def info(self, message: str) -> None:
        """Print an informational message to stderr. Suppressed in quiet mode."""
        if not self._quiet:
            if self._no_color:
                print(message, file=sys.stderr, flush=True)
            else:
                self._stderr.print(message)

    def warning(self, message: str) -> None:
        """Print a yellow warning to stderr. NOT suppressed in quiet mode."""
        if self._no_color:
            print(f"Warning: {message}", file=sys.stderr, flush=True)
        else:
            self._stderr.print(f"[yellow]Warning:[/yellow] {message}")

    def error(self, message: str) -> None:
        """Print a bold-red error to stderr. Never suppressed."""
        if self._no_color:
            print(f"Error: {message}", file=sys.stderr, flush=True)
        else:
            self._stderr.print(f"[bold red]Error:[/bold red] {message}")

    def debug(self, message: str) -> None:
        """Print a debug message to stderr. Only shown in verbose mode.

        Args:
            message: The debug text (prefixed with ``[debug]`` on output).
        """
        if self._verbose:
            if self._no_color:
                print(f"[debug] {message}", file=sys.stderr, flush=True)
            else:
                self._stderr.print(f"[dim]\\[debug] {message}[/dim]")


def _should_disable_color() -> bool:
    """Check if color should be disabled.

    Returns True when NO_COLOR env var is set (any value) or TERM=dumb.
    """
    if os.environ.get("NO_COLOR") is not None:
        return True
    if os.environ.get("TERM") == "dumb":
        return True
    return False


# ------------------------------------------------------------------ #
# Global output instance
# ------------------------------------------------------------------ #

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the global :class:`OutputManager` instance.

    A default, non-verbose manager is created lazily when none has been
    installed via :func:`set_output`.
    """
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    """Install *output* as the global :class:`OutputManager` instance."""
    global _output
    _output = output


def reset_output() -> None:
    """Reset the global :class:`OutputManager` to ``None``.

    Primarily useful in test suites to ensure a clean state between tests.
    """
    global _output
    _output = None


def info(message: str) -> None:
    """Print info message to stderr via the global OutputManager."""
    get_output().info(message)


def warning(message: str) -> None:
    """Print warning to stderr via the global OutputManager."""
    get_output().warning(message)


def error(message: str) -> None:
    """Print error to stderr via the global OutputManager."""
    get_output().error(message)


def debug(message: str) -> None:
    """Print debug message to stderr via the global OutputManager."""
    get_output().debug(message)
