"""
MODULE OVERVIEW:
Process-level policy for the kiosk shell.

WHAT IS HAPPENING HERE:
The shell never exits on its own. Closing every window is treated as a fault
to recover from, and the only way out is `relaunch()`, which replaces the
current process image with a fresh copy of itself (same interpreter, same
argv) so the kiosk comes straight back.
"""
import os
import sys
from typing import Callable, Sequence

from loguru import logger

from bakehouse_kiosk import __version__


class AppLifecycle:
    def __init__(
        self,
        argv: Sequence[str] | None = None,
        executable: str | None = None,
        exec_fn: Callable[[str, list[str]], None] = os.execv,
        version: str = __version__,
    ):
        self.argv = list(argv if argv is not None else sys.argv)
        self.executable = executable or sys.executable
        self._exec = exec_fn
        self.version = version

    def relaunch(self, reason: str) -> None:
        logger.critical(f"relaunching kiosk shell reason='{reason}' argv={self.argv}")
        # Sinks must be flushed before the process image is replaced.
        logger.complete()
        sys.stdout.flush()
        sys.stderr.flush()
        self._exec(self.executable, [self.executable, *self.argv])

    def on_all_windows_closed(self) -> bool:
        """Returns whether the process may exit. A kiosk never may."""
        logger.warning("all kiosk windows closed; staying alive and recovering")
        return False
