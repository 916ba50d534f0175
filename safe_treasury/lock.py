"""
Single-instance guard for the refill job.

The lock is a marker file created with O_CREAT | O_EXCL, so creation is
atomic. It is removed on every exit path of a live process (context exit,
interpreter exit, SIGINT, SIGTERM). On a signal the process exits right
after removal without waiting for pending executor work. A marker left
behind by a hard crash must be removed by hand.
"""

from __future__ import annotations

import atexit
import logging
import os
import signal
import sys
from pathlib import Path
from types import FrameType
from typing import Any, Dict, Optional, Union

SIGNAL_EXIT_CODES = {signal.SIGINT: 130, signal.SIGTERM: 143}


class SingleInstanceGuard:
    """Exclusive, process-wide marker that a refill is in progress."""

    def __init__(
        self,
        path: Union[str, Path],
        logger: Optional[logging.Logger] = None,
        install_signal_handlers: bool = True,
    ) -> None:
        self.path = Path(path)
        self._logger = logger or logging.getLogger("refill_lock")
        self._install_signal_handlers = install_signal_handlers
        self._held = False
        self._previous_handlers: Dict[int, Any] = {}

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> bool:
        """Create the marker; return False if another instance holds it."""
        if self._held:
            return True
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_RDWR, 0o600)
        except FileExistsError:
            self._logger.warning(
                "Another refill instance is running (lock file exists: %s)", self.path
            )
            return False
        os.close(fd)
        self._held = True
        atexit.register(self.release)
        if self._install_signal_handlers:
            self._register_signal_handlers()
        return True

    def release(self) -> None:
        """Remove the marker. Safe to call more than once."""
        if not self._held:
            return
        self._held = False
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        atexit.unregister(self.release)
        self._restore_signal_handlers()

    def _register_signal_handlers(self) -> None:
        for signum in SIGNAL_EXIT_CODES:
            try:
                self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)
            except ValueError:
                # signal handlers can only be installed from the main thread
                self._logger.debug("Could not install handler for signal %s", signum)

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            try:
                signal.signal(signum, handler)
            except ValueError:
                pass
        self._previous_handlers.clear()

    def _handle_signal(self, signum: int, frame: Optional[FrameType]) -> None:
        """Release the marker and terminate without unwinding through asyncio.run."""
        self._logger.info("Received signal %s; releasing refill lock", signum)
        self.release()
        sys.stdout.flush()
        sys.stderr.flush()
        os._exit(SIGNAL_EXIT_CODES.get(signal.Signals(signum), 1))

    def __enter__(self) -> "SingleInstanceGuard":
        self.acquire()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.release()
