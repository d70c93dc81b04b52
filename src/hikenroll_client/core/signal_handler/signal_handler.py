from __future__ import annotations

import os
import signal
import sys
import threading
from types import FrameType
from typing import Any, Callable, Dict, Optional

from loguru import logger

# Type alias for handler callbacks
CleanupFn = Callable[[], None]


class SignalHandler:
    """Turn exit signals into an abort request for a running batch.

    The first signal sets the abort event, so the batch stops between two
    students and its partial report survives. A second signal exits at once.
    """

    #: Exit signals we *always* hook
    _BASE_SIGNALS = [signal.SIGINT, signal.SIGTERM]
    if hasattr(signal, "SIGHUP"):
        _BASE_SIGNALS.append(signal.SIGHUP)

    #: Windows-specific mapping (Ctrl-Break)
    if os.name == "nt" and hasattr(signal, "SIGBREAK"):
        _BASE_SIGNALS.append(signal.SIGBREAK)  # type: ignore[attr-defined]

    def __init__(self, abort_event: Optional[threading.Event] = None, install: bool = True) -> None:
        self.abort_event = abort_event or threading.Event()
        self._cleanup_fns: list[CleanupFn] = []
        self._previous: Dict[int, Any] = {}
        self.signal_received = False
        self.received_signal: Optional[str] = None
        if install:
            self._install_handlers()

    def register_cleanup(self, fn: CleanupFn) -> None:
        self._cleanup_fns.append(fn)

    def _install_handlers(self) -> None:
        for sig in self._BASE_SIGNALS:
            try:
                self._previous[sig] = signal.signal(sig, self._handle_exit)  # type: ignore[arg-type]
            except (ValueError, OSError):  # not allowed in threads / rare OSes
                logger.warning(f"Could not hook signal {sig}")

    def restore(self) -> None:
        """Put back the handlers that were active before installation."""
        for sig, previous in self._previous.items():
            signal.signal(sig, previous)
        self._previous.clear()

    def _handle_exit(self, signum: int, frame: FrameType | None) -> None:  # noqa: ANN001
        if self.signal_received:
            logger.warning("Second interrupt, exiting immediately")
            sys.exit(130)
        signal_name = signal.Signals(signum).name
        logger.warning(f"Received {signal_name}, stopping after the current student")
        self.signal_received = True
        self.received_signal = signal_name
        self.abort_event.set()

        for fn in self._cleanup_fns:
            try:
                fn()
            except Exception:  # noqa: BLE001
                logger.exception(f"Cleanup function {fn} raised")

    def is_signal_received(self) -> bool:
        return self.signal_received
