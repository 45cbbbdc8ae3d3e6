# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Periodic worker thread."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class BackgroundTaskManager:
    """Run ``tick`` at a fixed interval on a daemon thread.

    Summary
    -------
    ``tick`` receives the stop ``threading.Event`` so long passes can bail
    out early. An exception raised by ``tick`` ends the loop; it is kept in
    :attr:`error` and logged, and :meth:`stop` re-raises it in the caller.
    """

    def __init__(self, tick: Callable[[threading.Event], None], name: str = "dsg-worker") -> None:
        self._tick = tick
        self._name = name
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self.error: Optional[BaseException] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, interval: float) -> None:
        """Start the loop; a second call while running is a no-op."""
        if self._thread is not None:
            return
        if interval <= 0:
            raise ValueError("interval must be positive")
        stop_event = threading.Event()
        self.error = None

        def loop() -> None:
            while not stop_event.wait(interval):
                try:
                    self._tick(stop_event)
                except Exception as exc:  # surfaced again by stop()
                    logger.exception("Background task %s failed", self._name)
                    self.error = exc
                    return

        t = threading.Thread(target=loop, name=self._name, daemon=True)
        t.start()
        self._thread = t
        self._stop_event = stop_event

    def stop(self, timeout: float = 5.0) -> None:
        """Signal the loop, join it and re-raise a failure from ``tick``."""
        if self._thread is None:
            return
        assert self._stop_event is not None
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        self._thread = None
        self._stop_event = None
        if self.error is not None:
            error, self.error = self.error, None
            raise error


__all__ = ["BackgroundTaskManager"]
