# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Background lifecycle for graph writers."""

from __future__ import annotations

import threading
from typing import Optional

from .maintenance import BackgroundTaskManager


class WriterLifecycleMixin:
    """Mixin giving a writer counters and an optional periodic pass."""

    def __init__(self) -> None:
        self._task_manager: Optional[BackgroundTaskManager] = None
        if not hasattr(self, "_log"):
            self._log = {"passes": 0, "skipped": 0, "failures": 0}

    def log_status(self) -> dict:
        """Return a copy of internal counters."""
        return dict(self._log)

    @property
    def background_running(self) -> bool:
        return self._task_manager is not None and self._task_manager.running

    def start_background_tasks(self, interval: float = 1.0) -> None:
        """Start the periodic pass if not running."""
        if self._task_manager is None:
            self._task_manager = BackgroundTaskManager(
                self._background_tick, name=type(self).__name__
            )
        self._task_manager.start(interval)

    def stop_background_tasks(self) -> None:
        """Stop the periodic pass; re-raises a failure from the last tick."""
        if self._task_manager is None:
            return
        self._task_manager.stop()

    def _background_tick(self, event: threading.Event) -> None:
        """Run one periodic pass.

        Subclasses must implement.
        """
        raise NotImplementedError


__all__ = ["WriterLifecycleMixin"]
