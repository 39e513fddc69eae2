"""
Deadline handling.

The DeadlineWatcher reclaims the workspace shortly before the invocation's
hard deadline, whatever the main flow is doing at that moment. It cannot
interrupt an in-flight pull, build or push; it only deletes the directory
they are writing into.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from .context import InvocationContext
from .workspace import WorkspaceManager

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Deadline:
    absolute_time: datetime
    safety_margin: timedelta

    @classmethod
    def after(cls, seconds: float, safety_margin: float) -> "Deadline":
        """A deadline `seconds` from now."""
        return cls(utcnow() + timedelta(seconds=seconds), timedelta(seconds=safety_margin))

    @classmethod
    def from_epoch_ms(cls, epoch_ms: int, safety_margin: float) -> "Deadline":
        absolute = datetime.fromtimestamp(epoch_ms / 1000.0, tz=timezone.utc)
        return cls(absolute, timedelta(seconds=safety_margin))

    @property
    def trigger_time(self) -> datetime:
        return self.absolute_time - self.safety_margin

    def seconds_until_trigger(self, now: datetime = None) -> float:
        return (self.trigger_time - (now or utcnow())).total_seconds()


class WatcherState(Enum):
    ARMED = "armed"
    FIRED = "fired"
    CANCELLED = "cancelled"


class DeadlineWatcher:
    """
    Background timer: ARMED -> FIRED or ARMED -> CANCELLED, exactly once.

    Usage:
        watcher = DeadlineWatcher(deadline, workspace_manager, context)
        watcher.start()
        try:
            ...
        finally:
            watcher.cancel()
            watcher.join()
            workspace_manager.destroy()
    """

    def __init__(self, deadline: Deadline, workspace_manager: WorkspaceManager, context: InvocationContext = None):
        self.deadline = deadline
        self.workspace_manager = workspace_manager
        self.context = context or workspace_manager.context
        self.log = self.context.logger(logger)
        self._cancelled = threading.Event()
        self._state = WatcherState.ARMED
        self._state_lock = threading.Lock()
        self._thread = threading.Thread(
            target=self._run,
            name=f"deadline-watcher-{self.context.request_id}",
            daemon=True,
        )

    @property
    def state(self) -> WatcherState:
        return self._state

    def start(self) -> "DeadlineWatcher":
        self.log.debug(f"Deadline watcher armed, trigger at {self.deadline.trigger_time.isoformat()}")
        self._thread.start()
        return self

    def cancel(self) -> None:
        """Stand the watcher down. Safe to call more than once, and after it fired."""
        self._cancelled.set()

    def join(self, timeout: float = None) -> None:
        if self._thread.is_alive():
            self._thread.join(timeout)

    def _transition(self, state: WatcherState) -> bool:
        with self._state_lock:
            if self._state is not WatcherState.ARMED:
                return False
            self._state = state
            return True

    def _run(self) -> None:
        remaining = max(self.deadline.seconds_until_trigger(), 0.0)
        if self._cancelled.wait(timeout=remaining):
            self._transition(WatcherState.CANCELLED)
            self.log.debug("Deadline watcher cancelled")
            return

        if not self._transition(WatcherState.FIRED):
            return
        self.workspace_manager.destroy()
        self.log.critical(
            "Invocation timeout error: workspace reclaimed "
            f"{self.deadline.safety_margin.total_seconds():g}s before the invocation deadline"
        )
