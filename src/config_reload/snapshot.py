"""
Snapshot store.

Holds the process-wide ReloadState. The state is immutable and replaced
as a whole under a lock, so readers on any thread never see a partial
update.
"""

import threading
from dataclasses import dataclass, replace
from enum import Enum

from config_reload.merger import EffectiveSnapshot


class ReloadStrategy(str, Enum):
    REFRESH = "refresh"
    RESTART_CONTEXT = "restart_context"
    SHUTDOWN = "shutdown"


class ReloadMode(str, Enum):
    EVENT = "event"
    POLLING = "polling"


@dataclass(frozen=True)
class ReloadState:
    snapshot: EffectiveSnapshot
    strategy: ReloadStrategy
    mode: ReloadMode
    period: float


class SnapshotStore:
    """Atomic holder of the last-applied ReloadState."""

    def __init__(self):
        self._lock = threading.Lock()
        self._state: ReloadState | None = None

    @property
    def state(self) -> ReloadState | None:
        with self._lock:
            return self._state

    @property
    def snapshot(self) -> EffectiveSnapshot | None:
        state = self.state
        return state.snapshot if state is not None else None

    @property
    def initialized(self) -> bool:
        return self.state is not None

    def initialize(self, state: ReloadState) -> None:
        with self._lock:
            self._state = state

    def replace_snapshot(self, snapshot: EffectiveSnapshot) -> ReloadState:
        """Swap in a new snapshot, keeping strategy/mode/period."""
        with self._lock:
            if self._state is None:
                raise RuntimeError("Snapshot store is not initialized")
            self._state = replace(self._state, snapshot=snapshot)
            return self._state


__all__ = [
    "ReloadStrategy",
    "ReloadMode",
    "ReloadState",
    "SnapshotStore",
]
