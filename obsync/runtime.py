from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from threading import Lock
from typing import Any


def utc_now() -> str:
    return datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class LoopStatus:
    name: str
    phase: str = "idle"  # idle|building|applying
    cycles: int = 0
    consecutive_failures: int = 0
    last_success_at: str | None = None
    last_changed_at: str | None = None
    last_error: str | None = None


class RuntimeState:
    """In-memory status of the convergence loops, for the API."""

    def __init__(self) -> None:
        self.lock = Lock()
        self.loops: dict[str, LoopStatus] = {}

    def _status(self, name: str) -> LoopStatus:
        st = self.loops.get(name)
        if st is None:
            st = LoopStatus(name=name)
            self.loops[name] = st
        return st

    def set_phase(self, name: str, phase: str) -> None:
        with self.lock:
            self._status(name).phase = phase

    def record_success(self, name: str, changed: bool) -> int:
        """Close a successful cycle.

        Returns the number of consecutive failures that preceded it.
        """
        with self.lock:
            st = self._status(name)
            prev_failures = st.consecutive_failures
            st.phase = "idle"
            st.cycles += 1
            st.consecutive_failures = 0
            st.last_error = None
            st.last_success_at = utc_now()
            if changed:
                st.last_changed_at = st.last_success_at
            return prev_failures

    def record_failure(self, name: str, error: str) -> int:
        """Close a failed cycle. Returns the consecutive failure count."""
        with self.lock:
            st = self._status(name)
            st.phase = "idle"
            st.cycles += 1
            st.consecutive_failures += 1
            st.last_error = error
            return st.consecutive_failures

    def get(self, name: str) -> LoopStatus | None:
        with self.lock:
            st = self.loops.get(name)
            return LoopStatus(**asdict(st)) if st else None

    def snapshot(self) -> list[dict[str, Any]]:
        with self.lock:
            return [asdict(st) for st in self.loops.values()]
