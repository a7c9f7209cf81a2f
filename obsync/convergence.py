from __future__ import annotations

from threading import Event, Lock, Thread

from . import db
from .alerts import notify_loop_transition
from .runtime import RuntimeState
from .settings import settings


class ConvergenceLoop:
    """Periodically computes desired state and applies it through a sink.

    Subclasses implement `converge()`, which returns True when something was
    applied. A cycle never overlaps another cycle of the same loop: `run_once`
    holds the loop lock for build, diff and apply.
    """

    name = "loop"

    def __init__(
        self,
        interval_s: float,
        runtime: RuntimeState | None = None,
        error_backoff_s: float | None = None,
    ):
        self.interval_s = max(0.0, float(interval_s))
        self.error_backoff_s = settings.error_backoff_s if error_backoff_s is None else float(error_backoff_s)
        self.runtime = runtime or RuntimeState()
        self._lock = Lock()
        self._step = "build"
        self._thr: Thread | None = None

    def start(self, stop: Event) -> Thread:
        if self._thr and self._thr.is_alive():
            return self._thr
        self._thr = Thread(target=self.run, args=(stop,), name=self.name, daemon=True)
        self._thr.start()
        return self._thr

    def next_interval(self) -> float:
        return self.interval_s

    def run(self, stop: Event) -> None:
        """Block until `stop` is set, converging once per tick.

        After a failed cycle the next wait is the error back-off instead of the
        normal interval.
        """
        db.log_event("INFO", f"{self.name} started", target=self.name, phase="start")
        failed = False
        while True:
            wait = self.error_backoff_s if failed else self.next_interval()
            if stop.wait(wait):
                break
            failed = not self.run_once()
        db.log_event("INFO", f"{self.name} stopped", target=self.name, phase="stop")

    def run_once(self) -> bool:
        """Run a single cycle. Returns False if it failed."""
        with self._lock:
            self._enter("build", "building")
            try:
                changed = self.converge()
            except Exception as e:
                failures = self.runtime.record_failure(self.name, f"{type(e).__name__}: {e}")
                db.log_event(
                    "ERROR",
                    f"Cycle failed during {self._step}: {type(e).__name__}: {e}",
                    target=self.name,
                    phase=self._step,
                )
                if failures == 1:
                    notify_loop_transition(self.name, ok=False, detail=f"{self._step}: {e}")
                return False
            prev_failures = self.runtime.record_success(self.name, changed)
            if prev_failures:
                db.log_event("INFO", f"Recovered after {prev_failures} failed cycles", target=self.name, phase=self._step)
                notify_loop_transition(self.name, ok=True, detail="Recovered")
            return True

    def _enter(self, step: str, phase: str | None = None) -> None:
        self._step = step
        if phase:
            self.runtime.set_phase(self.name, phase)

    def converge(self) -> bool:
        raise NotImplementedError
