"""Per-lemma resource limits and cooperative cancellation."""

from __future__ import annotations

import threading
import time


class BudgetExceeded(Exception):
    """Raised inside the search when a limit is hit."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class SearchBudget:
    """Step, wall-clock and open-system limits shared by the workers of one lemma.

    ``charge`` is called once per expansion step; it raises BudgetExceeded
    when a limit is hit or when another worker has requested cancellation.
    """

    def __init__(
        self,
        max_steps: int = 20000,
        max_seconds: float = 60.0,
        max_open: int = 5000,
    ) -> None:
        self.max_steps = max_steps
        self.max_seconds = max_seconds
        self.max_open = max_open
        self.cancel_event = threading.Event()
        self._lock = threading.Lock()
        self._steps = 0
        self._started: float | None = None

    def start(self) -> None:
        with self._lock:
            if self._started is None:
                self._started = time.monotonic()

    @property
    def steps(self) -> int:
        return self._steps

    def elapsed(self) -> float:
        if self._started is None:
            return 0.0
        return time.monotonic() - self._started

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def charge(self, open_systems: int = 0) -> None:
        if self.cancel_event.is_set():
            raise BudgetExceeded("cancelled")
        with self._lock:
            self._steps += 1
            steps = self._steps
        if steps > self.max_steps:
            raise BudgetExceeded(f"step limit {self.max_steps} reached")
        if open_systems > self.max_open:
            raise BudgetExceeded(f"open-system limit {self.max_open} reached")
        if self.elapsed() > self.max_seconds:
            raise BudgetExceeded(f"time limit {self.max_seconds}s reached")

    def fresh(self) -> "SearchBudget":
        """An unused budget with the same limits."""
        return SearchBudget(self.max_steps, self.max_seconds, self.max_open)
