"""Process-wide circuit breaker for the payment gateway.

Each gunicorn worker keeps its own breaker. After ``fail_threshold``
consecutive outages the breaker refuses calls for ``reset_timeout`` seconds,
then lets exactly one trial call through. The trial decides: an answer
closes the breaker, another outage refuses calls for a new period.
"""

import threading
import time

from .domain import UpstreamError

CLOSED = "CLOSED"
OPEN = "OPEN"
HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._mutex = threading.RLock()
        self._state = CLOSED
        self._streak = 0
        self._refusing_since = 0.0
        self._trial_running = False

    @property
    def state(self) -> str:
        with self._mutex:
            if self._state == OPEN and time.monotonic() - self._refusing_since >= self.reset_timeout:
                self._state = HALF_OPEN
                self._trial_running = False
            return self._state

    def _trip(self):
        self._state = OPEN
        self._refusing_since = time.monotonic()
        self._trial_running = False

    def before_call(self) -> str:
        """Admit a call or raise ``UpstreamError``; return the state it was admitted in."""
        with self._mutex:
            current = self.state
            if current == OPEN:
                raise UpstreamError("CIRCUIT_OPEN", detail=f"{self.name}: refusing calls")
            if current == HALF_OPEN:
                if self._trial_running:
                    raise UpstreamError("CIRCUIT_HALF_OPEN_BUSY", detail=f"{self.name}: trial call running")
                self._trial_running = True
            return current

    def on_success(self):
        with self._mutex:
            self._state = CLOSED
            self._streak = 0
            self._trial_running = False

    def on_failure(self):
        with self._mutex:
            self._streak += 1
            if self._state == HALF_OPEN:
                self._trip()
            elif self._state == CLOSED and self._streak >= self.fail_threshold:
                self._trip()

    def on_finish(self):
        with self._mutex:
            if self._state == HALF_OPEN:
                self._trial_running = False
