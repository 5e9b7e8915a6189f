"""
Simulation State
=================
The live dials an operator turns while the server runs: how slow, how flaky,
and which view the dashboard is on. One instance per application is created at
startup and handed to every stage that needs it.
"""

import threading
from typing import Any, Dict, Optional

DELAY_STEP = 0.1
FAIL_STEP = 0.1


def _clamp(value: float, low: float, high: Optional[float] = None) -> float:
    value = max(low, value)
    if high is not None:
        value = min(high, value)
    return value


class SimulationState:
    """
    Process-wide simulation knobs.

    Writers (the admin routes) serialize on a lock; readers on the request path
    read the plain attributes without locking. Each knob is independent, so a
    reader seeing a new delay factor next to an old fail probability is fine.
    """

    def __init__(self, delay_factor: float = 1.0, fail_probability: float = 0.0, view_index: int = 0):
        self._lock = threading.Lock()
        self.delay_factor = _clamp(float(delay_factor), 0.0)
        self.fail_probability = _clamp(float(fail_probability), 0.0, 1.0)
        self.view_index = max(0, int(view_index))

    def set(self, delay_factor: Optional[float] = None, fail_probability: Optional[float] = None,
            view_index: Optional[int] = None) -> Dict[str, Any]:
        with self._lock:
            if delay_factor is not None:
                self.delay_factor = round(_clamp(float(delay_factor), 0.0), 2)
            if fail_probability is not None:
                self.fail_probability = round(_clamp(float(fail_probability), 0.0, 1.0), 2)
            if view_index is not None:
                self.view_index = max(0, int(view_index))
        return self.as_dict()

    def step_delay_factor(self, steps: int = 1) -> float:
        with self._lock:
            self.delay_factor = round(_clamp(self.delay_factor + steps * DELAY_STEP, 0.0), 2)
            return self.delay_factor

    def step_fail_probability(self, steps: int = 1) -> float:
        with self._lock:
            self.fail_probability = round(_clamp(self.fail_probability + steps * FAIL_STEP, 0.0, 1.0), 2)
            return self.fail_probability

    def step_view_index(self, steps: int = 1) -> int:
        with self._lock:
            self.view_index = max(0, self.view_index + steps)
            return self.view_index

    def as_dict(self) -> Dict[str, Any]:
        return {
            "view_index": self.view_index,
            "delay_factor": self.delay_factor,
            "fail_probability": self.fail_probability,
        }
