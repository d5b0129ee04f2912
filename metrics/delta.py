"""Cross-flush bookkeeping that turns cumulative counter reads into deltas"""
import threading
from typing import Dict
from .models import MetricIdentity


class CounterDeltaTracker:
    """Last reported cumulative value per incremental counter.

    ``record_and_delta`` must be called at most once per counter per flush;
    a second call in the same flush would report a zero delta. Entries live
    until ``forget`` is called for the counter.
    """

    def __init__(self):
        self._last_values: Dict[MetricIdentity, int] = {}
        self._lock = threading.Lock()

    def record_and_delta(self, identity: MetricIdentity, current_value: int) -> int:
        """Store current_value as the new baseline and return the change since the last one"""
        with self._lock:
            last_value = self._last_values.get(identity, 0)
            self._last_values[identity] = current_value
            return current_value - last_value

    def forget(self, identity: MetricIdentity) -> None:
        with self._lock:
            self._last_values.pop(identity, None)

    def __contains__(self, identity: MetricIdentity) -> bool:
        return identity in self._last_values

    def __len__(self) -> int:
        return len(self._last_values)
