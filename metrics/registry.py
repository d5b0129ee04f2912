"""Metric registry owning named instruments and producing name-sorted snapshots"""
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
from .instruments import Counter, Gauge, Histogram, Meter, Metric, Timer
from .models import CounterMode, MetricIdentity, MetricKind
from logging_config import get_logger


logger = get_logger(__name__)

MetricFilter = Callable[[str, Metric], bool]
RemovalListener = Callable[[MetricIdentity], None]


def allow_all(name: str, metric: Metric) -> bool:
    """Filter matching every metric"""
    return True


@dataclass
class MetricSnapshot:
    """Point-in-time view of the registry, one name-sorted mapping per kind"""
    gauges: Dict[str, Gauge] = field(default_factory=dict)
    counters: Dict[str, Counter] = field(default_factory=dict)
    histograms: Dict[str, Histogram] = field(default_factory=dict)
    meters: Dict[str, Meter] = field(default_factory=dict)
    timers: Dict[str, Timer] = field(default_factory=dict)

    def __len__(self) -> int:
        return (len(self.gauges) + len(self.counters) + len(self.histograms)
                + len(self.meters) + len(self.timers))

    @classmethod
    def of(cls, metrics: Dict[str, Metric]) -> "MetricSnapshot":
        """Build a snapshot from an arbitrary name to metric mapping"""
        by_kind: Dict[MetricKind, Dict[str, Metric]] = {kind: {} for kind in MetricKind}
        for name in sorted(metrics):
            metric = metrics[name]
            by_kind[metric.kind][name] = metric
        return cls(
            gauges=by_kind[MetricKind.GAUGE],
            counters=by_kind[MetricKind.COUNTER],
            histograms=by_kind[MetricKind.HISTOGRAM],
            meters=by_kind[MetricKind.METER],
            timers=by_kind[MetricKind.TIMER],
        )


class MetricRegistry:
    """Central registry for all metric instruments"""

    def __init__(self):
        self._metrics: Dict[str, Metric] = {}
        self._removal_listeners: List[RemovalListener] = []
        self._lock = threading.Lock()

    def register(self, name: str, metric: Metric) -> Metric:
        """Register a new metric under a unique name"""
        if not isinstance(metric, Metric) or not isinstance(metric.kind, MetricKind):
            raise ValueError("Metric must inherit from a concrete Metric type")

        with self._lock:
            if name in self._metrics:
                raise ValueError(f"A metric named {name} already exists")
            self._metrics[name] = metric

        logger.debug("Registered metric", metric=name, kind=metric.kind.value)
        return metric

    def remove(self, name: str) -> bool:
        """Remove a metric, notifying removal listeners"""
        with self._lock:
            metric = self._metrics.pop(name, None)
            listeners = list(self._removal_listeners)

        if metric is None:
            return False

        identity = MetricIdentity(name, metric.kind)
        for listener in listeners:
            listener(identity)

        logger.debug("Removed metric", metric=name, kind=metric.kind.value)
        return True

    def add_removal_listener(self, listener: RemovalListener) -> None:
        with self._lock:
            self._removal_listeners.append(listener)

    def get(self, name: str) -> Optional[Metric]:
        """Get metric by name"""
        return self._metrics.get(name)

    def names(self) -> List[str]:
        """List all registered metric names, sorted"""
        with self._lock:
            return sorted(self._metrics)

    def gauge(self, name: str, fn: Optional[Callable[[], float]] = None) -> Gauge:
        return self._get_or_add(name, MetricKind.GAUGE, lambda: Gauge(fn))

    def counter(self, name: str) -> Counter:
        """Cumulative counter reported as its running total"""
        return self._get_or_add_counter(name, CounterMode.CUMULATIVE)

    def incremental_counter(self, name: str) -> Counter:
        """Counter reported as the change since the previous flush"""
        return self._get_or_add_counter(name, CounterMode.INCREMENTAL)

    def histogram(self, name: str) -> Histogram:
        return self._get_or_add(name, MetricKind.HISTOGRAM, Histogram)

    def meter(self, name: str) -> Meter:
        return self._get_or_add(name, MetricKind.METER, Meter)

    def timer(self, name: str) -> Timer:
        return self._get_or_add(name, MetricKind.TIMER, Timer)

    def _get_or_add_counter(self, name: str, mode: CounterMode) -> Counter:
        counter = self._get_or_add(name, MetricKind.COUNTER, lambda: Counter(mode))
        if counter.mode is not mode:
            raise ValueError(f"{name} is already registered as a {counter.mode.value} counter")
        return counter

    def _get_or_add(self, name: str, kind: MetricKind, factory: Callable[[], Metric]) -> Metric:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = factory()
                self._metrics[name] = metric
                logger.debug("Registered metric", metric=name, kind=kind.value)
                return metric

        if metric.kind is not kind:
            raise ValueError(f"{name} is already registered as a {metric.kind.value}")
        return metric

    def snapshot(self, metric_filter: MetricFilter = allow_all) -> MetricSnapshot:
        """Name-sorted view of every metric accepted by the filter"""
        with self._lock:
            metrics = dict(self._metrics)

        return MetricSnapshot.of({
            name: metric for name, metric in metrics.items()
            if metric_filter(name, metric)
        })
