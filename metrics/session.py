"""Data point construction for a single flush"""
from typing import Dict, List, Union
from .delta import CounterDeltaTracker
from .details import DetailSelector, DetailValue
from .exporters.base import TransportSession
from .instruments import Counter, Gauge, Histogram, Meter, Timer
from .metadata import MetricMetadata
from .models import DataPoint, DataPointType, MetricDetails, MetricIdentity, MetricKind


class ReportingSession:
    """Turns metrics into data points on an open transport session.

    Lives for exactly one flush. Each metric must be added once: incremental
    counters advance the delta tracker baseline as a side effect.
    """

    def __init__(self, transport: TransportSession, selector: DetailSelector,
                 metadata: MetricMetadata, default_source_name: str,
                 tracker: CounterDeltaTracker):
        self.transport = transport
        self.selector = selector
        self.metadata = metadata
        self.default_source_name = default_source_name
        self.tracker = tracker
        self.data_points = 0

    def add_gauge(self, name: str, gauge: Gauge) -> None:
        identity = MetricIdentity(name, MetricKind.GAUGE)
        self._add(identity, name, DataPointType.GAUGE, gauge.value)

    def add_counter(self, name: str, counter: Counter) -> None:
        identity = MetricIdentity(name, MetricKind.COUNTER)
        if counter.is_incremental:
            delta = self.tracker.record_and_delta(identity, counter.count)
            self._add(identity, name, DataPointType.COUNTER, delta)
        else:
            self._add(identity, name, DataPointType.CUMULATIVE_COUNTER, counter.count)

    def add_histogram(self, name: str, histogram: Histogram) -> None:
        identity = MetricIdentity(name, MetricKind.HISTOGRAM)
        self._add_details(identity, name, self.selector.histogram_values(histogram))

    def add_meter(self, name: str, meter: Meter) -> None:
        identity = MetricIdentity(name, MetricKind.METER)
        self._add_details(identity, name, self.selector.meter_values(meter))

    def add_timer(self, name: str, timer: Timer) -> None:
        identity = MetricIdentity(name, MetricKind.TIMER)
        self._add_details(identity, name, self.selector.timer_values(timer))

    def close(self) -> None:
        self.transport.close()

    def _add_details(self, identity: MetricIdentity, name: str, values: List[DetailValue]) -> None:
        for detail, value in values:
            metric_type = (DataPointType.CUMULATIVE_COUNTER if detail is MetricDetails.COUNT
                           else DataPointType.GAUGE)
            self._add(identity, f"{name}.{detail.description}", metric_type, value)

    def _add(self, identity: MetricIdentity, metric: str, metric_type: DataPointType,
             value: Union[int, float]) -> None:
        self.transport.add(DataPoint(
            source=self._source_name(identity),
            metric=metric,
            metric_type=metric_type,
            value=value,
            dimensions=self._dimensions(identity),
        ))
        self.data_points += 1

    def _source_name(self, identity: MetricIdentity) -> str:
        return self.metadata.get_source_name(identity) or self.default_source_name

    def _dimensions(self, identity: MetricIdentity) -> Dict[str, str]:
        return self.metadata.get_dimensions(identity)
