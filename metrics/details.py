"""Selection of derived statistics reported for histograms, meters and timers"""
from typing import Callable, Dict, Iterable, List, Tuple
from .instruments import Histogram, Meter, Snapshot, Timer
from .models import AVAILABLE_DETAILS, MetricDetails, MetricKind

DetailValue = Tuple[MetricDetails, float]

_SAMPLING_READERS: Dict[MetricDetails, Callable[[Snapshot], float]] = {
    MetricDetails.MEDIAN: lambda s: s.median,
    MetricDetails.PERCENT_75: lambda s: s.p75,
    MetricDetails.PERCENT_95: lambda s: s.p95,
    MetricDetails.PERCENT_98: lambda s: s.p98,
    MetricDetails.PERCENT_99: lambda s: s.p99,
    MetricDetails.PERCENT_999: lambda s: s.p999,
    MetricDetails.MAX: lambda s: s.max,
    MetricDetails.MIN: lambda s: s.min,
    MetricDetails.STD_DEV: lambda s: s.std_dev,
    MetricDetails.MEAN: lambda s: s.mean,
}

_RATE_READERS: Dict[MetricDetails, Callable[[Meter], float]] = {
    MetricDetails.RATE_MEAN: lambda m: m.mean_rate,
    MetricDetails.RATE_1_MIN: lambda m: m.one_minute_rate,
    MetricDetails.RATE_5_MIN: lambda m: m.five_minute_rate,
    MetricDetails.RATE_15_MIN: lambda m: m.fifteen_minute_rate,
}


class DetailSelector:
    """Decides which (detail, value) pairs become data points.

    Selected details are the configured set intersected with what the metric
    kind can produce, always in MetricDetails declaration order. Timer
    durations are converted to ``duration_unit_seconds`` and rates are
    expressed per ``rate_unit_seconds``; histogram values pass through as
    recorded.
    """

    def __init__(self, details: Iterable[MetricDetails] = MetricDetails.ALL,
                 rate_unit_seconds: float = 1.0,
                 duration_unit_seconds: float = 1e-3):
        self.details = frozenset(details)
        self._rate_factor = rate_unit_seconds
        self._duration_factor = 1.0 / (duration_unit_seconds * 1e9)
        self._selected: Dict[MetricKind, List[MetricDetails]] = {
            kind: [detail for detail in MetricDetails if detail in self.details and detail in available]
            for kind, available in AVAILABLE_DETAILS.items()
        }

    def selected_for(self, kind: MetricKind) -> List[MetricDetails]:
        return list(self._selected.get(kind, ()))

    def histogram_values(self, histogram: Histogram) -> List[DetailValue]:
        return self._sampled(MetricKind.HISTOGRAM, histogram, 1.0)

    def meter_values(self, meter: Meter) -> List[DetailValue]:
        values = []
        for detail in self._selected[MetricKind.METER]:
            if detail is MetricDetails.COUNT:
                values.append((detail, meter.count))
            else:
                values.append((detail, _RATE_READERS[detail](meter) * self._rate_factor))
        return values

    def timer_values(self, timer: Timer) -> List[DetailValue]:
        return self._sampled(MetricKind.TIMER, timer, self._duration_factor)

    def _sampled(self, kind: MetricKind, metric, factor: float) -> List[DetailValue]:
        selected = self._selected[kind]
        if not selected:
            return []

        snapshot = None
        values = []
        for detail in selected:
            if detail is MetricDetails.COUNT:
                values.append((detail, metric.count))
            elif detail in _RATE_READERS:
                values.append((detail, _RATE_READERS[detail](metric) * self._rate_factor))
            else:
                if snapshot is None:
                    snapshot = metric.get_snapshot()
                values.append((detail, _SAMPLING_READERS[detail](snapshot) * factor))
        return values
