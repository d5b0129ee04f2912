"""Metric kinds, reported details and data point models"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional


class MetricKind(Enum):
    """Kinds of in-process metrics, in reporting order"""
    GAUGE = "gauge"
    COUNTER = "counter"
    HISTOGRAM = "histogram"
    METER = "meter"
    TIMER = "timer"


class CounterMode(Enum):
    """How a counter is reported"""
    INCREMENTAL = "incremental"
    CUMULATIVE = "cumulative"


class DataPointType(Enum):
    """Wire metric types"""
    GAUGE = "gauge"
    COUNTER = "counter"
    CUMULATIVE_COUNTER = "cumulative_counter"


class MetricDetails(Enum):
    """Derived statistics that can be reported for sampling and metered metrics"""
    # Sampling
    MEDIAN = "median"
    PERCENT_75 = "75th"
    PERCENT_95 = "95th"
    PERCENT_98 = "98th"
    PERCENT_99 = "99th"
    PERCENT_999 = "999th"
    MAX = "max"
    MIN = "min"
    STD_DEV = "stddev"
    MEAN = "mean"

    # Counting
    COUNT = "count"

    # Metered
    RATE_MEAN = "rate.mean"
    RATE_1_MIN = "rate.1min"
    RATE_5_MIN = "rate.5min"
    RATE_15_MIN = "rate.15min"

    @property
    def description(self) -> str:
        return self.value


MetricDetails.ALL = frozenset(MetricDetails)
MetricDetails.SAMPLING = frozenset([
    MetricDetails.MEDIAN,
    MetricDetails.PERCENT_75,
    MetricDetails.PERCENT_95,
    MetricDetails.PERCENT_98,
    MetricDetails.PERCENT_99,
    MetricDetails.PERCENT_999,
    MetricDetails.MAX,
    MetricDetails.MIN,
    MetricDetails.STD_DEV,
    MetricDetails.MEAN,
])
MetricDetails.COUNTING = frozenset([MetricDetails.COUNT])
MetricDetails.METERED = frozenset([
    MetricDetails.RATE_MEAN,
    MetricDetails.RATE_1_MIN,
    MetricDetails.RATE_5_MIN,
    MetricDetails.RATE_15_MIN,
])

# Details each metric kind can produce
AVAILABLE_DETAILS: Dict[MetricKind, FrozenSet[MetricDetails]] = {
    MetricKind.HISTOGRAM: MetricDetails.SAMPLING | MetricDetails.COUNTING,
    MetricKind.METER: MetricDetails.METERED | MetricDetails.COUNTING,
    MetricKind.TIMER: MetricDetails.ALL,
}


@dataclass(frozen=True)
class MetricIdentity:
    """Stable identity of a registered metric"""
    name: str
    kind: MetricKind

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.name}"


@dataclass
class DataPoint:
    """Single data point destined for the wire"""
    source: str
    metric: str
    metric_type: DataPointType
    value: float
    dimensions: Dict[str, str] = field(default_factory=dict)
    timestamp: Optional[float] = None

    def __post_init__(self):
        # Ensure dimensions is never None
        if self.dimensions is None:
            self.dimensions = {}
