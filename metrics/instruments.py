"""In-process metric instruments: gauges, counters, histograms, meters and timers"""
import math
import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

from .models import CounterMode, MetricKind

Clock = Callable[[], float]

DEFAULT_RESERVOIR_SIZE = 1028
TICK_INTERVAL = 5.0


class Metric:
    """Base class for all instruments"""

    kind: MetricKind = None


class Gauge(Metric):
    """Instantaneous value, either read from a callable or set directly"""

    kind = MetricKind.GAUGE

    def __init__(self, fn: Optional[Callable[[], float]] = None):
        self._fn = fn
        self._value = 0

    def set(self, value: float) -> None:
        self._value = value

    @property
    def value(self):
        if self._fn is not None:
            return self._fn()
        return self._value


class Counter(Metric):
    """Monotonic-by-convention count of events.

    The reporting mode is fixed at construction: INCREMENTAL counters are
    reported as the change since the previous flush, CUMULATIVE counters as
    their running total.
    """

    kind = MetricKind.COUNTER

    def __init__(self, mode: CounterMode = CounterMode.CUMULATIVE):
        self.mode = mode
        self._count = 0
        self._lock = threading.Lock()

    def inc(self, n: int = 1) -> None:
        with self._lock:
            self._count += n

    def dec(self, n: int = 1) -> None:
        with self._lock:
            self._count -= n

    @property
    def count(self) -> int:
        return self._count

    @property
    def is_incremental(self) -> bool:
        return self.mode is CounterMode.INCREMENTAL


class Snapshot:
    """Immutable statistical view over a set of samples"""

    def __init__(self, values: List[float]):
        self._values = sorted(values)

    def __len__(self) -> int:
        return len(self._values)

    @property
    def values(self) -> List[float]:
        return list(self._values)

    def get_value(self, quantile: float) -> float:
        """Interpolated quantile in [0, 1]"""
        if not 0.0 <= quantile <= 1.0:
            raise ValueError(f"{quantile} is not in [0..1]")
        if not self._values:
            return 0.0

        pos = quantile * (len(self._values) + 1)
        index = int(pos)
        if index < 1:
            return self._values[0]
        if index >= len(self._values):
            return self._values[-1]

        lower = self._values[index - 1]
        upper = self._values[index]
        return lower + (pos - math.floor(pos)) * (upper - lower)

    @property
    def median(self) -> float:
        return self.get_value(0.5)

    @property
    def p75(self) -> float:
        return self.get_value(0.75)

    @property
    def p95(self) -> float:
        return self.get_value(0.95)

    @property
    def p98(self) -> float:
        return self.get_value(0.98)

    @property
    def p99(self) -> float:
        return self.get_value(0.99)

    @property
    def p999(self) -> float:
        return self.get_value(0.999)

    @property
    def max(self) -> float:
        return self._values[-1] if self._values else 0

    @property
    def min(self) -> float:
        return self._values[0] if self._values else 0

    @property
    def mean(self) -> float:
        if not self._values:
            return 0.0
        return sum(self._values) / len(self._values)

    @property
    def std_dev(self) -> float:
        # Sample standard deviation
        if len(self._values) <= 1:
            return 0.0
        mean = self.mean
        variance = sum((v - mean) ** 2 for v in self._values) / (len(self._values) - 1)
        return math.sqrt(variance)


class Histogram(Metric):
    """Distribution of values over a sliding window of recent samples"""

    kind = MetricKind.HISTOGRAM

    def __init__(self, reservoir_size: int = DEFAULT_RESERVOIR_SIZE):
        self._samples = deque(maxlen=reservoir_size)
        self._count = 0
        self._lock = threading.Lock()

    def update(self, value: float) -> None:
        with self._lock:
            self._samples.append(value)
            self._count += 1

    @property
    def count(self) -> int:
        return self._count

    def get_snapshot(self) -> Snapshot:
        with self._lock:
            return Snapshot(list(self._samples))


class EWMA:
    """Exponentially-weighted moving average rate, ticked every five seconds"""

    def __init__(self, minutes: float, interval: float = TICK_INTERVAL):
        self.alpha = 1 - math.exp(-interval / 60.0 / minutes)
        self.interval = interval
        self._uncounted = 0
        self._rate = 0.0
        self._initialized = False

    def update(self, n: int) -> None:
        self._uncounted += n

    def tick(self) -> None:
        instant_rate = self._uncounted / self.interval
        self._uncounted = 0
        if self._initialized:
            self._rate += self.alpha * (instant_rate - self._rate)
        else:
            self._rate = instant_rate
            self._initialized = True

    @property
    def rate(self) -> float:
        """Rate per second"""
        return self._rate


class Meter(Metric):
    """Throughput of events with mean and 1/5/15 minute moving average rates"""

    kind = MetricKind.METER

    def __init__(self, clock: Clock = time.monotonic):
        self._clock = clock
        self._count = 0
        self._start_time = clock()
        self._last_tick = self._start_time
        self._m1 = EWMA(1)
        self._m5 = EWMA(5)
        self._m15 = EWMA(15)
        self._lock = threading.Lock()

    def mark(self, n: int = 1) -> None:
        with self._lock:
            self._tick_if_necessary()
            self._count += n
            self._m1.update(n)
            self._m5.update(n)
            self._m15.update(n)

    def _tick_if_necessary(self) -> None:
        now = self._clock()
        age = now - self._last_tick
        if age > TICK_INTERVAL:
            ticks = int(age // TICK_INTERVAL)
            self._last_tick += ticks * TICK_INTERVAL
            for _ in range(ticks):
                self._m1.tick()
                self._m5.tick()
                self._m15.tick()

    @property
    def count(self) -> int:
        return self._count

    @property
    def mean_rate(self) -> float:
        if self._count == 0:
            return 0.0
        elapsed = self._clock() - self._start_time
        if elapsed <= 0:
            return 0.0
        return self._count / elapsed

    @property
    def one_minute_rate(self) -> float:
        with self._lock:
            self._tick_if_necessary()
            return self._m1.rate

    @property
    def five_minute_rate(self) -> float:
        with self._lock:
            self._tick_if_necessary()
            return self._m5.rate

    @property
    def fifteen_minute_rate(self) -> float:
        with self._lock:
            self._tick_if_necessary()
            return self._m15.rate


class Timer(Metric):
    """Histogram of durations plus a meter of how often they are recorded.

    Durations are stored in nanoseconds; unit conversion happens when the
    timer is reported.
    """

    kind = MetricKind.TIMER

    def __init__(self, reservoir_size: int = DEFAULT_RESERVOIR_SIZE, clock: Clock = time.monotonic):
        self._histogram = Histogram(reservoir_size)
        self._meter = Meter(clock)

    def update(self, seconds: float) -> None:
        if seconds >= 0:
            self._histogram.update(seconds * 1e9)
            self._meter.mark()

    @contextmanager
    def time(self) -> Iterator[None]:
        """Time a block of code"""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.update(time.perf_counter() - start)

    @property
    def count(self) -> int:
        return self._histogram.count

    def get_snapshot(self) -> Snapshot:
        return self._histogram.get_snapshot()

    @property
    def mean_rate(self) -> float:
        return self._meter.mean_rate

    @property
    def one_minute_rate(self) -> float:
        return self._meter.one_minute_rate

    @property
    def five_minute_rate(self) -> float:
        return self._meter.five_minute_rate

    @property
    def fifteen_minute_rate(self) -> float:
        return self._meter.fifteen_minute_rate
