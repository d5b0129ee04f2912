"""Tests for the metrics reporter flush cycle"""
import time
from unittest.mock import Mock
import pytest

from conftest import FailingReceiver
from metrics.delta import CounterDeltaTracker
from metrics.errors import SendErrorType
from metrics.exporters.base import AggregateMetricSender, SendError
from metrics.instruments import Histogram
from metrics.models import DataPointType, MetricDetails, MetricIdentity, MetricKind
from metrics.registry import MetricSnapshot
from metrics.reporter import MetricsReporter


class BrokenHistogram(Histogram):
    """Histogram whose statistics cannot be read"""

    def get_snapshot(self):
        raise RuntimeError("reservoir corrupted")


def summarize(batch):
    return [(p.metric, p.metric_type, p.value, p.dimensions, p.source) for p in batch]


class TestFlush:
    """Test data point construction for a single flush"""

    def test_kind_and_name_ordering(self, registry, receiver, make_config):
        """Test gauges, counters, histograms, meters and timers are emitted in order, name-sorted"""
        registry.timer("t")
        registry.meter("m")
        registry.histogram("h")
        registry.counter("c2")
        registry.counter("c1")
        registry.gauge("g2", lambda: 2)
        registry.gauge("g1", lambda: 1)

        config = make_config(receiver, details={MetricDetails.COUNT})
        MetricsReporter(registry, config).report()

        assert [p.metric for p in receiver.last_batch] == [
            "g1", "g2", "c1", "c2", "h.count", "m.count", "t.count"
        ]

    def test_gauge_data_point(self, registry, receiver, make_config):
        """Test gauges are reported with their current value"""
        registry.gauge("queue.size", lambda: 42)

        MetricsReporter(registry, make_config(receiver)).report()

        point = receiver.last_batch[0]
        assert point.metric == "queue.size"
        assert point.metric_type == DataPointType.GAUGE
        assert point.value == 42
        assert point.source == "test-host"

    def test_incremental_counter_deltas(self, registry, receiver, make_config):
        """Test incremental counters report the change since the previous flush"""
        counter = registry.incremental_counter("requests")
        reporter = MetricsReporter(registry, make_config(receiver))

        counter.inc(5)
        reporter.report()
        reporter.report()
        reporter.report()
        counter.inc(7)
        reporter.report()

        deltas = [batch[0].value for batch in receiver.batches]
        assert deltas == [5, 0, 0, 7]
        assert all(batch[0].metric_type == DataPointType.COUNTER for batch in receiver.batches)

    def test_incremental_counter_first_observation(self, registry, receiver, make_config):
        """Test a counter seen for the first time reports its full value"""
        reporter = MetricsReporter(registry, make_config(receiver))
        registry.incremental_counter("jobs").inc(9)

        reporter.report()

        assert receiver.last_batch[0].value == 9

    def test_cumulative_counter_passthrough(self, registry, receiver, make_config):
        """Test cumulative counters report their raw total every flush"""
        counter = registry.counter("bytes")
        reporter = MetricsReporter(registry, make_config(receiver))

        for increment in (3, 0, 7):
            counter.inc(increment)
            reporter.report()

        assert [batch[0].value for batch in receiver.batches] == [3, 3, 10]
        assert all(batch[0].metric_type == DataPointType.CUMULATIVE_COUNTER for batch in receiver.batches)

    def test_each_counter_visited_once_per_flush(self, registry, receiver, make_config):
        """Test the delta tracker is consulted exactly once per incremental counter"""
        registry.incremental_counter("a").inc(1)
        registry.incremental_counter("b").inc(2)
        registry.counter("c").inc(3)
        tracker = Mock(wraps=CounterDeltaTracker())

        reporter = MetricsReporter(registry, make_config(receiver), tracker=tracker)
        reporter.report()

        identities = [call.args[0] for call in tracker.record_and_delta.call_args_list]
        assert identities == [
            MetricIdentity("a", MetricKind.COUNTER),
            MetricIdentity("b", MetricKind.COUNTER),
        ]

    def test_detail_filtering(self, registry, receiver, make_config):
        """Test only configured details are emitted for a timer"""
        timer = registry.timer("latency")
        timer.update(0.25)
        config = make_config(receiver, details={MetricDetails.MEAN, MetricDetails.COUNT})

        MetricsReporter(registry, config).report()

        batch = receiver.last_batch
        assert [p.metric for p in batch] == ["latency.mean", "latency.count"]
        assert batch[0].metric_type == DataPointType.GAUGE
        assert batch[0].value == pytest.approx(250.0)
        assert batch[1].metric_type == DataPointType.CUMULATIVE_COUNTER
        assert batch[1].value == 1

    def test_empty_detail_set(self, registry, receiver, make_config):
        """Test an empty detail set emits nothing for sampled metrics"""
        registry.histogram("sizes").update(10)
        registry.gauge("g", lambda: 1)

        MetricsReporter(registry, make_config(receiver, details=set())).report()

        assert [p.metric for p in receiver.last_batch] == ["g"]

    def test_metadata_dimensions(self, registry, receiver, make_config):
        """Test metadata tags reach every data point derived from the metric"""
        registry.histogram("payload").update(3)
        config = make_config(receiver, details={MetricDetails.MAX, MetricDetails.COUNT})
        config.metadata.tag(MetricIdentity("payload", MetricKind.HISTOGRAM)) \
            .with_source_name("api-1") \
            .with_dimension("region", "eu")

        MetricsReporter(registry, config).report()

        for point in receiver.last_batch:
            assert point.source == "api-1"
            assert point.dimensions == {"region": "eu"}

    def test_ordering_determinism(self, registry, receiver, make_config):
        """Test identical snapshots produce identical batches"""
        registry.gauge("g", lambda: 1.5)
        registry.counter("c").inc(4)
        histogram = registry.histogram("h")
        for value in (1, 2, 3, 4):
            histogram.update(value)
        registry.timer("t").update(0.01)
        config = make_config(receiver, details=MetricDetails.SAMPLING | MetricDetails.COUNTING)
        reporter = MetricsReporter(registry, config)
        snapshot = registry.snapshot()

        reporter.flush(snapshot)
        reporter.flush(snapshot)

        assert summarize(receiver.batches[0]) == summarize(receiver.batches[1])

    def test_empty_snapshot_sends_nothing(self, registry, receiver, make_config):
        """Test a flush with no metrics does not call the receiver"""
        MetricsReporter(registry, make_config(receiver)).flush(MetricSnapshot())

        assert receiver.batches == []


class TestFailureHandling:
    """Test failure isolation and session release"""

    def setup_method(self):
        self.transport = Mock()
        self.transport.errors = 0
        self.sender = Mock(spec=AggregateMetricSender)
        self.sender.default_source_name = "test-host"
        self.sender.create_session.return_value = self.transport

    def test_session_released_when_construction_fails(self, registry, receiver, make_config):
        """Test the transport session is closed once and the error propagates"""
        registry.gauge("g", lambda: 1)
        registry.register("bad", BrokenHistogram())
        registry.histogram("later").update(1)
        reporter = MetricsReporter(registry, make_config(receiver), sender=self.sender)

        with pytest.raises(RuntimeError, match="reservoir corrupted"):
            reporter.report()

        self.transport.close.assert_called_once()
        metrics = [call.args[0].metric for call in self.transport.add.call_args_list]
        assert metrics == ["g"]

    def test_gauge_read_failure_propagates(self, registry, receiver, make_config):
        """Test a failing gauge aborts the flush after closing the session"""
        def broken():
            raise ValueError("sensor offline")

        registry.gauge("broken", broken)
        reporter = MetricsReporter(registry, make_config(receiver), sender=self.sender)

        with pytest.raises(ValueError):
            reporter.report()

        self.transport.close.assert_called_once()

    def test_close_failure_swallowed(self, registry, receiver, make_config):
        """Test errors raised while closing the session do not escape flush"""
        registry.gauge("g", lambda: 1)
        self.transport.close.side_effect = RuntimeError("socket already closed")
        reporter = MetricsReporter(registry, make_config(receiver), sender=self.sender)

        reporter.report()

        self.transport.close.assert_called_once()
        assert reporter.flush_count == 1

    def test_send_failure_routed_to_handlers(self, registry, make_config):
        """Test send failures reach every error handler once and are not raised"""
        registry.gauge("g", lambda: 1)
        registry.counter("c").inc()
        first, second = Mock(), Mock()
        failing = FailingReceiver(SendErrorType.TIMEOUT)
        config = make_config(failing, error_handlers=[first, second])

        MetricsReporter(registry, config).report()

        first.assert_called_once()
        second.assert_called_once()
        error = first.call_args.args[0]
        assert isinstance(error, SendError)
        assert error.error_type == SendErrorType.TIMEOUT
        assert [p.metric for p in error.data_points] == ["g", "c"]
        assert failing.attempts == 1

    def test_failed_flush_does_not_rewind_deltas(self, registry, make_config):
        """Test a failed send still advances the incremental baseline"""
        counter = registry.incremental_counter("requests")
        counter.inc(4)
        handler = Mock()
        reporter = MetricsReporter(registry, make_config(FailingReceiver(), error_handlers=[handler]))

        reporter.report()

        assert reporter.tracker.record_and_delta(MetricIdentity("requests", MetricKind.COUNTER), 4) == 0


class TestReporterLifecycle:
    """Test scheduling and tracker eviction"""

    def test_removed_counter_forgotten(self, registry, receiver, make_config):
        """Test removing a counter from the registry evicts its tracked baseline"""
        registry.incremental_counter("temp").inc(3)
        reporter = MetricsReporter(registry, make_config(receiver))
        reporter.report()
        identity = MetricIdentity("temp", MetricKind.COUNTER)
        assert identity in reporter.tracker

        registry.remove("temp")

        assert identity not in reporter.tracker
        assert len(reporter.tracker) == 0

    def test_stale_snapshot_does_not_leak_baseline(self, registry, receiver, make_config):
        """Test a counter re-registered after a stale flush reports its full value"""
        registry.incremental_counter("jobs").inc(100)
        reporter = MetricsReporter(registry, make_config(receiver))
        snapshot = registry.snapshot()
        registry.remove("jobs")

        reporter.flush(snapshot)
        assert summarize(receiver.last_batch)[0][2] == 100
        assert MetricIdentity("jobs", MetricKind.COUNTER) not in reporter.tracker

        registry.incremental_counter("jobs").inc(5)
        reporter.report()

        assert summarize(receiver.last_batch) == [
            ("jobs", DataPointType.COUNTER, 5, {}, "test-host"),
        ]

    def test_removed_metric_metadata_forgotten(self, registry, receiver, make_config):
        """Test removing a metric drops its metadata tags"""
        registry.gauge("temp", lambda: 1)
        config = make_config(receiver)
        identity = MetricIdentity("temp", MetricKind.GAUGE)
        config.metadata.tag(identity).with_dimension("region", "eu")
        MetricsReporter(registry, config)

        registry.remove("temp")

        assert config.metadata.get_dimensions(identity) == {}

    def test_scheduled_reporting(self, registry, receiver, make_config):
        """Test start reports periodically until stopped"""
        registry.gauge("g", lambda: 1)
        reporter = MetricsReporter(registry, make_config(receiver))

        reporter.start(0.01)
        try:
            assert receiver.sent.wait(timeout=5)
        finally:
            reporter.stop()

        flushes = reporter.flush_count
        time.sleep(0.05)
        assert reporter.flush_count == flushes
        assert flushes >= 1

    def test_scheduled_reporting_survives_errors(self, registry, receiver, make_config):
        """Test a failing flush does not stop the background thread"""
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first read fails")
            return 1

        registry.gauge("flaky", flaky)
        reporter = MetricsReporter(registry, make_config(receiver))

        reporter.start(0.01)
        try:
            assert receiver.sent.wait(timeout=5)
        finally:
            reporter.stop()

        assert len(calls) >= 2

    def test_start_twice_rejected(self, registry, receiver, make_config):
        """Test a reporter cannot be started twice"""
        reporter = MetricsReporter(registry, make_config(receiver))
        reporter.start(60)
        try:
            with pytest.raises(RuntimeError):
                reporter.start(60)
        finally:
            reporter.stop()

    def test_close_releases_receiver(self, registry, receiver, make_config):
        """Test closing the reporter closes the receiver"""
        with MetricsReporter(registry, make_config(receiver)):
            pass

        assert receiver.closed is True
