"""Periodic reporter that flushes registry snapshots to an ingest endpoint"""
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, FrozenSet, Optional, Tuple
from config import Config, TIME_UNITS, TRANSPORTS
from .delta import CounterDeltaTracker
from .details import DetailSelector
from .errors import ConfigurationError
from .exporters.base import AggregateMetricSender, DataPointReceiver, OnSendErrorHandler
from .exporters.otlp import OTLPEncoder
from .metadata import MetricMetadata
from .models import MetricDetails, MetricIdentity, MetricKind
from .registry import MetricFilter, MetricRegistry, MetricSnapshot, allow_all
from .session import ReportingSession
from logging_config import get_logger, log_error, log_flush


logger = get_logger(__name__)

ReceiverFactory = Callable[["ReporterConfig"], DataPointReceiver]


def default_receiver_factory(config: "ReporterConfig") -> DataPointReceiver:
    """Build the OTLP receiver selected by config.transport"""
    encoder = OTLPEncoder(config.name, config.version, config.resource_attributes)

    if config.transport == "grpc":
        from .exporters.grpc_receiver import GrpcDataPointReceiver
        return GrpcDataPointReceiver(config.endpoint, encoder, config.timeout_ms,
                                     headers=config.headers, insecure=config.grpc_insecure)

    from .exporters.http_receiver import HttpDataPointReceiver
    return HttpDataPointReceiver(config.endpoint, encoder, config.timeout_ms, headers=config.headers)


@dataclass(frozen=True)
class ReporterConfig:
    """Everything a MetricsReporter needs, fixed at construction"""
    default_source_name: str
    auth_token: str
    endpoint: str
    timeout_ms: int
    metric_filter: MetricFilter = allow_all
    rate_unit: str = "seconds"
    duration_unit: str = "milliseconds"
    details: FrozenSet[MetricDetails] = MetricDetails.ALL
    error_handlers: Tuple[OnSendErrorHandler, ...] = ()
    metadata: MetricMetadata = field(default_factory=MetricMetadata)
    name: str = "metrics-reporter"
    version: str = "1.0.0"
    transport: str = "http"
    headers: Dict[str, str] = field(default_factory=dict)
    grpc_insecure: bool = False
    receiver_factory: ReceiverFactory = default_receiver_factory

    @property
    def rate_unit_seconds(self) -> float:
        return TIME_UNITS[self.rate_unit]

    @property
    def duration_unit_seconds(self) -> float:
        return TIME_UNITS[self.duration_unit]

    @property
    def resource_attributes(self) -> Dict[str, str]:
        """OTLP resource attributes identifying this reporter"""
        return {
            "service.name": self.name,
            "service.version": self.version,
            "service.instance.id": self.default_source_name,
        }


def build_reporter_config(settings: Optional[Config] = None, **overrides) -> ReporterConfig:
    """Create a validated ReporterConfig from environment settings plus overrides.

    Any ReporterConfig field can be passed as a keyword argument and wins over
    the value derived from ``settings``.
    """
    settings = settings or Config()
    config = ReporterConfig(
        default_source_name=settings.get_default_source_name(),
        auth_token=settings.auth_token,
        endpoint=settings.endpoint,
        timeout_ms=settings.timeout_ms,
        rate_unit=settings.rate_unit,
        duration_unit=settings.duration_unit,
        details=frozenset(settings.details),
        name=settings.reporter_name,
        version=settings.reporter_version,
        transport=settings.transport,
        headers=settings.headers,
        grpc_insecure=settings.grpc_insecure,
    )

    unknown = set(overrides) - set(ReporterConfig.__dataclass_fields__)
    if unknown:
        raise ConfigurationError(f"Unknown reporter options: {', '.join(sorted(unknown))}")

    if "details" in overrides:
        overrides["details"] = frozenset(overrides["details"])
    if "error_handlers" in overrides:
        overrides["error_handlers"] = tuple(overrides["error_handlers"])

    config = replace(config, **overrides)
    _validate(config)
    return config


def _validate(config: ReporterConfig) -> None:
    if not config.auth_token:
        raise ConfigurationError("An auth token is required")
    if not config.endpoint:
        raise ConfigurationError("An endpoint is required")
    if not config.default_source_name:
        raise ConfigurationError("A default source name is required")
    if config.timeout_ms < 1:
        raise ConfigurationError(f"Timeout must be positive, got {config.timeout_ms}")
    for unit in (config.rate_unit, config.duration_unit):
        if unit not in TIME_UNITS:
            raise ConfigurationError(f"Unknown time unit: {unit}")
    if config.transport not in TRANSPORTS:
        raise ConfigurationError(f"Unknown transport: {config.transport}")
    if not all(isinstance(detail, MetricDetails) for detail in config.details):
        raise ConfigurationError("Details must be MetricDetails members")
    if not all(callable(handler) for handler in config.error_handlers):
        raise ConfigurationError("Error handlers must be callable")


class MetricsReporter:
    """Reports registry snapshots at a fixed interval.

    The counter delta tracker is the only state kept between flushes, so
    flushes never overlap: ``flush`` holds a lock for its whole duration.
    """

    def __init__(self, registry: MetricRegistry, config: ReporterConfig,
                 tracker: Optional[CounterDeltaTracker] = None,
                 sender: Optional[AggregateMetricSender] = None):
        self.registry = registry
        self.config = config
        self.tracker = tracker if tracker is not None else CounterDeltaTracker()
        self.sender = sender or AggregateMetricSender(
            config.default_source_name,
            config.receiver_factory(config),
            config.auth_token,
            config.error_handlers,
        )
        self.selector = DetailSelector(config.details, config.rate_unit_seconds,
                                       config.duration_unit_seconds)

        self.flush_count = 0
        self._flush_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        registry.add_removal_listener(self._on_metric_removed)

    @property
    def metric_metadata(self) -> MetricMetadata:
        return self.config.metadata

    def _on_metric_removed(self, identity: MetricIdentity) -> None:
        self.config.metadata.forget(identity)
        if identity.kind is MetricKind.COUNTER:
            self.tracker.forget(identity)

    def report(self) -> None:
        """Snapshot the registry and flush it"""
        self.flush(self.registry.snapshot(self.config.metric_filter))

    def flush(self, snapshot: MetricSnapshot) -> None:
        """Send one snapshot.

        Send failures go to the error handlers. An exception raised while
        reading a metric aborts the rest of the flush and propagates once the
        transport session has been closed. Incremental counters the registry
        no longer holds are reported but keep no baseline.
        """
        with self._flush_lock:
            start_time = time.time()
            session = ReportingSession(
                self.sender.create_session(),
                self.selector,
                self.config.metadata,
                self.sender.default_source_name,
                self.tracker,
            )
            try:
                self._add_snapshot(session, snapshot)
            finally:
                try:
                    session.close()
                except Exception as e:
                    # Send errors already reached the error handlers
                    logger.debug("Ignoring transport session close failure", error=str(e),
                                 event_type="session_close_error")

            self.flush_count += 1
            log_flush(logger, session.data_points, time.time() - start_time, session.transport.errors)

    def _add_snapshot(self, session: ReportingSession, snapshot: MetricSnapshot) -> None:
        for name, gauge in snapshot.gauges.items():
            session.add_gauge(name, gauge)
        for name, counter in snapshot.counters.items():
            session.add_counter(name, counter)
            if counter.is_incremental and self.registry.get(name) is not counter:
                # Removed after the snapshot was taken
                self.tracker.forget(MetricIdentity(name, MetricKind.COUNTER))
        for name, histogram in snapshot.histograms.items():
            session.add_histogram(name, histogram)
        for name, meter in snapshot.meters.items():
            session.add_meter(name, meter)
        for name, timer in snapshot.timers.items():
            session.add_timer(name, timer)

    def start(self, period_seconds: float) -> None:
        """Start reporting every period_seconds on a background thread"""
        if period_seconds <= 0:
            raise ValueError("Reporting period must be positive")
        if self._thread is not None:
            raise RuntimeError("Reporter already started")

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            args=(period_seconds,),
            name=f"{self.config.name}-reporter",
            daemon=True,
        )
        self._thread.start()
        logger.info("Reporter started", name=self.config.name, period_seconds=period_seconds,
                    event_type="reporter_start")

    def _run(self, period_seconds: float) -> None:
        while not self._stop_event.wait(period_seconds):
            try:
                self.report()
            except Exception as e:
                log_error(logger, e, {"component": "reporter", "phase": "scheduled_flush"})

    def stop(self) -> None:
        """Stop the background thread; no flush happens after this returns"""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
            logger.info("Reporter stopped", name=self.config.name, event_type="reporter_stop")

    def close(self) -> None:
        self.stop()
        self.sender.close()

    def __enter__(self) -> "MetricsReporter":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()
