#!/usr/bin/env python3
"""Main entry point for the metrics reporter"""
import signal
import sys
import threading
import time
from config import Config
from metrics.exporters.base import LoggingErrorHandler
from metrics.registry import MetricRegistry
from metrics.reporter import MetricsReporter, build_reporter_config
from logging_config import setup_structured_logging, get_logger, log_reporter_startup, log_error


def create_reporter(config: Config, registry: MetricRegistry) -> MetricsReporter:
    """Build a reporter for the registry that logs failed sends"""
    reporter_config = build_reporter_config(
        config,
        error_handlers=[LoggingErrorHandler("metrics.send_errors")],
    )
    return MetricsReporter(registry, reporter_config)


def register_process_metrics(registry: MetricRegistry) -> None:
    """Gauges describing the reporting process itself"""
    start_time = time.time()
    registry.gauge("process.uptime", lambda: time.time() - start_time)
    registry.gauge("process.threads", threading.active_count)


def main():
    """Main application entry point"""
    try:
        config = Config()

        setup_structured_logging(config)
        logger = get_logger(__name__)
        log_reporter_startup(logger, config)

        registry = MetricRegistry()
        register_process_metrics(registry)
        reporter = create_reporter(config, registry)

        stop = threading.Event()
        signal.signal(signal.SIGINT, lambda signum, frame: stop.set())
        signal.signal(signal.SIGTERM, lambda signum, frame: stop.set())

        reporter.start(config.reporting_interval)
        stop.wait()

        reporter.close()
        logger.info("Reporter shutdown complete", event_type="reporter_shutdown")

    except Exception as e:
        logger = get_logger(__name__)
        log_error(logger, e, {"component": "main", "phase": "startup"})
        sys.exit(1)


if __name__ == '__main__':
    main()
