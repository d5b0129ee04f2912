"""Structured logging configuration for the metrics reporter"""
import logging
import os
import sys
from typing import Any, Dict
import structlog
from structlog.stdlib import LoggerFactory
from structlog.dev import ConsoleRenderer
from structlog.processors import JSONRenderer, TimeStamper, StackInfoRenderer
from config import Config


def setup_structured_logging(config: Config) -> None:
    """Setup structured logging with JSON format for production and console for development"""

    # Ensure log directory exists
    config.log_file.parent.mkdir(parents=True, exist_ok=True)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        TimeStamper(fmt="iso"),
        StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    # Use JSON renderer for production, console for development
    is_development = os.getenv("ENVIRONMENT", "production").lower() == "development"
    if is_development:
        processors.append(ConsoleRenderer())
    else:
        processors.append(JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, config.log_level.upper())

    file_handler = logging.FileHandler(str(config.log_file))
    file_handler.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[file_handler, console_handler],
        force=True,
    )

    # Transport libraries are noisy at debug level
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('grpc').setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance"""
    return structlog.get_logger(name)


def log_flush(logger: structlog.stdlib.BoundLogger, data_points: int, flush_time: float, errors: int = 0) -> None:
    """Log a completed flush with structured data"""
    logger.info(
        "Metrics flush completed",
        data_points=data_points,
        flush_time_seconds=round(flush_time, 3),
        errors=errors,
        event_type="metrics_flush"
    )


def log_reporter_startup(logger: structlog.stdlib.BoundLogger, config: Config) -> None:
    """Log reporter startup with configuration details"""
    logger.info(
        "Reporter starting up",
        reporter_name=config.reporter_name,
        reporter_version=config.reporter_version,
        endpoint=config.endpoint,
        transport=config.transport,
        reporting_interval=config.reporting_interval,
        timeout_ms=config.timeout_ms,
        details=sorted(detail.name for detail in config.details),
        event_type="reporter_startup"
    )


def log_error(logger: structlog.stdlib.BoundLogger, error: Exception, context: Dict[str, Any] = None) -> None:
    """Log error with structured context"""
    logger.error(
        "Error occurred",
        error=str(error),
        error_type=type(error).__name__,
        context=context or {},
        event_type="error",
        exc_info=True
    )
