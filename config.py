"""Environment configuration for the metrics reporter"""
import socket
from pathlib import Path
from typing import Dict, List, Set
from pydantic import Field, validator
from pydantic_settings import BaseSettings

from metrics.models import MetricDetails

# Seconds per unit
TIME_UNITS: Dict[str, float] = {
    "nanoseconds": 1e-9,
    "microseconds": 1e-6,
    "milliseconds": 1e-3,
    "seconds": 1.0,
    "minutes": 60.0,
    "hours": 3600.0,
    "days": 86400.0,
}

TRANSPORTS = ("http", "grpc")


class Config(BaseSettings):
    """Reporter settings read from the environment"""

    # Reporter identity
    reporter_name: str = Field(default="metrics-reporter", description="Reporter name")
    reporter_version: str = Field(default="1.0.0", description="Reporter version")

    # Transport settings
    auth_token: str = Field(default="", description="Ingest auth token")
    endpoint: str = Field(default="https://ingest.signalfx.com", description="Ingest endpoint")
    transport: str = Field(default="http", description="Transport: http or grpc")
    timeout_ms: int = Field(default=2000, ge=1, description="Per-send timeout in milliseconds")
    headers_str: str = Field(default="", description="Extra transport headers (key=value, comma-separated)")
    grpc_insecure: bool = Field(default=False, description="Use an insecure gRPC channel")

    # Reporting settings
    reporting_interval: int = Field(default=10, ge=1, description="Reporting interval in seconds")
    default_source_name: str = Field(default="", description="Override default source name")
    rate_unit: str = Field(default="seconds", description="Unit rates are reported per")
    duration_unit: str = Field(default="milliseconds", description="Unit durations are reported in")
    details_str: str = Field(default="", description="Reported details (comma-separated, empty for all)")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_file: Path = Field(default=Path("logs/reporter.log"), description="Log file")

    class Config:
        env_prefix = ""
        case_sensitive = False

    @validator('transport')
    def validate_transport(cls, v):
        v = v.strip().lower()
        if v not in TRANSPORTS:
            raise ValueError(f"TRANSPORT must be one of {', '.join(TRANSPORTS)}")
        return v

    @validator('rate_unit', 'duration_unit')
    def validate_time_unit(cls, v):
        v = v.strip().lower()
        if v not in TIME_UNITS:
            raise ValueError(f"Unknown time unit: {v}")
        return v

    @validator('details_str')
    def validate_details(cls, v):
        for name in _split(v):
            if name.upper() not in MetricDetails.__members__:
                raise ValueError(f"Unknown metric detail: {name}")
        return v

    @property
    def headers(self) -> Dict[str, str]:
        """Extra transport headers parsed from headers_str"""
        headers = {}
        for header in _split(self.headers_str):
            if '=' in header:
                key, value = header.split('=', 1)
                headers[key.strip()] = value.strip()
        return headers

    @property
    def details(self) -> Set[MetricDetails]:
        """Configured detail set; all details when none are listed"""
        names = _split(self.details_str)
        if not names:
            return set(MetricDetails.ALL)
        return {MetricDetails[name.upper()] for name in names}

    def get_default_source_name(self) -> str:
        """Configured source name, falling back to the hostname"""
        return self.default_source_name or socket.gethostname()


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()]
