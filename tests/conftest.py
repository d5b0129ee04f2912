"""Shared test fixtures"""
import threading
from typing import List
import pytest

from config import Config
from metrics.errors import SendErrorType, SendFailure
from metrics.exporters.base import DataPointReceiver
from metrics.models import DataPoint
from metrics.registry import MetricRegistry
from metrics.reporter import build_reporter_config


class RecordingReceiver(DataPointReceiver):
    """Receiver that keeps every batch it is sent"""

    def __init__(self):
        self.batches: List[List[DataPoint]] = []
        self.tokens: List[str] = []
        self.sent = threading.Event()
        self.closed = False

    def send(self, auth_token, data_points):
        self.tokens.append(auth_token)
        self.batches.append(list(data_points))
        self.sent.set()

    def close(self):
        self.closed = True

    @property
    def last_batch(self) -> List[DataPoint]:
        return self.batches[-1]


class FailingReceiver(DataPointReceiver):
    """Receiver whose every send fails"""

    def __init__(self, error_type=SendErrorType.CONNECTION_ERROR):
        self.error_type = error_type
        self.attempts = 0

    def send(self, auth_token, data_points):
        self.attempts += 1
        raise SendFailure(self.error_type, "endpoint unreachable")


@pytest.fixture
def registry():
    return MetricRegistry()


@pytest.fixture
def receiver():
    return RecordingReceiver()


@pytest.fixture
def make_config():
    """Build a reporter config whose receiver is supplied by the test"""
    def _make(receiver, **overrides):
        overrides.setdefault("auth_token", "test-token")
        overrides.setdefault("default_source_name", "test-host")
        return build_reporter_config(Config(), receiver_factory=lambda config: receiver, **overrides)
    return _make
