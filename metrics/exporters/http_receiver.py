"""OTLP/HTTP receiver posting protobuf batches with httpx"""
from typing import Dict, List, Optional
import httpx
from .base import DataPointReceiver
from .otlp import OTLPEncoder
from metrics.errors import SendErrorType, SendFailure
from metrics.models import DataPoint
from logging_config import get_logger


logger = get_logger(__name__)

AUTH_HEADER = "X-SF-Token"
METRICS_PATH = "/v1/metrics"


class HttpDataPointReceiver(DataPointReceiver):
    """Sends each batch as one OTLP/HTTP protobuf request"""

    def __init__(self, endpoint: str, encoder: OTLPEncoder, timeout_ms: int,
                 headers: Optional[Dict[str, str]] = None,
                 client: Optional[httpx.Client] = None):
        self.url = endpoint.rstrip('/') + METRICS_PATH
        self.encoder = encoder
        self.headers = dict(headers or {})
        self.client = client or httpx.Client(timeout=timeout_ms / 1000.0)

    def send(self, auth_token: str, data_points: List[DataPoint]) -> None:
        request = self.encoder.encode(data_points)
        headers = {
            **self.headers,
            "Content-Type": "application/x-protobuf",
            AUTH_HEADER: auth_token,
        }

        try:
            response = self.client.post(self.url, content=request.SerializeToString(), headers=headers)
        except httpx.TimeoutException as e:
            raise SendFailure(SendErrorType.TIMEOUT, f"Timed out sending to {self.url}", e)
        except httpx.HTTPError as e:
            raise SendFailure(SendErrorType.CONNECTION_ERROR, f"Unable to reach {self.url}: {e}", e)

        if response.status_code in (401, 403):
            raise SendFailure(SendErrorType.AUTH_TOKEN_ERROR,
                              f"Auth token rejected by {self.url} ({response.status_code})")
        if not response.is_success:
            raise SendFailure(SendErrorType.REJECTED,
                              f"{self.url} returned {response.status_code}: {response.text[:200]}")

        logger.debug("Posted data points", url=self.url, data_points=len(data_points),
                     status_code=response.status_code, event_type="http_send")

    def close(self) -> None:
        self.client.close()
