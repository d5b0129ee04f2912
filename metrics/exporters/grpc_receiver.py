"""OTLP/gRPC receiver using a blocking channel"""
from typing import Dict, List, Optional
import grpc
from opentelemetry.proto.collector.metrics.v1 import metrics_service_pb2_grpc
from .base import DataPointReceiver
from .otlp import OTLPEncoder
from metrics.errors import SendErrorType, SendFailure
from metrics.models import DataPoint
from logging_config import get_logger


logger = get_logger(__name__)

AUTH_METADATA_KEY = "x-sf-token"

_ERROR_TYPES = {
    grpc.StatusCode.UNAUTHENTICATED: SendErrorType.AUTH_TOKEN_ERROR,
    grpc.StatusCode.PERMISSION_DENIED: SendErrorType.AUTH_TOKEN_ERROR,
    grpc.StatusCode.DEADLINE_EXCEEDED: SendErrorType.TIMEOUT,
    grpc.StatusCode.UNAVAILABLE: SendErrorType.CONNECTION_ERROR,
}


class GrpcDataPointReceiver(DataPointReceiver):
    """Sends each batch as one OTLP Export call"""

    def __init__(self, endpoint: str, encoder: OTLPEncoder, timeout_ms: int,
                 headers: Optional[Dict[str, str]] = None, insecure: bool = False,
                 stub: Optional[metrics_service_pb2_grpc.MetricsServiceStub] = None):
        self.endpoint = endpoint
        self.encoder = encoder
        self.timeout = timeout_ms / 1000.0
        self.metadata = [(key.lower(), value) for key, value in (headers or {}).items()]
        self.channel = None

        if stub is None:
            if insecure:
                self.channel = grpc.insecure_channel(endpoint)
            else:
                self.channel = grpc.secure_channel(endpoint, grpc.ssl_channel_credentials())
            stub = metrics_service_pb2_grpc.MetricsServiceStub(self.channel)
        self.stub = stub

    def send(self, auth_token: str, data_points: List[DataPoint]) -> None:
        request = self.encoder.encode(data_points)
        metadata = self.metadata + [(AUTH_METADATA_KEY, auth_token)]

        try:
            response = self.stub.Export(request, timeout=self.timeout, metadata=metadata)
        except grpc.RpcError as e:
            code = e.code() if hasattr(e, 'code') else None
            details = e.details() if hasattr(e, 'details') else str(e)
            raise SendFailure(
                _ERROR_TYPES.get(code, SendErrorType.REJECTED),
                f"gRPC export to {self.endpoint} failed ({code.name if code else 'unknown'}): {details}",
                e
            )

        rejected = response.partial_success.rejected_data_points if response.HasField('partial_success') else 0
        if rejected:
            raise SendFailure(
                SendErrorType.REJECTED,
                f"{rejected} data points rejected by {self.endpoint}: {response.partial_success.error_message}"
            )

        logger.debug("Exported data points", endpoint=self.endpoint, data_points=len(data_points),
                     event_type="grpc_send")

    def close(self) -> None:
        if self.channel:
            self.channel.close()
