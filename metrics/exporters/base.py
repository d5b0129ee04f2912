"""Receiver interface and the per-flush transport session"""
import abc
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional
from metrics.errors import ReporterError, SendErrorType, SendFailure
from metrics.models import DataPoint
from logging_config import get_logger


logger = get_logger(__name__)


@dataclass
class SendError:
    """Details of a failed send handed to error handlers"""
    error_type: SendErrorType
    message: str
    data_points: List[DataPoint] = field(default_factory=list)
    exception: Optional[BaseException] = None


OnSendErrorHandler = Callable[[SendError], None]


class LoggingErrorHandler:
    """Error handler that logs every failed send"""

    def __init__(self, name: str = __name__):
        self.logger = get_logger(name)

    def __call__(self, error: SendError) -> None:
        self.logger.error(
            "Failed to send data points",
            error_type=error.error_type.value,
            message=error.message,
            data_points=len(error.data_points),
            event_type="send_error"
        )


class DataPointReceiver(abc.ABC):
    """Abstract base class for anything that can deliver a batch of data points"""

    @abc.abstractmethod
    def send(self, auth_token: str, data_points: List[DataPoint]) -> None:
        """Deliver data points, raising SendFailure when they cannot be delivered"""
        pass

    def close(self) -> None:
        """Release network resources"""
        pass


class TransportSession:
    """Accumulates data points for one flush and sends them on close.

    Send failures are routed to the error handlers and never raised.
    """

    def __init__(self, receiver: DataPointReceiver, auth_token: str,
                 error_handlers: Iterable[OnSendErrorHandler]):
        self._receiver = receiver
        self._auth_token = auth_token
        self._error_handlers = list(error_handlers)
        self._data_points: List[DataPoint] = []
        self._closed = False
        self.errors = 0

    def __enter__(self) -> "TransportSession":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    @property
    def data_points(self) -> List[DataPoint]:
        return list(self._data_points)

    def add(self, data_point: DataPoint) -> None:
        if self._closed:
            raise ReporterError("Transport session is closed")
        if data_point.timestamp is None:
            data_point.timestamp = time.time()
        self._data_points.append(data_point)

    def close(self) -> None:
        """Send the accumulated batch"""
        if self._closed:
            raise ReporterError("Transport session is already closed")
        self._closed = True

        if not self._data_points:
            return

        try:
            self._receiver.send(self._auth_token, self._data_points)
            logger.debug("Sent data points", data_points=len(self._data_points), event_type="send")
        except SendFailure as e:
            self._notify(SendError(e.error_type, e.message, list(self._data_points), e.cause or e))
        except Exception as e:
            self._notify(SendError(SendErrorType.UNKNOWN, str(e), list(self._data_points), e))

    def _notify(self, error: SendError) -> None:
        self.errors += 1
        for handler in self._error_handlers:
            try:
                handler(error)
            except Exception as e:
                logger.error("Send error handler failed", handler=repr(handler), error=str(e),
                             event_type="error_handler_error", exc_info=True)


class AggregateMetricSender:
    """Opens transport sessions against a receiver"""

    def __init__(self, default_source_name: str, receiver: DataPointReceiver, auth_token: str,
                 error_handlers: Iterable[OnSendErrorHandler] = ()):
        self.default_source_name = default_source_name
        self.receiver = receiver
        self.auth_token = auth_token
        self.error_handlers = list(error_handlers)

    def create_session(self) -> TransportSession:
        return TransportSession(self.receiver, self.auth_token, self.error_handlers)

    def close(self) -> None:
        self.receiver.close()
