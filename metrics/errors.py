"""Exceptions raised by the metrics reporter"""
from enum import Enum
from typing import Optional


class SendErrorType(Enum):
    """Classification of a failed send"""
    AUTH_TOKEN_ERROR = "auth_token_error"
    CONNECTION_ERROR = "connection_error"
    REJECTED = "rejected"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class ReporterError(Exception):
    """Base class for reporter errors"""


class ConfigurationError(ReporterError):
    """Invalid reporter configuration"""


class SendFailure(ReporterError):
    """A receiver could not deliver a batch"""

    def __init__(self, error_type: SendErrorType, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.cause = cause
