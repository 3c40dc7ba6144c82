"""Error kinds raised by the compiler and the tool proxy."""

from enum import Enum
from typing import Any


class ErrorType(str, Enum):
    INVALID_OPENAPI = "invalid_openapi"
    MISSING_TOOL = "missing_tool"
    PARAMETER_VALIDATION = "parameter_validation"
    AUTHENTICATION_FAILED = "authentication_failed"
    API_REQUEST_FAILED = "api_request_failed"
    NETWORK_ERROR = "network_error"


class ToolProxyError(Exception):
    """A handled failure, tagged with its ErrorType."""

    def __init__(self, type: ErrorType, message: str, details: Any = None):
        super().__init__(message)
        self.type = type
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        """Structured error object handed back to tool callers."""
        result = {"error": True, "type": self.type.value, "message": self.message}
        if self.details is not None:
            result["details"] = self.details
        return result
