"""Error handling module for chaldeploy.

Defines error codes, exception classes, and response models.

Error Response Format:
{
    "error": {
        "code": "INSTANCE_NOT_FOUND",
        "message": "No instance for team T-100"
    }
}

Caller errors map to 4xx, transient cluster errors to 5xx.
"""

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Error codes for the deployer API."""

    INSTANCE_NOT_FOUND = "INSTANCE_NOT_FOUND"
    INSTANCE_DESTROYING = "INSTANCE_DESTROYING"
    CLUSTER_ERROR = "CLUSTER_ERROR"
    CLUSTER_TIMEOUT = "CLUSTER_TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorDetail(BaseModel):
    """Error detail containing code and message."""

    code: str
    message: str


class ErrorResponse(BaseModel):
    """Error response format."""

    error: ErrorDetail


class AgentError(Exception):
    """Base exception for chaldeploy.

    All deployer exceptions inherit from this class so FastAPI can render
    them in one place.

    Attributes:
        code: The error code from ErrorCode enum.
        message: Human-readable error message.
        status_code: HTTP status code to return.
    """

    def __init__(self, code: ErrorCode, message: str, status_code: int) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to ErrorResponse model."""
        return ErrorResponse(
            error=ErrorDetail(code=self.code.value, message=self.message)
        )


class InstanceNotFoundError(AgentError):
    """404 Not Found - Team never provisioned an instance."""

    def __init__(self, message: str = "Instance not found") -> None:
        super().__init__(ErrorCode.INSTANCE_NOT_FOUND, message, 404)


class InstanceDestroyingError(AgentError):
    """409 Conflict - Teardown has not finished, instance cannot be recreated yet."""

    def __init__(self, message: str = "Instance is being destroyed") -> None:
        super().__init__(ErrorCode.INSTANCE_DESTROYING, message, 409)


class ClusterError(AgentError):
    """502 Bad Gateway - Kubernetes API call failed."""

    def __init__(self, message: str = "Cluster operation failed") -> None:
        super().__init__(ErrorCode.CLUSTER_ERROR, message, 502)


class ClusterTimeoutError(AgentError):
    """504 Gateway Timeout - Kubernetes API call exceeded its deadline."""

    def __init__(self, message: str = "Cluster operation timed out") -> None:
        super().__init__(ErrorCode.CLUSTER_TIMEOUT, message, 504)


class InternalError(AgentError):
    """500 Internal Server Error - Internal error."""

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(ErrorCode.INTERNAL_ERROR, message, 500)
