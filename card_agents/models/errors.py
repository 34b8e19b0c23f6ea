"""Error models and exception classes for the card agents runtime."""

from enum import Enum


class ErrorType(str, Enum):
    """Error type enumeration."""

    TRANSPORT = "transport"
    NOT_FOUND = "not_found"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"


class CardAgentsException(Exception):
    """Base exception for the card agents runtime."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.INTERNAL,
        status_code: int = 500,
    ):
        self.message = message
        self.error_type = error_type
        self.status_code = status_code
        super().__init__(message)


class ClusterTransportError(CardAgentsException):
    """A cluster API call failed.

    Carries the HTTP status and raw response body. A status of 0 means no
    response arrived at all (connection refused, DNS, TLS or proxy failure).
    """

    def __init__(self, status_code: int, body: str = "", message: str | None = None):
        self.body = body
        if message is None:
            if status_code == 0:
                message = "Failed to fetch"
            else:
                detail = body.strip()[:200]
                message = f"Cluster API request failed with status {status_code}"
                if detail:
                    message += f": {detail}"
        super().__init__(
            message=message,
            error_type=ErrorType.NOT_FOUND if status_code in (404, 410) else ErrorType.TRANSPORT,
            status_code=status_code,
        )

    @property
    def is_network_error(self) -> bool:
        """Whether the request never produced an HTTP response."""
        return self.status_code == 0

    @property
    def is_gone(self) -> bool:
        """Whether the target resource no longer exists."""
        return self.status_code in (404, 410)


class ConfigurationError(CardAgentsException):
    """Cluster configuration is missing or unusable."""

    def __init__(self, message: str = "Cluster configuration is incomplete"):
        super().__init__(
            message=message,
            error_type=ErrorType.CONFIGURATION,
            status_code=400,
        )
