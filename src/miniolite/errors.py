"""Error definitions for the miniolite client."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from miniolite.models import Result


class MinioLiteError(Exception):
    """Base error with a code, message, and optional HTTP status.

    Attributes:
        code: Short error code string (e.g. "ConfigurationError").
        message: Human-readable error description.
        http_status: The HTTP status code involved, if any.
        extra_fields: Additional diagnostic key-value pairs.
    """

    def __init__(
        self,
        code: str,
        message: str,
        http_status: int | None = None,
        extra_fields: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the error.

        Args:
            code: Error code.
            message: Error description.
            http_status: HTTP status code, when a response was received.
            extra_fields: Optional diagnostic fields.
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra_fields = extra_fields or {}


class ConfigurationError(MinioLiteError):
    """Missing or invalid credentials, endpoint, or other client settings."""

    def __init__(self, message: str = "Invalid client configuration.") -> None:
        super().__init__(code="ConfigurationError", message=message)


class TransportError(MinioLiteError):
    """The request never produced an HTTP response (connect, DNS, timeout)."""

    def __init__(self, message: str = "Transport failure.") -> None:
        super().__init__(code="TransportError", message=message)


class ProtocolError(MinioLiteError):
    """The service answered with a status other than the expected success code."""

    def __init__(
        self,
        status_code: int,
        message: str = "Unexpected response status.",
        body: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            code="ProtocolError",
            message=message,
            http_status=status_code,
            extra_fields=body or {},
        )
        self.body = body or {}


class CompositeOperationError(MinioLiteError):
    """A step of a multi-step operation failed; later steps were not run.

    Attributes:
        step: Name of the failing step.
        result: The envelope returned by the failing step.
    """

    def __init__(self, step: str, result: Result) -> None:
        super().__init__(
            code="CompositeOperationError",
            message=f"Step '{step}' failed: {result.message}",
            http_status=result.code,
            extra_fields={"step": step},
        )
        self.step = step
        self.result = result
