from __future__ import annotations

from typing import Optional


class Talk2TaskError(Exception):
    """Base class for errors raised by the task pipeline."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(Talk2TaskError):
    """Caller-supplied input failed a precondition."""

    status_code = 400


class UpstreamError(Talk2TaskError):
    """The completion provider call failed or returned a non-success status."""

    status_code = 502

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message, details=body)
        self.upstream_status = upstream_status
        self.body = body

    @property
    def retryable(self) -> bool:
        # Transport failures carry no status.
        if self.upstream_status is None:
            return True
        return self.upstream_status == 429 or self.upstream_status >= 500


class ParseError(Talk2TaskError):
    """Raw model output was not a JSON object. Always recovered by the normalizer."""


class IntegrationError(Talk2TaskError):
    """A call to an external productivity tool failed."""

    AUTH_EXPIRED = "auth_expired"
    REMOTE_ERROR = "remote_error"
    NETWORK_ERROR = "network_error"

    def __init__(
        self,
        platform: str,
        kind: str,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.platform = platform
        self.kind = kind
        self.remote_status = status_code
        self.code = code


class NotFoundError(Talk2TaskError):
    status_code = 404


class UnauthorizedError(Talk2TaskError):
    status_code = 401
