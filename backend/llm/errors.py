"""Typed failures raised by reasoning backend adapters.

Each error carries a ``reason`` string the controller copies verbatim into
its structured result, so callers can branch on the failure kind.
"""

from __future__ import annotations


class BackendError(Exception):
    """Generic reasoning backend failure."""

    reason: str = "backend_error"

    def __init__(self, message: str = "", *, status_code: int | None = None):
        super().__init__(message or self.reason)
        self.status_code = status_code


class BackendTimeoutError(BackendError):
    reason = "timeout"


class InvalidCredentialError(BackendError):
    reason = "invalid_credential"


class QuotaExceededError(BackendError):
    reason = "quota_exceeded"


class MalformedResponseError(BackendError):
    reason = "malformed_response"
