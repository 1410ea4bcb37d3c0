"""Custom exception hierarchy for pyissuemap."""

from __future__ import annotations

from collections.abc import Mapping


class IssueMapError(Exception):
    """Base exception for all pyissuemap errors."""


class ConfigError(IssueMapError):
    """Invalid or missing configuration."""


class NetworkError(IssueMapError):
    """Transport-level failure (network, timeout, non-2xx, invalid JSON).

    Transient: callers surface it to the user and retry on user action.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class QueryError(NetworkError):
    """Backend rejected a request with an application-level error body."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.code = code
        super().__init__(message, status_code=status_code, endpoint=endpoint)


class ValidationError(IssueMapError):
    """Local input validation failure. Never reaches the network."""

    def __init__(self, message: str, *, errors: Mapping[str, str] | None = None) -> None:
        self.errors: dict[str, str] = dict(errors or {})
        super().__init__(message)


class AuthRequiredError(IssueMapError):
    """No signed-in user, or the backend rejected the credentials (401/403).

    Kept distinct from :class:`NetworkError` so a UI can prompt for
    sign-in instead of showing a generic failure.
    """


class ConflictError(IssueMapError):
    """Duplicate write (HTTP 409 / unique violation ``23505``).

    The vote path treats this as success: the end state is the same.
    """

    def __init__(self, message: str, *, endpoint: str = "") -> None:
        self.endpoint = endpoint
        super().__init__(message)
