"""Error taxonomy shared by the registry and provider clients.

Retry eligibility is the ``retryable`` class attribute. Client errors fail
fast; server and network errors are retried.
"""
from __future__ import annotations


class ExecutorError(RuntimeError):
    """Base class for every error raised by the executor."""


class RemoteCallError(ExecutorError):
    """Raised when a call to the registry or the provider fails."""

    retryable = False

    def __init__(self, message: str, *, operation: str = "", status_code: int | None = None) -> None:
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code


class ClientError(RemoteCallError):
    """4xx response. Never retried."""


class UnauthorizedError(ClientError):
    """401 response; the provider client refreshes its token once."""


class NotFoundError(ClientError):
    """404 response."""


class ConflictError(ClientError):
    """409 response; on workspace creation it means the name is taken."""


class ServerError(RemoteCallError):
    """5xx response."""

    retryable = True


class NetworkError(RemoteCallError):
    """Connection failure or timeout before a response was received."""

    retryable = True


class ResponseFormatError(RemoteCallError):
    """The remote side answered with a body that could not be decoded."""


class CircuitOpenError(ExecutorError):
    """Raised locally when the circuit for a key rejects the call."""

    def __init__(self, key: str) -> None:
        super().__init__(f"circuit open for {key}")
        self.key = key


class TokenRefreshError(ExecutorError):
    """Raised when the provider token cannot be refreshed."""


__all__ = [
    "CircuitOpenError",
    "ClientError",
    "ConflictError",
    "ExecutorError",
    "NetworkError",
    "NotFoundError",
    "RemoteCallError",
    "ResponseFormatError",
    "ServerError",
    "TokenRefreshError",
    "UnauthorizedError",
]
