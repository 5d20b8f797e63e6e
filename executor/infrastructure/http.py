"""Translate httpx outcomes into the executor's error taxonomy."""
from __future__ import annotations

from typing import Any

import httpx

from executor.core.errors import (
    ClientError,
    ConflictError,
    NetworkError,
    NotFoundError,
    RemoteCallError,
    ResponseFormatError,
    ServerError,
    UnauthorizedError,
)

_CLIENT_ERRORS: dict[int, type[ClientError]] = {
    401: UnauthorizedError,
    404: NotFoundError,
    409: ConflictError,
}


def error_for_response(response: httpx.Response, operation: str) -> RemoteCallError:
    status = response.status_code
    body = response.text[:200] if response.content else ""
    message = f"{operation} failed with HTTP {status}"
    if body:
        message = f"{message}: {body}"
    if status >= 500:
        return ServerError(message, operation=operation, status_code=status)
    error_cls = _CLIENT_ERRORS.get(status, ClientError)
    return error_cls(message, operation=operation, status_code=status)


def send(client: httpx.Client, method: str, url: str, *, operation: str, **kwargs: Any) -> httpx.Response:
    """Issue a request and raise a ``RemoteCallError`` for anything but 2xx/3xx."""

    try:
        response = client.request(method, url, **kwargs)
    except httpx.TransportError as exc:
        raise NetworkError(f"{operation} failed: {exc}", operation=operation) from exc
    if response.status_code >= 400:
        raise error_for_response(response, operation)
    return response


def decode_json(response: httpx.Response, operation: str) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        raise ResponseFormatError(
            f"{operation} returned a non-JSON body",
            operation=operation,
            status_code=response.status_code,
        ) from exc
