"""Client for the session registry HTTP API."""
from __future__ import annotations

from typing import Any, Protocol, TypeVar
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, ValidationError

from executor.core.errors import NotFoundError, ResponseFormatError
from executor.core.logging import get_logger
from executor.core.resilience import CircuitBreaker
from executor.core.schema import (
    CreateWorkspaceRecordRequest,
    RegistryTemplate,
    RegistryWorkspace,
    Session,
)
from executor.domain import SessionStatus

from .http import decode_json, send

logger = get_logger("registry")

ModelT = TypeVar("ModelT", bound=BaseModel)

STATUS_UPDATE_ATTEMPTS = 3
CREATE_RECORD_ATTEMPTS = 2
START_RECORD_ATTEMPTS = 3


def _parse_list(data: Any, model: type[ModelT], operation: str) -> list[ModelT]:
    if data is None:
        return []
    if isinstance(data, dict):
        # Some registry versions wrap collections.
        data = data.get("items") or data.get("content") or []
    if not isinstance(data, list):
        raise ResponseFormatError(f"{operation} returned {type(data).__name__}, expected a list", operation=operation)
    try:
        return [model.model_validate(item) for item in data]
    except ValidationError as exc:
        raise ResponseFormatError(f"{operation} returned malformed items: {exc}", operation=operation) from exc


def _parse_one(data: Any, model: type[ModelT], operation: str) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ResponseFormatError(f"{operation} returned a malformed body: {exc}", operation=operation) from exc


class SessionRegistry(Protocol):
    """Contract the reconciler relies on."""

    def list_sessions_by_status(self, status: SessionStatus | str) -> list[Session]: ...

    def update_session_status_with_retry(self, session_id: str, status: SessionStatus | str) -> Session | None: ...

    def list_workspaces_for_session(self, session_id: str) -> list[RegistryWorkspace]: ...

    def create_workspace_record_with_retry(self, request: CreateWorkspaceRecordRequest) -> RegistryWorkspace: ...

    def close(self) -> None: ...


class RegistryClient:
    """Typed operations against the registry (sessions, workspace records, templates)."""

    def __init__(
        self,
        api_base: str,
        *,
        breaker: CircuitBreaker,
        timeout: float = 30.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        parsed = urlparse(api_base)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("api_base must include scheme and host")

        self._base_url = f"{api_base.rstrip('/')}/api/v1"
        self._breaker = breaker
        self._client = http_client or httpx.Client(timeout=timeout)
        self._owns_client = http_client is None

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    # ------------------------------------------------------------------
    # sessions
    # ------------------------------------------------------------------
    def list_sessions_by_status(self, status: SessionStatus | str) -> list[Session]:
        value = SessionStatus(status).value
        operation = f"list_sessions[{value}]"
        try:
            response = send(self._client, "GET", self._url(f"/sessions/status/{value}"), operation=operation)
        except NotFoundError:
            response = send(
                self._client,
                "GET",
                self._url("/sessions"),
                operation=operation,
                params={"status": value},
            )
        return _parse_list(decode_json(response, operation), Session, operation)

    def update_session_status(self, session_id: str, status: SessionStatus | str) -> Session | None:
        value = SessionStatus(status).value
        operation = "update_session_status"
        logger.info("Updating session status: session_id=%s status=%s", session_id, value)
        response = send(
            self._client,
            "PUT",
            self._url(f"/sessions/{session_id}/status"),
            operation=operation,
            json={"status": value},
        )
        try:
            data = decode_json(response, operation)
            return _parse_one(data, Session, operation) if data else None
        except ResponseFormatError as exc:
            # The transition was accepted; only the echoed body is unusable.
            logger.warning("Status updated but response unreadable: session_id=%s error=%s", session_id, exc)
            return None

    def update_session_status_with_retry(self, session_id: str, status: SessionStatus | str) -> Session | None:
        return self._breaker.execute_with_retry(
            f"update_session_status_{session_id}",
            STATUS_UPDATE_ATTEMPTS,
            lambda: self.update_session_status(session_id, status),
        )

    # ------------------------------------------------------------------
    # workspace records
    # ------------------------------------------------------------------
    def list_workspaces_for_session(self, session_id: str) -> list[RegistryWorkspace]:
        operation = "list_workspace_records"
        response = send(
            self._client,
            "GET",
            self._url("/workspaces"),
            operation=operation,
            params={"sessionId": session_id},
        )
        return _parse_list(decode_json(response, operation), RegistryWorkspace, operation)

    def create_workspace_record(self, request: CreateWorkspaceRecordRequest) -> RegistryWorkspace:
        operation = "create_workspace_record"
        logger.info("Registering workspace record: session_id=%s name=%s", request.session_id, request.name)
        response = send(
            self._client,
            "POST",
            self._url("/workspaces"),
            operation=operation,
            json=request.to_payload(),
        )
        return _parse_one(decode_json(response, operation), RegistryWorkspace, operation)

    def create_workspace_record_with_retry(self, request: CreateWorkspaceRecordRequest) -> RegistryWorkspace:
        return self._breaker.execute_with_retry(
            f"create_workspace_record_{request.session_id}",
            CREATE_RECORD_ATTEMPTS,
            lambda: self.create_workspace_record(request),
        )

    def start_workspace_record(self, workspace_id: str) -> None:
        logger.info("Starting workspace record: workspace_id=%s", workspace_id)
        send(
            self._client,
            "POST",
            self._url(f"/workspaces/{workspace_id}/start"),
            operation="start_workspace_record",
        )

    def start_workspace_record_with_retry(self, workspace_id: str) -> None:
        self._breaker.execute_with_retry(
            f"start_workspace_record_{workspace_id}",
            START_RECORD_ATTEMPTS,
            lambda: self.start_workspace_record(workspace_id),
        )

    # ------------------------------------------------------------------
    # templates
    # ------------------------------------------------------------------
    def get_first_available_template_id(self) -> str | None:
        operation = "list_registry_templates"
        response = send(self._client, "GET", self._url("/workspaces/templates"), operation=operation)
        templates = _parse_list(decode_json(response, operation), RegistryTemplate, operation)

        for template in templates:
            if template.is_default:
                logger.debug("Using default template: template_id=%s", template.id)
                return template.id
        if templates:
            logger.debug("Using first available template: template_id=%s", templates[0].id)
            return templates[0].id
        logger.warning("No templates available in registry")
        return None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "RegistryClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["RegistryClient", "SessionRegistry"]
