"""Integration with the remote workspace provider (Coder-style API v2)."""
from __future__ import annotations

import threading
from typing import Any, Protocol
from urllib.parse import urlparse

import httpx
from pydantic import ValidationError

from executor.core.errors import (
    ClientError,
    ConflictError,
    NotFoundError,
    RemoteCallError,
    ResponseFormatError,
    TokenRefreshError,
    UnauthorizedError,
)
from executor.core.logging import get_logger
from executor.core.schema import FALLBACK_TEMPLATES, Template, Workspace
from executor.domain import workspace_belongs_to_session

from .http import decode_json, send

logger = get_logger("provider")

TOKEN_HEADER = "Coder-Session-Token"
TOKEN_LIFETIME_SECONDS = 86400
MAX_WORKSPACE_PAGES = 50

# Tried in order; older deployments only expose the organisation route.
CREATE_WORKSPACE_PATHS = (
    "/users/me/workspaces",
    "/organizations/default/members/me/workspaces",
)


def _api_root(api_base: str) -> str:
    parsed = urlparse(api_base)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError("api_base must include scheme and host")
    return f"{api_base.rstrip('/')}/api/v2"


class TokenManager:
    """Holds the provider session token and refreshes it on demand."""

    def __init__(
        self,
        api_base: str,
        token: str | None,
        *,
        timeout: float = 30.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._refresh_url = f"{_api_root(api_base)}/users/me/tokens"
        self._configured = token
        self._cached: str | None = None
        self._lock = threading.Lock()
        self._client = http_client or httpx.Client(timeout=timeout)
        self._owns_client = http_client is None

    @property
    def token(self) -> str | None:
        return self._cached or self._configured

    @property
    def can_refresh(self) -> bool:
        return self.token is not None

    def headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self.token
        if token:
            headers[TOKEN_HEADER] = token
        return headers

    def refresh(self) -> str:
        """Exchange the current token for a fresh one. Raises ``TokenRefreshError``."""

        with self._lock:
            current = self.token
            if current is None:
                raise TokenRefreshError("no provider token configured; set EXECUTOR_PROVIDER_TOKEN")
            logger.info("Refreshing provider session token")
            operation = "refresh_token"
            try:
                response = send(
                    self._client,
                    "POST",
                    self._refresh_url,
                    operation=operation,
                    headers={TOKEN_HEADER: current, "Accept": "application/json"},
                    json={"lifetime": TOKEN_LIFETIME_SECONDS},
                )
                body = decode_json(response, operation)
            except RemoteCallError as exc:
                raise TokenRefreshError(f"token refresh failed: {exc}") from exc
            key = body.get("key") if isinstance(body, dict) else None
            if not isinstance(key, str) or not key:
                raise TokenRefreshError("token refresh response carried no key")
            self._cached = key
            logger.info("Provider session token refreshed")
            return key

    def scheduled_refresh(self) -> bool:
        """Periodic refresh; failures are logged so the schedule keeps running."""

        if self.token is None:
            logger.warning("No provider token configured, scheduled refresh skipped")
            return False
        try:
            self.refresh()
        except TokenRefreshError as exc:
            logger.error("Scheduled token refresh failed: %s", exc)
            return False
        return True

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


def _workspace_items(data: Any, operation: str) -> tuple[list[dict[str, Any]], int | None, str | None]:
    """Accept a bare list, a ``{"workspaces": [...]}`` wrapper or the paginated shape."""

    if data is None:
        return [], None, None
    if isinstance(data, list):
        return data, None, None
    if isinstance(data, dict):
        items = data.get("workspaces") or []
        if not isinstance(items, list):
            raise ResponseFormatError(f"{operation}: 'workspaces' is not a list", operation=operation)
        return items, data.get("count"), data.get("after_id")
    raise ResponseFormatError(f"{operation} returned {type(data).__name__}", operation=operation)


class WorkspaceProvider(Protocol):
    """Contract the reconciler and the creation handler rely on."""

    def list_workspaces_for_session(self, session_id: str) -> list[Workspace]: ...

    def create_or_get_workspace(self, name: str, template_id: str) -> Workspace: ...

    def start_workspace(self, workspace_id: str) -> None: ...

    def list_templates(self) -> list[Template]: ...

    def get_template(self, template_id: str) -> Template | None: ...

    def close(self) -> None: ...


class ProviderClient:
    """Workspace and template operations against the provider."""

    def __init__(
        self,
        api_base: str,
        *,
        token: str | None = None,
        token_manager: TokenManager | None = None,
        timeout: float = 30.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._api_root = _api_root(api_base)
        self._client = http_client or httpx.Client(timeout=timeout)
        self._owns_client = http_client is None
        self._tokens = token_manager or TokenManager(api_base, token, http_client=self._client)

    @property
    def tokens(self) -> TokenManager:
        return self._tokens

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _request(self, method: str, path: str, *, operation: str, **kwargs: Any) -> httpx.Response:
        url = f"{self._api_root}{path}"
        try:
            return send(self._client, method, url, operation=operation, headers=self._tokens.headers(), **kwargs)
        except UnauthorizedError as exc:
            logger.warning("Provider rejected token, refreshing once: operation=%s", operation)
            try:
                self._tokens.refresh()
            except TokenRefreshError as refresh_exc:
                logger.error("Token refresh unavailable: operation=%s error=%s", operation, refresh_exc)
                raise exc from refresh_exc
            return send(self._client, method, url, operation=operation, headers=self._tokens.headers(), **kwargs)

    @staticmethod
    def _to_workspace(payload: Any, operation: str) -> Workspace:
        if not isinstance(payload, dict):
            raise ResponseFormatError(f"{operation} returned {type(payload).__name__}", operation=operation)
        try:
            return Workspace.from_provider(payload)
        except (KeyError, ValidationError) as exc:
            raise ResponseFormatError(f"{operation} returned a malformed workspace: {exc}", operation=operation) from exc

    # ------------------------------------------------------------------
    # workspaces
    # ------------------------------------------------------------------
    def list_all_workspaces(self) -> list[Workspace]:
        operation = "list_workspaces"
        response = self._request("GET", "/workspaces", operation=operation)
        items, count, after_id = _workspace_items(decode_json(response, operation), operation)
        collected = list(items)

        pages = 1
        seen_cursors: set[str] = set()
        while after_id and count is not None and len(collected) < count and pages < MAX_WORKSPACE_PAGES:
            if after_id in seen_cursors:
                break
            seen_cursors.add(after_id)
            response = self._request("GET", "/workspaces", operation=operation, params={"after_id": after_id})
            items, count, after_id = _workspace_items(decode_json(response, operation), operation)
            if not items:
                break
            collected.extend(items)
            pages += 1

        workspaces = [self._to_workspace(item, operation) for item in collected]
        logger.debug("Fetched %d workspaces from provider", len(workspaces))
        return workspaces

    def list_workspaces_for_session(self, session_id: str) -> list[Workspace]:
        return [
            workspace
            for workspace in self.list_all_workspaces()
            if workspace_belongs_to_session(session_id, workspace.name, workspace.template_name)
        ]

    def get_workspace(self, workspace_id: str) -> Workspace | None:
        operation = "get_workspace"
        try:
            response = self._request("GET", f"/workspaces/{workspace_id}", operation=operation)
        except NotFoundError:
            logger.warning("Workspace not found: workspace_id=%s", workspace_id)
            return None
        return self._to_workspace(decode_json(response, operation), operation)

    def find_workspace_by_name(self, name: str) -> Workspace | None:
        workspaces = self.list_all_workspaces()
        for workspace in workspaces:
            if workspace.name == name:
                return workspace
        lowered = name.lower()
        for workspace in workspaces:
            if workspace.name.lower() == lowered:
                logger.warning("Matched workspace case-insensitively: wanted=%s found=%s", name, workspace.name)
                return workspace
        return None

    def create_workspace(self, name: str, template_id: str) -> Workspace:
        """Create a workspace. Raises ``ConflictError`` when the name is already taken."""

        operation = "create_workspace"
        payload = {"name": name, "template_id": template_id, "rich_parameter_values": []}
        *fallbacks, last_path = CREATE_WORKSPACE_PATHS
        for path in fallbacks:
            logger.info("Creating workspace: name=%s template_id=%s path=%s", name, template_id, path)
            try:
                response = self._request("POST", path, operation=operation, json=payload)
            except ClientError as exc:
                if not (isinstance(exc, NotFoundError) or exc.status_code == 405):
                    raise
                logger.warning("Create endpoint unavailable, trying next: path=%s status=%s", path, exc.status_code)
                continue
            return self._to_workspace(decode_json(response, operation), operation)

        logger.info("Creating workspace: name=%s template_id=%s path=%s", name, template_id, last_path)
        response = self._request("POST", last_path, operation=operation, json=payload)
        return self._to_workspace(decode_json(response, operation), operation)

    def create_or_get_workspace(self, name: str, template_id: str) -> Workspace:
        """Create a workspace, treating a name conflict as "already exists"."""

        try:
            return self.create_workspace(name, template_id)
        except ConflictError as exc:
            logger.warning("Workspace already exists, looking it up: name=%s", name)
            existing = self.find_workspace_by_name(name)
            if existing is None:
                logger.error("Conflict reported but workspace not listed: name=%s", name)
                raise exc
            logger.info("Using existing workspace: name=%s workspace_id=%s", existing.name, existing.id)
            return existing

    def _transition(self, workspace_id: str, transition: str) -> None:
        self._request(
            "POST",
            f"/workspaces/{workspace_id}/builds",
            operation=f"{transition}_workspace",
            json={"transition": transition},
        )

    def start_workspace(self, workspace_id: str) -> None:
        logger.info("Starting workspace: workspace_id=%s", workspace_id)
        self._transition(workspace_id, "start")

    def stop_workspace(self, workspace_id: str) -> None:
        logger.info("Stopping workspace: workspace_id=%s", workspace_id)
        self._transition(workspace_id, "stop")

    def delete_workspace(self, workspace_id: str) -> bool:
        logger.info("Deleting workspace: workspace_id=%s", workspace_id)
        try:
            self._request("DELETE", f"/workspaces/{workspace_id}", operation="delete_workspace")
        except NotFoundError:
            logger.warning("Workspace not found for deletion: workspace_id=%s", workspace_id)
            return False
        return True

    # ------------------------------------------------------------------
    # templates
    # ------------------------------------------------------------------
    def list_templates(self) -> list[Template]:
        """Provider templates, or the static catalogue when the provider is unavailable."""

        operation = "list_templates"
        try:
            response = self._request("GET", "/templates", operation=operation)
            data = decode_json(response, operation)
            if not isinstance(data, list):
                raise ResponseFormatError(f"{operation} did not return a list", operation=operation)
            templates = [Template.from_provider(item) for item in data]
        except (RemoteCallError, AttributeError, KeyError, ValidationError) as exc:
            logger.error("Failed to fetch templates, serving fallback catalogue: %s", exc)
            return list(FALLBACK_TEMPLATES)
        logger.debug("Fetched %d templates from provider", len(templates))
        return templates

    def get_template(self, template_id: str) -> Template | None:
        for template in self.list_templates():
            if template.id == template_id:
                return template
        return None

    def close(self) -> None:
        self._tokens.close()
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "ProviderClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["ProviderClient", "TokenManager", "WorkspaceProvider"]
