"""Workspace creation for sessions that have none."""
from __future__ import annotations

import re
import time
from typing import Callable

from executor.core.errors import ExecutorError
from executor.core.logging import get_logger
from executor.core.resilience import CircuitBreaker
from executor.core.schema import CreateWorkspaceRecordRequest, Session, Workspace
from executor.domain import short_session_id
from executor.infrastructure.provider import WorkspaceProvider
from executor.infrastructure.registry import SessionRegistry

from .templates import DEFAULT_TEMPLATE_KEYWORD, select_best_template

logger = get_logger("workspaces")

CREATE_WORKSPACE_ATTEMPTS = 2
MAX_NAME_LENGTH = 32
WORKSPACE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9-_]{0,31}$")

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def generate_workspace_name(session_id: str, session_name: str, now_ms: int | None = None) -> str:
    """Build a provider-compliant name: ``ws-<id8>-<name10>-<time4>``.

    At most 3 + 8 + 1 + 10 + 1 + 4 = 27 characters, lowercase alphanumerics
    and hyphens, always starting with a letter.
    """

    if now_ms is None:
        now_ms = _now_ms()
    id_part = short_session_id(session_id)
    name_part = _NON_ALNUM.sub("", session_name.lower())[:10] or "session"
    suffix = f"{now_ms % 10000:04d}"
    return f"ws-{id_part}-{name_part}-{suffix}"


class WorkspaceCreationHandler:
    """Selects a template, creates the workspace and starts it."""

    def __init__(
        self,
        provider: WorkspaceProvider,
        breaker: CircuitBreaker,
        *,
        registry: SessionRegistry | None = None,
        template_keyword: str = DEFAULT_TEMPLATE_KEYWORD,
        mirror_records: bool = False,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self._provider = provider
        self._breaker = breaker
        self._template_keyword = template_keyword
        self._mirror_registry = registry if mirror_records else None
        self._clock_ms = clock_ms

    def create_workspace_for_session(self, session: Session) -> Workspace | None:
        """Create and start a workspace for ``session``.

        Returns None when no template is available. Creation errors
        propagate; a failed start is only logged since the active-session
        pass starts stopped workspaces later.
        """

        logger.info("Creating workspace for session: session_id=%s name=%s", session.id, session.name)
        templates = self._provider.list_templates()
        template = select_best_template(templates, session, keyword=self._template_keyword)
        if template is None:
            logger.error("No suitable template found: session_id=%s", session.id)
            return None

        name = generate_workspace_name(session.id, session.name, self._clock_ms())
        workspace = self._breaker.execute_with_retry(
            f"create_workspace_{session.id}",
            CREATE_WORKSPACE_ATTEMPTS,
            lambda: self._provider.create_or_get_workspace(name, template.id),
        )
        logger.info(
            "Workspace created: session_id=%s workspace_id=%s name=%s template_id=%s",
            session.id,
            workspace.id,
            workspace.name,
            template.id,
        )

        try:
            self._provider.start_workspace(workspace.id)
        except ExecutorError as exc:
            logger.warning(
                "Failed to start new workspace, will retry later: session_id=%s workspace_id=%s error=%s",
                session.id,
                workspace.id,
                exc,
            )
        else:
            logger.info("Started new workspace: session_id=%s workspace_id=%s", session.id, workspace.id)

        if self._mirror_registry is not None:
            self._mirror(self._mirror_registry, session, workspace, template.id)
        return workspace

    def _mirror(self, registry: SessionRegistry, session: Session, workspace: Workspace, template_id: str) -> None:
        request = CreateWorkspaceRecordRequest(
            name=workspace.name,
            session_id=session.id,
            template_id=template_id,
        )
        try:
            registry.create_workspace_record_with_retry(request)
        except ExecutorError as exc:
            logger.warning("Failed to register workspace record: session_id=%s error=%s", session.id, exc)
