from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from executor.core.resilience import CircuitBreaker
from executor.core.schema import CreateWorkspaceRecordRequest, RegistryWorkspace, Session, Template, Workspace
from executor.domain import SessionStatus, workspace_belongs_to_session


class FakeRegistry:
    """In-memory registry that records status transitions."""

    def __init__(self, sessions: list[Session] | None = None) -> None:
        self.sessions: dict[str, Session] = {session.id: session for session in sessions or []}
        self.updates: list[tuple[str, SessionStatus]] = []
        self.records: list[CreateWorkspaceRecordRequest] = []
        self.list_error: Exception | None = None
        self.update_errors: dict[str, Exception] = {}
        self.closed = False

    def add(self, session: Session) -> None:
        self.sessions[session.id] = session

    def list_sessions_by_status(self, status: SessionStatus | str) -> list[Session]:
        if self.list_error is not None:
            raise self.list_error
        wanted = SessionStatus(status)
        return [session for session in self.sessions.values() if session.status is wanted]

    def update_session_status_with_retry(self, session_id: str, status: SessionStatus | str) -> Session | None:
        if session_id in self.update_errors:
            raise self.update_errors[session_id]
        status = SessionStatus(status)
        self.updates.append((session_id, status))
        session = self.sessions[session_id].model_copy(update={"status": status})
        self.sessions[session_id] = session
        return session

    def create_workspace_record_with_retry(self, request: CreateWorkspaceRecordRequest) -> RegistryWorkspace:
        self.records.append(request)
        return RegistryWorkspace(id=f"rec-{len(self.records)}", name=request.name, sessionId=request.session_id)

    def list_workspaces_for_session(self, session_id: str) -> list[RegistryWorkspace]:
        return [
            RegistryWorkspace(id=f"rec-{index}", name=record.name, sessionId=record.session_id)
            for index, record in enumerate(self.records, start=1)
            if record.session_id == session_id
        ]

    def close(self) -> None:
        self.closed = True


class FakeProvider:
    """In-memory provider. Started workspaces move to ``starting``."""

    def __init__(self, workspaces: list[Workspace] | None = None, templates: list[Template] | None = None) -> None:
        self.workspaces: list[Workspace] = list(workspaces or [])
        self.templates: list[Template] = list(templates or [Template(id="t-keruta", name="keruta-ubuntu")])
        self.created: list[tuple[str, str]] = []
        self.started: list[str] = []
        self.create_error: Exception | None = None
        self.start_errors: dict[str, Exception] = {}
        self.list_errors: dict[str, Exception] = {}
        self.closed = False

    def list_workspaces_for_session(self, session_id: str) -> list[Workspace]:
        if session_id in self.list_errors:
            raise self.list_errors[session_id]
        return [ws for ws in self.workspaces if workspace_belongs_to_session(session_id, ws.name, ws.template_name)]

    def create_or_get_workspace(self, name: str, template_id: str) -> Workspace:
        if self.create_error is not None:
            raise self.create_error
        self.created.append((name, template_id))
        workspace = Workspace(id=f"w-{len(self.created)}", name=name, status="pending", template_id=template_id)
        self.workspaces.append(workspace)
        return workspace

    def start_workspace(self, workspace_id: str) -> None:
        if workspace_id in self.start_errors:
            raise self.start_errors[workspace_id]
        self.started.append(workspace_id)
        self.workspaces = [
            ws.model_copy(update={"status": "starting"}) if ws.id == workspace_id else ws for ws in self.workspaces
        ]

    def list_templates(self) -> list[Template]:
        return list(self.templates)

    def get_template(self, template_id: str) -> Template | None:
        return next((template for template in self.templates if template.id == template_id), None)

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def breaker() -> CircuitBreaker:
    return CircuitBreaker(sleep=lambda _: None)


@pytest.fixture()
def fake_registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture()
def fake_provider() -> FakeProvider:
    return FakeProvider()


