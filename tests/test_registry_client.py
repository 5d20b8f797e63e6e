from __future__ import annotations

import json
import sys
from pathlib import Path

import httpx
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from executor.core.errors import ConflictError, ResponseFormatError, ServerError
from executor.core.resilience import CircuitBreaker
from executor.core.schema import CreateWorkspaceRecordRequest
from executor.domain import SessionStatus
from executor.infrastructure import RegistryClient


def _client(handler, breaker: CircuitBreaker | None = None) -> RegistryClient:
    transport = httpx.MockTransport(handler)
    return RegistryClient(
        "http://registry.local/",
        breaker=breaker or CircuitBreaker(sleep=lambda _: None),
        http_client=httpx.Client(transport=transport),
    )


def test_list_sessions_by_status_path():
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(
            200,
            json=[
                {"id": "s-1", "name": "alpha", "status": "PENDING", "tags": ["python"], "createdAt": "2024-05-01T10:00:00Z"},
                {"id": "s-2", "name": "beta", "status": "pending", "tags": None},
            ],
        )

    sessions = _client(handler).list_sessions_by_status(SessionStatus.PENDING)

    assert seen == ["http://registry.local/api/v1/sessions/status/PENDING"]
    assert [session.id for session in sessions] == ["s-1", "s-2"]
    assert sessions[0].tags == ["python"]
    assert sessions[0].created_at is not None
    assert sessions[1].status is SessionStatus.PENDING
    assert sessions[1].tags == []


def test_list_sessions_falls_back_to_query_route():
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        if request.url.path.endswith("/sessions/status/ACTIVE"):
            return httpx.Response(404)
        assert request.url.params["status"] == "ACTIVE"
        return httpx.Response(200, json={"content": [{"id": "s-9", "status": "ACTIVE"}]})

    sessions = _client(handler).list_sessions_by_status("ACTIVE")

    assert seen == ["/api/v1/sessions/status/ACTIVE", "/api/v1/sessions"]
    assert [session.id for session in sessions] == ["s-9"]


def test_list_sessions_rejects_unexpected_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json="nope")

    with pytest.raises(ResponseFormatError):
        _client(handler).list_sessions_by_status("PENDING")


def test_list_sessions_surfaces_server_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="maintenance")

    with pytest.raises(ServerError) as excinfo:
        _client(handler).list_sessions_by_status("PENDING")
    assert excinfo.value.status_code == 503
    assert "maintenance" in str(excinfo.value)


def test_update_session_status_sends_put():
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["method"] = request.method
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content.decode("utf-8"))
        return httpx.Response(200, json={"id": "s-1", "status": "ACTIVE"})

    session = _client(handler).update_session_status("s-1", SessionStatus.ACTIVE)

    assert captured == {"method": "PUT", "path": "/api/v1/sessions/s-1/status", "body": {"status": "ACTIVE"}}
    assert session is not None
    assert session.status is SessionStatus.ACTIVE


def test_update_with_retry_retries_server_errors():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(502)
        return httpx.Response(200, json={"id": "s-1", "status": "INACTIVE"})

    breaker = CircuitBreaker(sleep=lambda _: None)
    session = _client(handler, breaker).update_session_status_with_retry("s-1", "INACTIVE")

    assert calls["n"] == 3
    assert session.status is SessionStatus.INACTIVE
    assert breaker.state_of("update_session_status_s-1") is None


def test_create_workspace_record_uses_camel_case_payload():
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content.decode("utf-8"))
        return httpx.Response(201, json={"id": "rec-1", "name": "ws-a", "sessionId": "s-1", "status": "PENDING"})

    request = CreateWorkspaceRecordRequest(name="ws-a", session_id="s-1", template_id="t-1")
    record = _client(handler).create_workspace_record(request)

    assert captured["body"] == {
        "name": "ws-a",
        "sessionId": "s-1",
        "templateId": "t-1",
        "automaticUpdates": True,
        "ttlMs": 3600000,
    }
    assert record.session_id == "s-1"


def test_create_record_conflict_is_not_retried():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(409, json={"message": "exists"})

    request = CreateWorkspaceRecordRequest(name="ws-a", session_id="s-1")
    with pytest.raises(ConflictError):
        _client(handler).create_workspace_record_with_retry(request)
    assert calls["n"] == 1


def test_list_workspace_records_filters_by_session():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["sessionId"] == "s-1"
        return httpx.Response(200, json=[{"id": "rec-1", "name": "ws-a", "sessionId": "s-1", "status": "RUNNING"}])

    records = _client(handler).list_workspaces_for_session("s-1")
    assert [record.id for record in records] == ["rec-1"]


def test_start_workspace_record_posts_to_start_route():
    seen: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        return httpx.Response(204)

    _client(handler).start_workspace_record_with_retry("rec-1")
    assert seen == [("POST", "/api/v1/workspaces/rec-1/start")]


def test_first_available_template_prefers_default():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=[
                {"id": "t-1", "name": "plain"},
                {"id": "t-2", "name": "house", "isDefault": True},
            ],
        )

    assert _client(handler).get_first_available_template_id() == "t-2"


def test_first_available_template_empty_catalogue():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[])

    assert _client(handler).get_first_available_template_id() is None


def test_rejects_base_url_without_scheme():
    with pytest.raises(ValueError):
        RegistryClient("registry.local", breaker=CircuitBreaker())


def test_update_status_with_unreadable_body_still_succeeds():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(200, json={"id": "s-1", "status": "ARCHIVED"})

    breaker = CircuitBreaker(sleep=lambda _: None)
    client = _client(handler, breaker)

    assert client.update_session_status("s-1", SessionStatus.ACTIVE) is None
    assert client.update_session_status_with_retry("s-1", SessionStatus.ACTIVE) is None
    assert calls["n"] == 2
    assert breaker.state_of("update_session_status_s-1") is None
