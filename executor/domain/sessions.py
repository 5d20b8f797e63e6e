"""Domain rules for sessions and the workspaces that back them."""
from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import Iterable, Protocol


class SessionStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class WorkspaceBucket(str, enum.Enum):
    """Normalised view of the free-text status reported by the provider."""

    RUNNING = "running"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


RUNNING_STATUSES = frozenset({"running", "starting"})
STOPPED_STATUSES = frozenset({"stopped", "pending", "failed"})


def classify_status(status: str | None) -> WorkspaceBucket:
    normalised = (status or "").strip().lower()
    if normalised in RUNNING_STATUSES:
        return WorkspaceBucket.RUNNING
    if normalised in STOPPED_STATUSES:
        return WorkspaceBucket.STOPPED
    return WorkspaceBucket.UNKNOWN


class HasStatus(Protocol):
    id: str
    name: str
    status: str


@dataclass(slots=True)
class WorkspacePartition:
    """Workspaces of a single session grouped by bucket."""

    running: list = field(default_factory=list)
    stopped: list = field(default_factory=list)
    unknown: list = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.running or self.stopped or self.unknown)

    @property
    def all_stopped(self) -> bool:
        return not self.running and bool(self.stopped)

    @property
    def mixed(self) -> bool:
        return bool(self.running) and bool(self.stopped)


def partition_workspaces(workspaces: Iterable[HasStatus]) -> WorkspacePartition:
    partition = WorkspacePartition()
    for workspace in workspaces:
        bucket = classify_status(workspace.status)
        if bucket is WorkspaceBucket.RUNNING:
            partition.running.append(workspace)
        elif bucket is WorkspaceBucket.STOPPED:
            partition.stopped.append(workspace)
        else:
            partition.unknown.append(workspace)
    return partition


_NAME_UNSAFE = re.compile(r"[^a-z0-9_-]")


def short_session_id(session_id: str) -> str:
    """First 8 characters of the id, lowercased, restricted to name-safe characters."""

    return _NAME_UNSAFE.sub("", session_id[:8].lower()) or "session"


def session_name_prefix(session_id: str) -> str:
    """Prefix used by generated workspace names (``ws-<first 8 of id>-``)."""

    return f"ws-{short_session_id(session_id)}-"


def workspace_belongs_to_session(
    session_id: str,
    workspace_name: str,
    template_name: str | None = None,
) -> bool:
    """Recover the session that may own a provider workspace from its name.

    The provider has no foreign key back to the registry, so ownership is
    inferred: the full session id anywhere in the name, the legacy
    ``session-<id>`` prefix, or the prefix produced by the name generator.
    The generator prefix only carries 8 characters of the id and can match
    other sessions too; see ``workspace_explicitly_owned``.
    """

    if not session_id:
        return False
    if workspace_explicitly_owned(session_id, workspace_name, template_name):
        return True
    return workspace_name.lower().startswith(session_name_prefix(session_id))


def workspace_explicitly_owned(
    session_id: str,
    workspace_name: str,
    template_name: str | None = None,
) -> bool:
    """True when the name or template carries the full session id."""

    if not session_id:
        return False
    name = workspace_name.lower()
    sid = session_id.lower()
    if sid in name or name.startswith(f"session-{sid}"):
        return True
    return bool(template_name) and f"session-{sid}" in template_name.lower()
