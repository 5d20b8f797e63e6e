"""Domain layer definitions."""

from .circuit import CircuitPhase, CircuitState
from .sessions import (
    SessionStatus,
    WorkspaceBucket,
    WorkspacePartition,
    classify_status,
    partition_workspaces,
    session_name_prefix,
    short_session_id,
    workspace_belongs_to_session,
    workspace_explicitly_owned,
)

__all__ = [
    "CircuitPhase",
    "CircuitState",
    "SessionStatus",
    "WorkspaceBucket",
    "WorkspacePartition",
    "classify_status",
    "partition_workspaces",
    "session_name_prefix",
    "short_session_id",
    "workspace_belongs_to_session",
    "workspace_explicitly_owned",
]
