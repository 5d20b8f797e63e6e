"""Application services."""

from .reconciler import PASS_NAMES, PassReport, SessionReconciler
from .runtime import (
    ExecutorRuntime,
    build_runtime,
    configure_runtime,
    ensure_runtime,
    get_runtime,
    reset_runtime,
)
from .templates import select_best_template
from .workspaces import WorkspaceCreationHandler, generate_workspace_name

__all__ = [
    "PASS_NAMES",
    "ExecutorRuntime",
    "PassReport",
    "SessionReconciler",
    "WorkspaceCreationHandler",
    "build_runtime",
    "configure_runtime",
    "ensure_runtime",
    "generate_workspace_name",
    "get_runtime",
    "reset_runtime",
    "select_best_template",
]
