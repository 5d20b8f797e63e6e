"""Session reconciliation passes.

Each pass pulls one status partition from the registry, inspects the
provider for every session in it and drives the session (and its
workspaces) towards a consistent state:

  new       PENDING sessions   -> ensure a workspace exists, mark ACTIVE
  inactive  INACTIVE sessions  -> reactivate when a workspace is running
  active    ACTIVE sessions    -> create, deactivate or recover workspaces

Nothing is cached between cycles; every pass re-reads the registry and the
provider. Failures are isolated per session through the ``session_<id>``
circuit.
"""
from __future__ import annotations

import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable

from executor.core.errors import ExecutorError
from executor.core.logging import get_logger
from executor.core.resilience import CircuitBreaker
from executor.core.schema import Session, Workspace
from executor.domain import SessionStatus, WorkspacePartition, partition_workspaces, workspace_explicitly_owned
from executor.infrastructure.provider import WorkspaceProvider
from executor.infrastructure.registry import SessionRegistry

from .workspaces import WorkspaceCreationHandler

logger = get_logger("reconciler")

PASS_NEW = "new"
PASS_ACTIVE = "active"
PASS_INACTIVE = "inactive"
PASS_NAMES = (PASS_NEW, PASS_ACTIVE, PASS_INACTIVE)

START_WORKSPACE_ATTEMPTS = 3
ALREADY_RUNNING = "already running"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class PassReport:
    """Outcome of one reconciliation cycle."""

    name: str
    started_at: str = field(default_factory=_now_iso)
    finished_at: str | None = None
    sessions: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    created: int = 0
    activated: int = 0
    deactivated: int = 0
    started: int = 0
    aborted: str | None = None

    def finish(self) -> "PassReport":
        self.finished_at = _now_iso()
        return self

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


class SessionReconciler:
    """Runs the new, active and inactive session passes."""

    def __init__(
        self,
        registry: SessionRegistry,
        provider: WorkspaceProvider,
        creation_handler: WorkspaceCreationHandler,
        breaker: CircuitBreaker,
        *,
        confirm_with_registry: bool = False,
    ) -> None:
        self._registry = registry
        self._provider = provider
        self._creation = creation_handler
        self._breaker = breaker
        self._confirm_with_registry = confirm_with_registry
        self._reports: dict[str, PassReport] = {}
        self._reports_lock = threading.Lock()
        self._pass_locks = {name: threading.Lock() for name in PASS_NAMES}

    # ------------------------------------------------------------------
    # pass entry points
    # ------------------------------------------------------------------
    def reconcile_new_sessions(self) -> PassReport:
        return self._run_pass(PASS_NEW, SessionStatus.PENDING, self._reconcile_new)

    def reconcile_active_sessions(self) -> PassReport:
        return self._run_pass(PASS_ACTIVE, SessionStatus.ACTIVE, self._reconcile_active)

    def reconcile_inactive_sessions(self) -> PassReport:
        return self._run_pass(PASS_INACTIVE, SessionStatus.INACTIVE, self._reconcile_inactive)

    def run_pass(self, name: str) -> PassReport:
        passes = {
            PASS_NEW: self.reconcile_new_sessions,
            PASS_ACTIVE: self.reconcile_active_sessions,
            PASS_INACTIVE: self.reconcile_inactive_sessions,
        }
        try:
            runner = passes[name]
        except KeyError:
            raise ValueError(f"unknown pass: {name}") from None
        return runner()

    def last_reports(self) -> dict[str, dict[str, object]]:
        with self._reports_lock:
            return {name: report.to_dict() for name, report in self._reports.items()}

    # ------------------------------------------------------------------
    # shared loop
    # ------------------------------------------------------------------
    def _run_pass(
        self,
        name: str,
        status: SessionStatus,
        handler: Callable[[Session, PassReport], None],
    ) -> PassReport:
        report = PassReport(name=name)
        lock = self._pass_locks[name]
        if not lock.acquire(blocking=False):
            logger.warning("Reconcile pass already running, not starting another: pass=%s", name)
            report.aborted = ALREADY_RUNNING
            return report.finish()
        try:
            return self._run_sessions(report, status, handler)
        finally:
            lock.release()
            self._breaker.prune()

    def _run_sessions(
        self,
        report: PassReport,
        status: SessionStatus,
        handler: Callable[[Session, PassReport], None],
    ) -> PassReport:
        name = report.name
        logger.debug("Reconcile pass started: pass=%s", name)
        try:
            sessions = self._registry.list_sessions_by_status(status)
        except Exception as exc:
            logger.error("Failed to list %s sessions, skipping cycle: %s", status.value, exc)
            report.aborted = str(exc)
            return self._store(report.finish())

        report.sessions = len(sessions)
        for session in sessions:
            key = session.circuit_key
            if self._breaker.is_open(key):
                logger.debug("Circuit open, skipping session: pass=%s session_id=%s", name, session.id)
                report.skipped += 1
                continue
            try:
                handler(session, report)
            except Exception as exc:
                self._breaker.record_failure(key)
                report.failed += 1
                logger.error(
                    "Failed to reconcile session: pass=%s session_id=%s error=%s",
                    name,
                    session.id,
                    exc,
                    exc_info=not isinstance(exc, ExecutorError),
                )
                continue
            self._breaker.record_success(key)
            report.processed += 1

        report.finish()
        if report.sessions:
            logger.info(
                "Reconcile pass finished: pass=%s sessions=%d processed=%d skipped=%d failed=%d",
                name,
                report.sessions,
                report.processed,
                report.skipped,
                report.failed,
            )
        return self._store(report)

    def _store(self, report: PassReport) -> PassReport:
        with self._reports_lock:
            self._reports[report.name] = report
        return report

    def _owned_workspaces(self, session: Session) -> list[Workspace]:
        """Workspaces of ``session``.

        With registry confirmation on, a workspace matched only by the short
        generated prefix is kept when the session's registry records name it.
        """

        workspaces = self._provider.list_workspaces_for_session(session.id)
        if not self._confirm_with_registry:
            return workspaces
        explicit = {
            ws.id for ws in workspaces if workspace_explicitly_owned(session.id, ws.name, ws.template_name)
        }
        if len(explicit) == len(workspaces):
            return workspaces

        records = self._registry.list_workspaces_for_session(session.id)
        names = {record.name for record in records}
        provider_ids = {record.coder_workspace_id for record in records if record.coder_workspace_id}
        owned: list[Workspace] = []
        for workspace in workspaces:
            if workspace.id in explicit or workspace.name in names or workspace.id in provider_ids:
                owned.append(workspace)
                continue
            logger.info(
                "Workspace matches session prefix but has no registry record, ignored: "
                "session_id=%s workspace_id=%s name=%s",
                session.id,
                workspace.id,
                workspace.name,
            )
        return owned

    def _partition(self, session: Session) -> tuple[list[Workspace], WorkspacePartition]:
        workspaces = self._owned_workspaces(session)
        partition = partition_workspaces(workspaces)
        for workspace in partition.unknown:
            logger.warning(
                "Workspace in unrecognised state, ignored this cycle: session_id=%s workspace_id=%s status=%s",
                session.id,
                workspace.id,
                workspace.status,
            )
        return workspaces, partition

    def _set_status(self, session: Session, status: SessionStatus) -> None:
        self._registry.update_session_status_with_retry(session.id, status)
        logger.info("Session status updated: session_id=%s %s -> %s", session.id, session.status.value, status.value)

    # ------------------------------------------------------------------
    # per-session decisions
    # ------------------------------------------------------------------
    def _reconcile_new(self, session: Session, report: PassReport) -> None:
        logger.info("Processing new session: session_id=%s", session.id)
        workspaces = self._owned_workspaces(session)
        if not workspaces:
            try:
                created = self._creation.create_workspace_for_session(session)
            except ExecutorError as exc:
                logger.error("Workspace creation failed for new session: session_id=%s error=%s", session.id, exc)
            else:
                if created is not None:
                    report.created += 1
        else:
            logger.debug("Workspace already exists for session: session_id=%s count=%d", session.id, len(workspaces))
        self._set_status(session, SessionStatus.ACTIVE)
        report.activated += 1

    def _reconcile_inactive(self, session: Session, report: PassReport) -> None:
        _, partition = self._partition(session)
        if partition.running:
            logger.info(
                "Running workspace found for inactive session, reactivating: session_id=%s running=%d",
                session.id,
                len(partition.running),
            )
            self._set_status(session, SessionStatus.ACTIVE)
            report.activated += 1

    def _reconcile_active(self, session: Session, report: PassReport) -> None:
        workspaces, partition = self._partition(session)
        if not workspaces:
            logger.info("Active session has no workspace, creating one: session_id=%s", session.id)
            if self._creation.create_workspace_for_session(session) is not None:
                report.created += 1
            return

        if partition.all_stopped:
            # Do not start anything in the same cycle as the INACTIVE transition.
            logger.info(
                "All workspaces stopped, deactivating session: session_id=%s stopped=%d",
                session.id,
                len(partition.stopped),
            )
            self._set_status(session, SessionStatus.INACTIVE)
            report.deactivated += 1
            return

        if partition.mixed:
            self._start_stopped(session, partition.stopped, report)

    def _start_stopped(self, session: Session, stopped: list[Workspace], report: PassReport) -> None:
        errors: list[ExecutorError] = []
        for workspace in stopped:
            logger.info(
                "Starting stopped workspace of active session: session_id=%s workspace_id=%s status=%s",
                session.id,
                workspace.id,
                workspace.status,
            )
            try:
                self._breaker.execute_with_retry(
                    f"start_workspace_{workspace.id}",
                    START_WORKSPACE_ATTEMPTS,
                    lambda workspace_id=workspace.id: self._provider.start_workspace(workspace_id),
                )
            except ExecutorError as exc:
                logger.error("Failed to start workspace: session_id=%s workspace_id=%s error=%s", session.id, workspace.id, exc)
                errors.append(exc)
                continue
            report.started += 1
        if errors:
            raise errors[-1]


__all__ = [
    "PASS_ACTIVE",
    "PASS_INACTIVE",
    "PASS_NAMES",
    "PASS_NEW",
    "PassReport",
    "SessionReconciler",
]
