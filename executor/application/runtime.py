"""Process wiring: clients, breaker, reconciler and scheduler."""
from __future__ import annotations

from dataclasses import dataclass

from executor.core.config import Settings
from executor.core.logging import get_logger
from executor.core.resilience import CircuitBreaker
from executor.infrastructure import ProviderClient, RegistryClient, SessionRegistry, TokenManager, WorkspaceProvider
from executor.workers.scheduler import PeriodicScheduler, PeriodicTask

from .reconciler import PASS_ACTIVE, PASS_INACTIVE, PASS_NEW, SessionReconciler
from .workspaces import WorkspaceCreationHandler

logger = get_logger("runtime")

TOKEN_REFRESH_TASK = "token_refresh"


@dataclass(slots=True)
class ExecutorRuntime:
    settings: Settings
    breaker: CircuitBreaker
    registry: SessionRegistry
    provider: WorkspaceProvider
    reconciler: SessionReconciler
    scheduler: PeriodicScheduler

    def start(self) -> None:
        if self.settings.scheduler_enabled:
            self.scheduler.start()
        else:
            logger.info("Scheduler disabled by configuration")

    def shutdown(self) -> None:
        self.scheduler.stop()
        self.registry.close()
        self.provider.close()


def build_scheduler(
    settings: Settings,
    reconciler: SessionReconciler,
    tokens: TokenManager | None = None,
) -> PeriodicScheduler:
    scheduler = PeriodicScheduler(max_workers=settings.scheduler_workers)
    scheduler.add(PeriodicTask(PASS_NEW, settings.new_session_interval, reconciler.reconcile_new_sessions))
    scheduler.add(PeriodicTask(PASS_ACTIVE, settings.active_session_interval, reconciler.reconcile_active_sessions))
    scheduler.add(
        PeriodicTask(PASS_INACTIVE, settings.inactive_session_interval, reconciler.reconcile_inactive_sessions)
    )
    if tokens is not None and tokens.can_refresh:
        scheduler.add(
            PeriodicTask(
                TOKEN_REFRESH_TASK,
                settings.token_refresh_interval,
                tokens.scheduled_refresh,
                initial_delay=settings.token_refresh_interval,
            )
        )
    return scheduler


def build_runtime(
    settings: Settings,
    *,
    registry: SessionRegistry | None = None,
    provider: WorkspaceProvider | None = None,
) -> ExecutorRuntime:
    breaker = CircuitBreaker(
        failure_threshold=settings.circuit_failure_threshold,
        reset_timeout=settings.circuit_reset_timeout,
        max_backoff=settings.max_backoff,
    )
    if registry is None:
        registry = RegistryClient(settings.registry_base_url, breaker=breaker, timeout=settings.http_timeout)
    if provider is None:
        provider = ProviderClient(
            settings.provider_base_url,
            token=settings.provider_token,
            timeout=settings.http_timeout,
        )

    handler = WorkspaceCreationHandler(
        provider,
        breaker,
        registry=registry,
        template_keyword=settings.template_keyword,
        mirror_records=settings.mirror_workspace_records,
    )
    reconciler = SessionReconciler(
        registry,
        provider,
        handler,
        breaker,
        confirm_with_registry=settings.mirror_workspace_records,
    )
    tokens = provider.tokens if isinstance(provider, ProviderClient) else None
    scheduler = build_scheduler(settings, reconciler, tokens)
    return ExecutorRuntime(
        settings=settings,
        breaker=breaker,
        registry=registry,
        provider=provider,
        reconciler=reconciler,
        scheduler=scheduler,
    )


_runtime: ExecutorRuntime | None = None


def configure_runtime(runtime: ExecutorRuntime) -> None:
    """Install the runtime used by the HTTP routes."""

    global _runtime
    _runtime = runtime


def ensure_runtime(settings: Settings) -> ExecutorRuntime:
    global _runtime
    if _runtime is None:
        _runtime = build_runtime(settings)
    return _runtime


def get_runtime() -> ExecutorRuntime:
    if _runtime is None:
        raise RuntimeError("executor runtime is not configured")
    return _runtime


def reset_runtime() -> None:
    """Drop the installed runtime (used in tests)."""

    global _runtime
    _runtime = None
