from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from executor.application import ensure_runtime, reset_runtime
from executor.core.config import Settings, get_settings
from executor.core.logging import configure_logging
from executor.routes import health, reconciler, templates


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        runtime = ensure_runtime(settings)
        runtime.start()
        try:
            yield
        finally:
            runtime.shutdown()
            reset_runtime()

    app = FastAPI(title="Session Executor", version="0.1.0", lifespan=lifespan)

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(health.router, prefix="/api")
    app.include_router(reconciler.router, prefix="/api")
    app.include_router(templates.router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "Session Executor",
                "docs": "/docs",
                "health": "/api/health",
            }
        )

    return app


app = create_app()
