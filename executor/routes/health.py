from __future__ import annotations

from fastapi import APIRouter

from executor.application import get_runtime

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    runtime = get_runtime()
    return {"status": "ok", "scheduler": runtime.scheduler.running}
