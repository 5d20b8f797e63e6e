from __future__ import annotations

import asyncio

from fastapi import APIRouter, HTTPException

from executor.application import PASS_NAMES, get_runtime
from executor.application.reconciler import ALREADY_RUNNING

router = APIRouter(prefix="/reconciler", tags=["reconciler"])


@router.get("/passes")
async def list_pass_reports() -> dict:
    runtime = get_runtime()
    return {
        "scheduler_running": runtime.scheduler.running,
        "passes": runtime.reconciler.last_reports(),
    }


@router.post("/passes/{name}/run")
async def run_pass(name: str) -> dict:
    """Run one reconciliation pass now and return its report."""
    if name not in PASS_NAMES:
        raise HTTPException(status_code=404, detail=f"unknown pass: {name}")
    runtime = get_runtime()
    report = await asyncio.to_thread(runtime.reconciler.run_pass, name)
    if report.aborted == ALREADY_RUNNING:
        raise HTTPException(status_code=409, detail=f"pass already running: {name}")
    return report.to_dict()


@router.get("/circuits")
async def list_circuits() -> dict:
    runtime = get_runtime()
    return {"items": runtime.breaker.snapshot()}
