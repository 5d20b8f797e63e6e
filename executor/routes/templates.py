from __future__ import annotations

import asyncio

from fastapi import APIRouter, HTTPException

from executor.application import get_runtime

router = APIRouter(prefix="/templates", tags=["templates"])


@router.get("")
async def list_templates() -> dict:
    provider = get_runtime().provider
    templates = await asyncio.to_thread(provider.list_templates)
    return {"items": [template.model_dump() for template in templates]}


@router.get("/{template_id}")
async def get_template(template_id: str) -> dict:
    provider = get_runtime().provider
    template = await asyncio.to_thread(provider.get_template, template_id)
    if template is None:
        raise HTTPException(status_code=404, detail="template not found")
    return template.model_dump()
