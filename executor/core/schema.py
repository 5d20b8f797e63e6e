from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from executor.domain import SessionStatus


class _RegistryModel(BaseModel):
    """Registry payloads use camelCase keys."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Session(_RegistryModel):
    id: str
    name: str = ""
    status: SessionStatus
    tags: list[str] = Field(default_factory=list)
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    @field_validator("status", mode="before")
    @classmethod
    def _upper_status(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator("tags", mode="before")
    @classmethod
    def _none_tags(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def circuit_key(self) -> str:
        return f"session_{self.id}"


class RegistryWorkspace(_RegistryModel):
    id: str
    name: str = ""
    session_id: str = Field(default="", alias="sessionId")
    status: str = "unknown"
    coder_workspace_id: str | None = Field(default=None, alias="coderWorkspaceId")
    workspace_url: str | None = Field(default=None, alias="workspaceUrl")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")


class RegistryTemplate(_RegistryModel):
    id: str
    name: str = ""
    description: str | None = None
    version: str | None = None
    icon: str | None = None
    is_default: bool = Field(default=False, alias="isDefault")


class CreateWorkspaceRecordRequest(_RegistryModel):
    name: str
    session_id: str = Field(alias="sessionId")
    template_id: str | None = Field(default=None, alias="templateId")
    automatic_updates: bool = Field(default=True, alias="automaticUpdates")
    ttl_ms: int = Field(default=3_600_000, alias="ttlMs")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class Workspace(BaseModel):
    """A workspace as reported by the provider."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    status: str = "unknown"
    health: str = "unknown"
    template_id: str = ""
    template_name: str = ""
    template_display_name: str = ""
    owner_name: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_used_at: datetime | None = None

    @classmethod
    def from_provider(cls, payload: dict[str, Any]) -> "Workspace":
        build = payload.get("latest_build") or {}
        resources = build.get("resources") or []
        health = "unknown"
        if resources and isinstance(resources[0], dict):
            health = resources[0].get("health") or "unknown"
        template_name = payload.get("template_name") or ""
        return cls(
            id=str(payload["id"]),
            name=str(payload.get("name") or ""),
            status=build.get("status") or "unknown",
            health=health,
            template_id=payload.get("template_id") or "",
            template_name=template_name,
            template_display_name=payload.get("template_display_name") or template_name,
            owner_name=payload.get("owner_name") or "",
            created_at=payload.get("created_at"),
            updated_at=payload.get("updated_at"),
            last_used_at=payload.get("last_used_at"),
        )


class Template(BaseModel):
    """A provisioning template offered by the provider."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    display_name: str = ""
    description: str = ""
    icon: str = "/icon/default.svg"
    deprecated: bool = False
    default_ttl_ms: int = 3_600_000
    workspace_count: int = 0

    @classmethod
    def from_provider(cls, payload: dict[str, Any]) -> "Template":
        name = str(payload.get("name") or payload["id"])
        return cls(
            id=str(payload["id"]),
            name=name,
            display_name=payload.get("display_name") or name,
            description=payload.get("description") or "",
            icon=payload.get("icon") or "/icon/default.svg",
            deprecated=bool(payload.get("deprecated") or False),
            default_ttl_ms=payload.get("default_ttl_ms") or 3_600_000,
            workspace_count=payload.get("workspace_count") or 0,
        )


# Served when the provider cannot be reached for the template catalogue.
FALLBACK_TEMPLATES: tuple[Template, ...] = (
    Template(
        id="ubuntu-basic",
        name="ubuntu-basic",
        display_name="Ubuntu Basic",
        description="Basic Ubuntu workspace with essential development tools",
        icon="/icon/ubuntu.svg",
    ),
    Template(
        id="nodejs-dev",
        name="nodejs-dev",
        display_name="Node.js Development",
        description="Node.js development environment with VS Code",
        icon="/icon/nodejs.svg",
    ),
    Template(
        id="python-datascience",
        name="python-datascience",
        display_name="Python Data Science",
        description="Python environment with Jupyter, pandas, and ML libraries",
        icon="/icon/python.svg",
        default_ttl_ms=7_200_000,
    ),
    Template(
        id="keruta-ubuntu",
        name="keruta-ubuntu",
        display_name="Keruta Ubuntu",
        description="Ubuntu environment optimized for Keruta development tasks",
        icon="/icon/keruta.svg",
    ),
)
