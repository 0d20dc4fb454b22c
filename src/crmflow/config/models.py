"""Pydantic configuration models with code-baked defaults.

Sparse TOML contract: defaults baked here, crmflow.toml only contains overrides.
A fresh workspace needs only [workspace] name and [tenant] organization_id.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

# --- crmflow.toml sections ---


class WorkspaceConfig(BaseModel):
    """[workspace] section."""

    model_config = {"frozen": True}

    name: str = "my-workspace"


class TenantConfig(BaseModel):
    """[tenant] section.

    Every workflow and CRM record is scoped to an organization; the
    subaccount narrows the scope further when set.
    """

    model_config = {"frozen": True}

    organization_id: str = "default"
    subaccount_id: str | None = None


class ExecutionConfig(BaseModel):
    """[execution] section."""

    model_config = {"frozen": True}

    max_steps: int = 1000
    max_loop_iterations: int = 500
    max_bundle_depth: int = 5
    max_trigger_depth: int = 3
    wait_enabled: bool = True
    max_wait_seconds: float = 60.0


class EventsConfig(BaseModel):
    """[events] section."""

    model_config = {"frozen": True}

    max_retries: int = 3
    max_workers: int = 2


class PluginsConfig(BaseModel):
    """[plugins] section."""

    model_config = {"frozen": True}

    status_log: dict[str, Any] = Field(
        default_factory=lambda: {"enabled": True, "path": "status.jsonl"}
    )


class CrmflowConfig(BaseModel):
    """Root configuration composing all sections."""

    model_config = {"frozen": True}

    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    tenant: TenantConfig = Field(default_factory=TenantConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    plugins: PluginsConfig = Field(default_factory=PluginsConfig)
