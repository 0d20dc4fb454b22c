"""InitService — create a new crmflow workspace on disk."""

from __future__ import annotations

import re
from pathlib import Path

from crmflow.config.discovery import CONFIG_FILENAME, load_config
from crmflow.config.models import ExecutionConfig
from crmflow.infrastructure.database.engine import DATA_DIR, DB_FILENAME, init_database
from crmflow.infrastructure.repositories.crm import CrmRepository
from crmflow.infrastructure.templates import build_template_environment
from crmflow.services.result import ErrorCode, ServiceResult
from crmflow.services.telemetry import traced

DEFAULT_STAGES = ("Lead", "Qualified", "Proposal", "Won", "Lost")

_ORG_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class InitService:
    """Workspace scaffolding. Stateless: there is no workspace yet."""

    @staticmethod
    @traced
    def init_workspace(
        path: Path,
        *,
        name: str,
        organization_id: str = "default",
        subaccount_id: str | None = None,
        sample_pipeline: bool = True,
    ) -> ServiceResult:
        """Write ``crmflow.toml``, create the database and a default pipeline."""
        op = "init_workspace"
        config_file = path / CONFIG_FILENAME
        if config_file.exists():
            return ServiceResult.failure(
                op,
                ErrorCode.CONFLICT,
                f"Workspace already initialized at {path}",
                detail={"path": str(config_file)},
            )
        if not _ORG_RE.match(organization_id):
            return ServiceResult.failure(
                op, ErrorCode.VALIDATION_ERROR, f"Invalid organization id: {organization_id!r}"
            )

        path.mkdir(parents=True, exist_ok=True)
        env = build_template_environment("workspace", workspace_root=path)
        config_file.write_text(
            env.get_template("crmflow.toml.j2").render(
                name=name,
                organization_id=organization_id,
                subaccount_id=subaccount_id,
                max_wait_seconds=ExecutionConfig().max_wait_seconds,
            ),
            encoding="utf-8",
        )
        # The tenant is taken from the rendered file, not the arguments.
        tenant = load_config(config_file).tenant
        files_created = [CONFIG_FILENAME, f"{DATA_DIR}/{DB_FILENAME}"]

        engine = init_database(path)
        pipeline_id: str | None = None
        try:
            if sample_pipeline:
                with engine.begin() as conn:
                    repo = CrmRepository(conn, tenant.organization_id, tenant.subaccount_id)
                    pipeline = repo.create_pipeline("Sales", list(DEFAULT_STAGES), is_default=True)
                pipeline_id = pipeline["id"]
        finally:
            engine.dispose()

        return ServiceResult(
            ok=True,
            op=op,
            data={
                "path": str(path),
                "name": name,
                "organization_id": organization_id,
                "pipeline_id": pipeline_id,
                "files_created": files_created,
            },
        )
