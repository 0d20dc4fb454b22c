"""Tests for BaseService and service inheritance."""

from __future__ import annotations

import pytest

from crmflow.infrastructure.workspace import Workspace
from crmflow.services.base import BaseService
from crmflow.services.context import ContextService
from crmflow.services.crm import ContactService, DealService, PipelineService
from crmflow.services.execution import ExecutionService
from crmflow.services.trigger import TriggerService
from crmflow.services.workflow import WorkflowService


class TestBaseService:
    def test_workspace_stored(self, workspace: Workspace) -> None:
        assert BaseService(workspace)._workspace is workspace

    def test_org_scope(self, workspace: Workspace) -> None:
        assert BaseService(workspace)._org == "default"

    def test_dispatch_without_bus_is_noop(self, workspace: Workspace) -> None:
        warnings: list[str] = []
        BaseService(workspace)._dispatch_event("post_execution", {}, warnings)
        assert warnings == []

    def test_dispatch_failure_becomes_warning(self, workspace: Workspace) -> None:
        class _BrokenBus:
            def dispatch(self, *args: object, **kwargs: object) -> int:
                raise RuntimeError("disk full")

        workspace._event_bus = _BrokenBus()
        warnings: list[str] = []
        BaseService(workspace)._dispatch_event("post_execution", {}, warnings)
        workspace._event_bus = None
        assert warnings == ["Event dispatch failed for post_execution"]


ALL_SERVICES = [
    WorkflowService,
    ExecutionService,
    TriggerService,
    ContextService,
    ContactService,
    DealService,
    PipelineService,
]


class TestServiceInheritance:
    @pytest.mark.parametrize("service_cls", ALL_SERVICES, ids=lambda c: c.__name__)
    def test_inherits_base_service(self, service_cls: type) -> None:
        assert issubclass(service_cls, BaseService)

    @pytest.mark.parametrize("service_cls", ALL_SERVICES, ids=lambda c: c.__name__)
    def test_workspace_injection(self, service_cls: type, workspace: Workspace) -> None:
        assert service_cls(workspace)._workspace is workspace
