"""Pluggy hook specifications for crmflow lifecycle events.

``node_status`` is the realtime channel: it fires for every node as it
moves through loading, success, error or skipped during a run. The
remaining hooks report completed operations.
"""

from __future__ import annotations

from typing import Any

import pluggy

hookspec = pluggy.HookspecMarker("crmflow")


class CrmflowHookSpec:
    """Hook specifications for the crmflow plugin system."""

    @hookspec
    def node_status(
        self,
        execution_id: str,
        workflow_id: str,
        node_id: str,
        node_type: str,
        status: str,
        error: str | None,
    ) -> None:
        """Called whenever a node's execution status changes."""

    @hookspec
    def post_execution(
        self,
        execution_id: str,
        workflow_id: str,
        status: str,
        error: str | None,
        steps: int,
    ) -> None:
        """Called after a workflow run finishes (any terminal status)."""

    @hookspec
    def post_workflow_save(
        self,
        workflow_id: str,
        name: str,
        node_count: int,
        connection_count: int,
    ) -> None:
        """Called after a workflow graph is saved."""

    @hookspec
    def post_contact_change(
        self,
        action: str,
        contact_id: str,
        fields_changed: list[str],
        contact: dict[str, Any],
    ) -> None:
        """Called after a contact is created, updated, or deleted."""

    @hookspec
    def post_deal_change(
        self,
        action: str,
        deal_id: str,
        fields_changed: list[str],
        deal: dict[str, Any],
    ) -> None:
        """Called after a deal is created, updated, moved, or deleted."""
