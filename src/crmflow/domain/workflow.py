"""Workflow graph and node configuration models.

A workflow is a set of typed nodes plus connections between named
handles. Node configuration arrives from the builder as camelCase JSON
(``variableName``, ``leftOperand`` ...). The models accept both that
form and snake_case field names.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from crmflow.domain.conditions import Operator
from crmflow.domain.types import Handle, NodeType
from crmflow.domain.variables import is_valid_variable_name


def _check_variable_name(value: str) -> str:
    if not is_valid_variable_name(value):
        msg = (
            "Variable name must start with a letter, underscore or $ and contain "
            "only letters, numbers, underscores and $."
        )
        raise ValueError(msg)
    return value


VariableName = Annotated[str, AfterValidator(_check_variable_name)]


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


class Position(BaseModel):
    model_config = {"frozen": True}

    x: float = 0.0
    y: float = 0.0


class NodeSpec(BaseModel):
    """A node as stored and exchanged with the builder."""

    model_config = {"frozen": True}

    id: str = Field(min_length=1)
    type: NodeType
    name: str | None = None
    position: Position = Field(default_factory=Position)
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or str(self.type)

    @property
    def variable_name(self) -> str | None:
        value = self.data.get("variableName")
        return value if isinstance(value, str) and value else None


class ConnectionSpec(BaseModel):
    """A directed connection from a source handle to a target handle."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source: str
    target: str
    source_handle: str = Field(default=Handle.MAIN, alias="sourceHandle")
    target_handle: str = Field(default=Handle.MAIN, alias="targetHandle")

    @field_validator("source_handle", "target_handle", mode="before")
    @classmethod
    def _default_handle(cls, value: Any) -> Any:
        return value or Handle.MAIN


class WorkflowGraph(BaseModel):
    """Complete node/connection set for one workflow."""

    model_config = {"frozen": True}

    nodes: list[NodeSpec] = Field(default_factory=list)
    connections: list[ConnectionSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_integrity(self) -> WorkflowGraph:
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                msg = f"Duplicate node id: {node.id}"
                raise ValueError(msg)
            seen.add(node.id)
        for conn in self.connections:
            for endpoint in (conn.source, conn.target):
                if endpoint not in seen:
                    msg = f"Connection references unknown node: {endpoint}"
                    raise ValueError(msg)
        return self

    def node(self, node_id: str) -> NodeSpec | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


# ---------------------------------------------------------------------------
# Bundles
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class BundleInput(_CamelModel):
    name: VariableName
    type: str = "string"
    description: str | None = None
    default_value: Any = None


class BundleOutput(_CamelModel):
    name: str = Field(min_length=1)
    variable_path: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Node configuration
# ---------------------------------------------------------------------------


class TriggerConfig(_CamelModel):
    variable_name: VariableName | None = None
    # CONTACT_FIELD_CHANGED_TRIGGER only: restrict to one contact field.
    field: str | None = None


class IfElseConfig(_CamelModel):
    variable_name: VariableName
    left_operand: str = Field(min_length=1)
    operator: Operator
    right_operand: str = ""


class SwitchCase(_CamelModel):
    value: str = Field(min_length=1)
    label: str | None = None


class SwitchConfig(_CamelModel):
    variable_name: VariableName
    input_value: str = Field(min_length=1)
    cases: list[SwitchCase] = Field(min_length=1)
    default_label: str = "Default"


class LoopConfig(_CamelModel):
    variable_name: VariableName
    loop_type: Literal["array", "count"] = "array"
    array_input: str | None = None
    count_input: str | None = None
    item_variable_name: VariableName = "item"
    index_variable_name: VariableName | None = None


class SetVariableConfig(_CamelModel):
    variable_name: VariableName
    value: str = Field(min_length=1)


WAIT_UNIT_SECONDS: dict[str, int] = {
    "seconds": 1,
    "minutes": 60,
    "hours": 3600,
    "days": 86400,
}


class WaitConfig(_CamelModel):
    variable_name: VariableName
    duration: float = Field(ge=1, le=365)
    unit: Literal["seconds", "minutes", "hours", "days"] = "seconds"

    @property
    def seconds(self) -> float:
        return self.duration * WAIT_UNIT_SECONDS[self.unit]


class StopWorkflowConfig(_CamelModel):
    variable_name: VariableName
    reason: str | None = None


class InputMapping(_CamelModel):
    bundle_input_name: str
    value: str = ""


class BundleWorkflowConfig(_CamelModel):
    variable_name: VariableName
    bundle_workflow_id: str = Field(min_length=1)
    input_mappings: list[InputMapping] = Field(default_factory=list)


# CRM action configs hold raw templates; required fields are checked after
# rendering so the error names the node ("Create Contact Node error: ...").


class ContactFields(_CamelModel):
    name: str | None = None
    email: str | None = None
    company_name: str | None = None
    phone: str | None = None
    position: str | None = None
    type: str | None = None
    lifecycle_stage: str | None = None
    source: str | None = None
    website: str | None = None
    linkedin: str | None = None
    country: str | None = None
    city: str | None = None
    notes: str | None = None


class CreateContactConfig(ContactFields):
    variable_name: VariableName | None = None


class UpdateContactConfig(ContactFields):
    variable_name: VariableName | None = None
    contact_id: str | None = None


class DeleteContactConfig(_CamelModel):
    variable_name: VariableName | None = None
    contact_id: str | None = None


class FindContactsConfig(_CamelModel):
    variable_name: VariableName | None = None
    email: str | None = None
    name: str | None = None
    company_name: str | None = None
    type: str | None = None
    lifecycle_stage: str | None = None
    limit: int = Field(default=10, ge=1, le=500)


class DealFields(_CamelModel):
    name: str | None = None
    value: str | None = None
    currency: str | None = None
    deadline: str | None = None
    source: str | None = None
    description: str | None = None
    pipeline_id: str | None = None
    pipeline_stage_id: str | None = None


class CreateDealConfig(DealFields):
    variable_name: VariableName | None = None
    contact_ids: str | None = None


class UpdateDealConfig(DealFields):
    variable_name: VariableName | None = None
    deal_id: str | None = None


class DeleteDealConfig(_CamelModel):
    variable_name: VariableName | None = None
    deal_id: str | None = None


class MoveDealStageConfig(_CamelModel):
    variable_name: VariableName | None = None
    deal_id: str | None = None
    pipeline_id: str | None = None
    pipeline_stage_id: str | None = None


class AddDealNoteConfig(_CamelModel):
    variable_name: VariableName | None = None
    deal_id: str | None = None
    note: str | None = None


class UpdatePipelineConfig(_CamelModel):
    variable_name: VariableName | None = None
    deal_id: str | None = None
    pipeline_stage_id: str | None = None
