"""Tests for node type groupings and handle helpers."""

from crmflow.domain.types import (
    BRANCHING_TYPES,
    TRIGGER_TYPES,
    Handle,
    NodeType,
    case_handle,
)
from crmflow.executors.triggers import DEFAULT_TRIGGER_VARIABLES


class TestNodeTypes:
    def test_trigger_types_are_node_types(self) -> None:
        assert TRIGGER_TYPES <= set(NodeType)

    def test_every_trigger_has_default_variable(self) -> None:
        assert set(DEFAULT_TRIGGER_VARIABLES) == TRIGGER_TYPES

    def test_branching_types(self) -> None:
        assert BRANCHING_TYPES == {NodeType.IF_ELSE, NodeType.SWITCH, NodeType.LOOP}

    def test_string_values(self) -> None:
        assert NodeType("CREATE_CONTACT") is NodeType.CREATE_CONTACT
        assert str(NodeType.LOOP) == "LOOP"


class TestHandles:
    def test_case_handle(self) -> None:
        assert case_handle(0) == "case-0"
        assert case_handle(3) == "case-3"

    def test_loop_handles(self) -> None:
        assert Handle.LOOP_BODY == "loop-body"
        assert Handle.AFTER_LOOP == "after-loop"
        assert Handle.LOOP_BACK == "loop-back"
