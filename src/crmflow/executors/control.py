"""Control-flow executors: IF/ELSE, SWITCH, LOOP, SET_VARIABLE, WAIT, STOP_WORKFLOW.

Control nodes publish their result under ``context["variables"]``.
Branching nodes also say which outgoing handle the interpreter follows,
through ``branchToFollow`` on their result (IF/ELSE, SWITCH) or on the
context itself (LOOP).
"""

from __future__ import annotations

import json
import logging
from typing import Any

from crmflow.domain.conditions import evaluate
from crmflow.domain.types import Handle, case_handle
from crmflow.domain.variables import lookup_variable, render_template, resolve_value
from crmflow.domain.workflow import (
    IfElseConfig,
    LoopConfig,
    SetVariableConfig,
    StopWorkflowConfig,
    SwitchConfig,
    WaitConfig,
)
from crmflow.executors.base import (
    Context,
    ExecutionRequest,
    fail,
    node_status,
    parse_config,
    with_variable,
)

logger = logging.getLogger(__name__)

LOOP_STATE_KEY = "loopState"
SHOULD_STOP_KEY = "shouldStop"
BRANCH_KEY = "branchToFollow"


def if_else_executor(request: ExecutionRequest) -> Context:
    with node_status(request):
        config = parse_config(IfElseConfig, request)
        left = render_template(config.left_operand, request.context)
        right = render_template(config.right_operand, request.context)
        result = evaluate(left, config.operator, right)
        return with_variable(
            request.context,
            config.variable_name,
            {
                "result": result,
                "leftValue": left,
                "rightValue": right,
                "operator": str(config.operator),
                BRANCH_KEY: Handle.TRUE if result else Handle.FALSE,
            },
        )


def switch_executor(request: ExecutionRequest) -> Context:
    with node_status(request):
        config = parse_config(SwitchConfig, request)
        value = render_template(config.input_value, request.context)
        outcome: dict[str, Any] = {
            "value": value,
            "matchedCase": None,
            "label": config.default_label,
            BRANCH_KEY: str(Handle.DEFAULT),
        }
        for index, case in enumerate(config.cases):
            if render_template(case.value, request.context) == value:
                outcome.update(
                    matchedCase=index,
                    label=case.label or case.value,
                    **{BRANCH_KEY: case_handle(index)},
                )
                break
        return with_variable(request.context, config.variable_name, outcome)


# ---------------------------------------------------------------------------
# LOOP
# ---------------------------------------------------------------------------


def _array_items(raw: str | None, context: Context) -> list[Any]:
    if not raw:
        return []
    value = resolve_value(raw, context)
    if isinstance(value, list):
        return value
    if value is None or value == "":
        return []
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            # A bare dotted path such as ``contacts.items``.
            found = lookup_variable(context, value.strip())
            return found if isinstance(found, list) else []
        return parsed if isinstance(parsed, list) else [parsed]
    return [value]


def _count(raw: str | None, context: Context) -> int:
    value = resolve_value(raw or "0", context)
    try:
        return max(int(float(value)), 0)
    except (TypeError, ValueError):
        return 0


def loop_executor(request: ExecutionRequest) -> Context:
    """Advance a loop by one step.

    Called once per iteration plus once more to finish. State lives under
    ``context["loopState"]["loop_<node id>"]`` between calls.
    """
    with node_status(request):
        config = parse_config(LoopConfig, request)
        context = request.context
        loop_state: dict[str, Any] = dict(context.get(LOOP_STATE_KEY) or {})
        key = f"loop_{request.node_id}"

        if key not in loop_state:
            if config.loop_type == "array":
                items = _array_items(config.array_input, context)
            else:
                items = list(range(_count(config.count_input, context)))
            limit = request.runtime.config.max_loop_iterations
            if len(items) > limit:
                raise fail(request, f"{len(items)} iterations exceed the limit of {limit}.")
            loop_state[key] = {"items": items, "currentIndex": 0, "totalIterations": len(items)}

        state = dict(loop_state[key])
        items, index, total = state["items"], state["currentIndex"], state["totalIterations"]

        if index >= total:
            del loop_state[key]
            done = with_variable(
                context,
                config.variable_name,
                {"completed": True, "totalIterations": total, "items": items},
            )
            return {**done, LOOP_STATE_KEY: loop_state, BRANCH_KEY: str(Handle.AFTER_LOOP)}

        state["currentIndex"] = index + 1
        loop_state[key] = state
        step = with_variable(context, config.item_variable_name, items[index])
        if config.index_variable_name:
            step = with_variable(step, config.index_variable_name, index)
        step = with_variable(
            step,
            config.variable_name,
            {"currentIndex": index, "totalIterations": total, "isComplete": False},
        )
        return {**step, LOOP_STATE_KEY: loop_state, BRANCH_KEY: str(Handle.LOOP_BODY)}


# ---------------------------------------------------------------------------
# Simple control nodes
# ---------------------------------------------------------------------------


def set_variable_executor(request: ExecutionRequest) -> Context:
    with node_status(request):
        config = parse_config(SetVariableConfig, request)
        value = resolve_value(config.value, request.context)
        return with_variable(request.context, config.variable_name, value)


def wait_executor(request: ExecutionRequest) -> Context:
    with node_status(request):
        config = parse_config(WaitConfig, request)
        settings = request.runtime.config
        seconds = config.seconds
        waited = min(seconds, settings.max_wait_seconds) if settings.wait_enabled else 0.0
        if waited > 0:
            logger.debug("WAIT %s sleeping %.1fs of %.1fs", request.node_id, waited, seconds)
            request.runtime.sleeper(waited)
        return with_variable(
            request.context,
            config.variable_name,
            {"duration": config.duration, "unit": config.unit, "seconds": seconds, "waited": waited},
        )


def stop_workflow_executor(request: ExecutionRequest) -> Context:
    with node_status(request):
        config = parse_config(StopWorkflowConfig, request)
        reason = render_template(config.reason, request.context) or None
        stopped = with_variable(
            request.context,
            config.variable_name,
            {"stopped": True, "reason": reason},
        )
        return {**stopped, SHOULD_STOP_KEY: True}
