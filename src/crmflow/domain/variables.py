"""Variable lookup and ``{{ template }}`` resolution against an execution context.

An execution context is a plain dict. Action nodes publish their output
at the root under their ``variableName``; control nodes publish under
``context["variables"]``. Lookups check ``variables`` first, then the root.

Templates use ``{{ path.to.value }}`` expressions rendered by a sandboxed
Jinja2 environment:

- Missing paths render as the empty string.
- ``None`` renders empty, booleans render ``true``/``false``.
- dicts and lists render as compact JSON.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

from jinja2 import ChainableUndefined, TemplateError, Undefined
from jinja2.sandbox import SandboxedEnvironment

VARIABLE_NAME_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")

# A template that is nothing but a single path expression: ``{{ a.b.0 }}``.
_SINGLE_PATH_RE = re.compile(r"^\s*\{\{\s*([A-Za-z_$][\w$]*(?:\.[\w$]+)*)\s*\}\}\s*$")
_REFERENCE_RE = re.compile(r"\{\{\s*([A-Za-z_$][\w$]*)")
_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?([eE][+-]?\d+)?$")


class VariableResolutionError(ValueError):
    """A template could not be parsed or rendered."""


def _finalize(value: Any) -> Any:
    if value is None or isinstance(value, Undefined):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str, separators=(",", ":"))
    return value


def _json_filter(value: Any) -> str:
    if isinstance(value, Undefined):
        value = None
    return json.dumps(value, default=str, indent=2)


class _ContextEnvironment(SandboxedEnvironment):
    """Sandbox where ``a.b`` reads data only, never a dict or list method."""

    def getattr(self, obj: Any, attribute: str) -> Any:
        if isinstance(obj, Mapping):
            try:
                return obj[attribute]
            except KeyError:
                return self.undefined(obj=obj, name=attribute)
        if isinstance(obj, (list, tuple)):
            return self.undefined(obj=obj, name=attribute)
        return super().getattr(obj, attribute)

    def getitem(self, obj: Any, argument: Any) -> Any:
        # ``a['count']`` on a list would otherwise fall back to the attribute.
        if isinstance(obj, (list, tuple)) and isinstance(argument, str):
            return self.undefined(obj=obj, name=argument)
        return super().getitem(obj, argument)


_env = _ContextEnvironment(
    undefined=ChainableUndefined,
    finalize=_finalize,
    autoescape=False,
    keep_trailing_newline=True,
)
_env.filters["json"] = _json_filter


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


def is_valid_variable_name(name: str) -> bool:
    """Whether *name* can be used as a ``variableName`` on a node."""
    return VARIABLE_NAME_RE.match(name) is not None


def lookup_path(obj: Any, path: str) -> Any:
    """Walk a dotted *path* through nested dicts and lists.

    Examples:
        >>> lookup_path({"a": {"b": [10, 20]}}, "a.b.1")
        20
        >>> lookup_path({"a": 1}, "a.missing") is None
        True
    """
    current = obj
    for key in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(key)
        elif isinstance(current, list) and key.isdigit():
            index = int(key)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def lookup_variable(context: Mapping[str, Any], path: str) -> Any:
    """Resolve *path* against ``context["variables"]`` first, then the root."""
    variables = context.get("variables")
    if isinstance(variables, Mapping):
        value = lookup_path(variables, path)
        if value is not None:
            return value
    return lookup_path(context, path)


def template_scope(context: Mapping[str, Any]) -> dict[str, Any]:
    """Flatten a context into the name scope seen by templates.

    Root keys are visible directly; entries under ``variables`` shadow them.
    """
    scope = dict(context)
    variables = context.get("variables")
    if isinstance(variables, Mapping):
        scope.update(variables)
    return scope


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def render_template(template: str | None, context: Mapping[str, Any]) -> str:
    """Render *template* against *context*, always returning a string."""
    if not template:
        return ""
    if "{{" not in template and "{%" not in template:
        return template
    try:
        return _env.from_string(template).render(template_scope(context))
    except TemplateError as exc:
        msg = f"Invalid template {template!r}: {exc}"
        raise VariableResolutionError(msg) from exc


def coerce_value(text: str) -> Any:
    """Interpret a rendered string as JSON, a number, or a boolean when it looks like one."""
    stripped = text.strip()
    if (stripped.startswith("{") and stripped.endswith("}")) or (
        stripped.startswith("[") and stripped.endswith("]")
    ):
        try:
            return json.loads(stripped)
        except ValueError:
            return text
    if _NUMBER_RE.match(stripped):
        number = float(stripped)
        return int(number) if number.is_integer() and "." not in stripped else number
    if stripped in ("true", "false"):
        return stripped == "true"
    return text


def resolve_value(template: Any, context: Mapping[str, Any]) -> Any:
    """Resolve *template* to a typed value.

    A template consisting of exactly one ``{{ path }}`` yields the raw
    looked-up value so lists and objects survive intact. Anything else is
    rendered to text and passed through :func:`coerce_value`.
    """
    if not isinstance(template, str):
        return template
    match = _SINGLE_PATH_RE.match(template)
    if match is not None:
        return lookup_variable(context, match.group(1))
    return coerce_value(render_template(template, context))


# ---------------------------------------------------------------------------
# References
# ---------------------------------------------------------------------------


def extract_references(data: Any) -> set[str]:
    """Collect the root variable names referenced anywhere inside *data*."""
    found: set[str] = set()
    if isinstance(data, str):
        found.update(_REFERENCE_RE.findall(data))
    elif isinstance(data, list):
        for item in data:
            found |= extract_references(item)
    elif isinstance(data, Mapping):
        for value in data.values():
            found |= extract_references(value)
    return found


def rename_in_template(template: str, old_name: str, new_name: str) -> str:
    """Rewrite ``{{old...}}`` to ``{{new...}}`` matching whole variable names only.

    Examples:
        >>> rename_in_template("Hi {{form.name}}", "form", "lead")
        'Hi {{lead.name}}'
        >>> rename_in_template("{{formData.x}}", "form", "lead")
        '{{formData.x}}'
    """
    pattern = re.compile(r"(\{\{\s*)" + re.escape(old_name) + r"(\.|\s|\}\})")
    return pattern.sub(lambda m: m.group(1) + new_name + m.group(2), template)


def rename_references(data: Any, old_name: str, new_name: str) -> Any:
    """Recursively apply :func:`rename_in_template` to every string in *data*."""
    if isinstance(data, str):
        return rename_in_template(data, old_name, new_name)
    if isinstance(data, list):
        return [rename_references(item, old_name, new_name) for item in data]
    if isinstance(data, Mapping):
        return {key: rename_references(value, old_name, new_name) for key, value in data.items()}
    return data
