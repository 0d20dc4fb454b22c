"""Tests for variable lookup, template rendering and reference renaming."""

from __future__ import annotations

import pytest

from crmflow.domain.variables import (
    VariableResolutionError,
    coerce_value,
    extract_references,
    is_valid_variable_name,
    lookup_path,
    lookup_variable,
    rename_in_template,
    rename_references,
    render_template,
    resolve_value,
)


class TestVariableNames:
    @pytest.mark.parametrize("name", ["lead", "_private", "contact2", "$ref", "camelCase"])
    def test_valid(self, name: str) -> None:
        assert is_valid_variable_name(name)

    @pytest.mark.parametrize("name", ["", "2fast", "has space", "dash-name", "dot.name"])
    def test_invalid(self, name: str) -> None:
        assert not is_valid_variable_name(name)


class TestLookup:
    def test_nested_dict_and_list(self) -> None:
        ctx = {"found": {"contacts": [{"email": "a@x.io"}, {"email": "b@x.io"}]}}
        assert lookup_path(ctx, "found.contacts.1.email") == "b@x.io"

    def test_missing_segment_is_none(self) -> None:
        assert lookup_path({"a": {"b": 1}}, "a.c.d") is None

    def test_index_out_of_range_is_none(self) -> None:
        assert lookup_path({"a": [1]}, "a.5") is None

    def test_falsy_values_survive(self) -> None:
        assert lookup_path({"a": {"zero": 0, "off": False}}, "a.zero") == 0
        assert lookup_path({"a": {"zero": 0, "off": False}}, "a.off") is False

    def test_variables_take_precedence(self) -> None:
        ctx = {"x": "root", "variables": {"x": "control"}}
        assert lookup_variable(ctx, "x") == "control"

    def test_falls_back_to_root(self) -> None:
        ctx = {"contact": {"id": "ct_1"}, "variables": {}}
        assert lookup_variable(ctx, "contact.id") == "ct_1"


class TestRenderTemplate:
    def test_plain_text_unchanged(self) -> None:
        assert render_template("hello", {}) == "hello"

    def test_empty_and_none(self) -> None:
        assert render_template("", {}) == ""
        assert render_template(None, {}) == ""

    def test_substitutes_paths(self) -> None:
        ctx = {"trigger": {"name": "Ada"}}
        assert render_template("Hi {{ trigger.name }}!", ctx) == "Hi Ada!"

    def test_compact_spacing(self) -> None:
        assert render_template("{{trigger.name}}", {"trigger": {"name": "Ada"}}) == "Ada"

    def test_missing_renders_empty(self) -> None:
        assert render_template("[{{ nope.deeper.still }}]", {}) == "[]"

    def test_none_renders_empty(self) -> None:
        assert render_template("{{ a }}", {"a": None}) == ""

    def test_booleans_render_lowercase(self) -> None:
        ctx = {"variables": {"check": {"result": True}}}
        assert render_template("{{ check.result }}", ctx) == "true"

    def test_objects_render_as_json(self) -> None:
        assert render_template("{{ a }}", {"a": {"k": [1, 2]}}) == '{"k":[1,2]}'

    def test_variables_shadow_root(self) -> None:
        ctx = {"item": "root", "variables": {"item": "loop"}}
        assert render_template("{{ item }}", ctx) == "loop"

    def test_dict_keys_not_methods(self) -> None:
        assert render_template("{{ a.items }}", {"a": {"items": "stock"}}) == "stock"

    def test_list_index(self) -> None:
        assert render_template("{{ a.1 }}", {"a": ["x", "y"]}) == "y"

    def test_list_methods_render_empty(self) -> None:
        ctx = {"items": ["x", "y"]}
        assert render_template("{{ items.count }}", ctx) == ""
        assert render_template("{{ items['append'] }}", ctx) == ""
        assert render_template("{{ items.count.deeper }}", ctx) == ""
        assert render_template("{{ items | length }}", ctx) == "2"

    def test_syntax_error(self) -> None:
        with pytest.raises(VariableResolutionError):
            render_template("{{ unclosed", {})

    def test_sandbox_hides_dunder_attributes(self) -> None:
        assert render_template("{{ ''.__class__.__mro__ }}", {}) == ""


class TestResolveValue:
    def test_single_path_keeps_type(self) -> None:
        ctx = {"found": {"contacts": [{"id": 1}]}}
        assert resolve_value("{{ found.contacts }}", ctx) == [{"id": 1}]

    def test_mixed_text_is_rendered(self) -> None:
        assert resolve_value("id-{{ a }}", {"a": 7}) == "id-7"

    def test_non_string_passthrough(self) -> None:
        assert resolve_value(5, {}) == 5

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("42", 42),
            ("-3.5", -3.5),
            ("true", True),
            ("false", False),
            ('{"a": 1}', {"a": 1}),
            ("[1, 2]", [1, 2]),
            ("[not json", "[not json"),
            ("hello", "hello"),
        ],
    )
    def test_coerce(self, text: str, expected: object) -> None:
        assert coerce_value(text) == expected


class TestReferences:
    def test_extract_from_nested_data(self) -> None:
        data = {"name": "{{ lead.name }}", "tags": ["{{found.count}}", "plain"], "n": 3}
        assert extract_references(data) == {"lead", "found"}

    def test_rename_exact_variable(self) -> None:
        assert rename_in_template("{{form.email}}", "form", "lead") == "{{lead.email}}"

    def test_rename_bare_variable(self) -> None:
        assert rename_in_template("{{form}}", "form", "lead") == "{{lead}}"

    def test_rename_keeps_longer_names(self) -> None:
        assert rename_in_template("{{formData.x}} {{platform}}", "form", "lead") == (
            "{{formData.x}} {{platform}}"
        )

    def test_rename_spaced_template(self) -> None:
        assert rename_in_template("{{ form.email }}", "form", "lead") == "{{ lead.email }}"

    def test_rename_recursive(self) -> None:
        data = {
            "email": "{{form.email}}",
            "mappings": [{"value": "{{ form.name }}"}, {"value": "{{formData}}"}],
            "limit": 10,
        }
        renamed = rename_references(data, "form", "lead")
        assert renamed["email"] == "{{lead.email}}"
        assert renamed["mappings"][0]["value"] == "{{lead.name }}"
        assert renamed["mappings"][1]["value"] == "{{formData}}"
        assert renamed["limit"] == 10
