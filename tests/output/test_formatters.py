"""Tests for the format_result dispatcher and OutputSettings."""

import dataclasses
import json

import pytest

from crmflow.output.formatters import OutputSettings, format_result
from crmflow.services.result import ServiceError, ServiceResult


def _ok(op: str = "test", **data: object) -> ServiceResult:
    return ServiceResult(ok=True, op=op, data=dict(data))


def _err(op: str = "test", msg: str = "fail") -> ServiceResult:
    return ServiceResult(
        ok=False,
        op=op,
        error=ServiceError(code="ERR", message=msg),
    )


class TestOutputSettings:
    def test_defaults(self) -> None:
        s = OutputSettings()
        assert s.json_output is False
        assert s.quiet is False
        assert s.verbose is False

    def test_frozen(self) -> None:
        s = OutputSettings(json_output=True)
        with pytest.raises(dataclasses.FrozenInstanceError):
            s.quiet = True  # type: ignore[misc]


class TestFormatResultJSON:
    def test_json_mode_returns_valid_json(self) -> None:
        result = _ok("create_contact", id="ct_0123456789ab")
        output = format_result(result, settings=OutputSettings(json_output=True))
        data = json.loads(output)
        assert data["ok"] is True
        assert data["op"] == "create_contact"
        assert data["data"]["id"] == "ct_0123456789ab"

    def test_json_mode_error(self) -> None:
        result = _err("create_contact", "Bad")
        data = json.loads(format_result(result, settings=OutputSettings(json_output=True)))
        assert data["ok"] is False
        assert data["error"]["message"] == "Bad"

    def test_json_wins_over_quiet(self) -> None:
        result = _ok("create_contact", id="ct_0123456789ab")
        output = format_result(result, settings=OutputSettings(json_output=True, quiet=True))
        assert json.loads(output)["ok"] is True


class TestFormatResultQuiet:
    def test_quiet_success_prints_id(self) -> None:
        result = _ok("create_contact", id="ct_0123456789ab")
        output = format_result(result, settings=OutputSettings(quiet=True))
        assert output == "ct_0123456789ab"

    def test_quiet_success_without_id(self) -> None:
        output = format_result(_ok("list_pipelines"), settings=OutputSettings(quiet=True))
        assert output == "OK: list_pipelines"

    def test_quiet_error(self) -> None:
        result = _err("create_contact", "Bad input")
        output = format_result(result, settings=OutputSettings(quiet=True))
        assert "ERROR" in output
        assert "Bad input" in output


class TestFormatResultDefault:
    def test_default_success_contains_ok(self) -> None:
        result = _ok("delete_contact", id="ct_0123456789ab", deleted=True)
        output = format_result(result)
        assert "OK" in output
        assert "delete_contact" in output

    def test_default_error_contains_error(self) -> None:
        output = format_result(_err("delete_contact", "Bad"))
        assert "ERROR" in output
        assert "Bad" in output

    def test_verbose_mode(self) -> None:
        result = _ok("delete_contact", id="ct_0123456789ab")
        output = format_result(result, settings=OutputSettings(verbose=True))
        assert "OK" in output
