"""Tests for CrmflowSettings — unified settings with TOML source."""

from pathlib import Path

import click
import pytest

from crmflow.config.settings import CrmflowSettings


@pytest.fixture(autouse=True)
def _no_config_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CRMFLOW_CONFIG", raising=False)


class TestCrmflowSettingsDefaults:
    def test_all_defaults(self, tmp_path: Path) -> None:
        """With no TOML and no env vars, all fields use code defaults."""
        settings = CrmflowSettings.from_cli(workspace_root=tmp_path)
        assert settings.workspace_root == tmp_path
        assert settings.json_output is False
        assert settings.quiet is False
        assert settings.verbose is False
        assert settings.workspace.name == "my-workspace"
        assert settings.tenant.organization_id == "default"
        assert settings.tenant.subaccount_id is None
        assert settings.execution.max_steps == 1000
        assert settings.execution.max_trigger_depth == 3

    def test_frozen(self, tmp_path: Path) -> None:
        settings = CrmflowSettings.from_cli(workspace_root=tmp_path)
        with pytest.raises(Exception):
            settings.quiet = True  # type: ignore[misc]


class TestTomlSource:
    def test_loads_from_toml(self, tmp_path: Path) -> None:
        toml = tmp_path / "crmflow.toml"
        toml.write_text('[workspace]\nname = "acme"\n[tenant]\norganization_id = "org_acme"\n')
        settings = CrmflowSettings.from_cli(workspace_root=tmp_path)
        assert settings.workspace.name == "acme"
        assert settings.tenant.organization_id == "org_acme"
        assert settings.execution.wait_enabled is True  # default preserved

    def test_sparse_override(self, tmp_path: Path) -> None:
        """Only overridden fields change — rest keeps defaults."""
        toml = tmp_path / "crmflow.toml"
        toml.write_text("[execution]\nmax_loop_iterations = 20\n")
        settings = CrmflowSettings.from_cli(workspace_root=tmp_path)
        assert settings.execution.max_loop_iterations == 20
        assert settings.execution.max_bundle_depth == 5

    def test_empty_toml_uses_defaults(self, tmp_path: Path) -> None:
        (tmp_path / "crmflow.toml").write_text("")
        settings = CrmflowSettings.from_cli(workspace_root=tmp_path)
        assert settings.workspace.name == "my-workspace"

    def test_explicit_config_path(self, tmp_path: Path) -> None:
        custom = tmp_path / "custom" / "other.toml"
        custom.parent.mkdir(parents=True)
        custom.write_text('[workspace]\nname = "custom"\n')
        settings = CrmflowSettings.from_cli(config_path=str(custom), workspace_root=tmp_path)
        assert settings.workspace.name == "custom"
        assert settings.config_path == custom

    def test_invalid_toml_is_a_click_error(self, tmp_path: Path) -> None:
        (tmp_path / "crmflow.toml").write_text("[execution\n")
        with pytest.raises(click.ClickException, match="Invalid TOML"):
            CrmflowSettings.from_cli(workspace_root=tmp_path)


class TestCliFlags:
    def test_cli_flags_override(self, tmp_path: Path) -> None:
        settings = CrmflowSettings.from_cli(
            workspace_root=tmp_path,
            json_output=True,
            quiet=True,
            verbose=True,
            sync=True,
        )
        assert settings.json_output is True
        assert settings.quiet is True
        assert settings.verbose is True
        assert settings.sync is True

    def test_cli_flags_override_toml(self, tmp_path: Path) -> None:
        (tmp_path / "crmflow.toml").write_text("sync = true\n")
        settings = CrmflowSettings.from_cli(workspace_root=tmp_path, sync=False)
        assert settings.sync is False


class TestWorkspaceRootResolution:
    def test_root_from_toml_location(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Without an explicit root, the discovered crmflow.toml's directory is used."""
        subdir = tmp_path / "sub" / "deep"
        subdir.mkdir(parents=True)
        (tmp_path / "crmflow.toml").write_text("")
        monkeypatch.chdir(subdir)
        settings = CrmflowSettings.from_cli()
        assert settings.workspace_root == tmp_path.resolve()

    def test_cwd_when_no_config(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        settings = CrmflowSettings.from_cli()
        assert settings.workspace_root == Path.cwd()


class TestEnvVars:
    def test_env_var_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CRMFLOW_QUIET", "true")
        settings = CrmflowSettings.from_cli(workspace_root=tmp_path)
        assert settings.quiet is True

    def test_nested_env_var_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CRMFLOW_EXECUTION__WAIT_ENABLED", "false")
        settings = CrmflowSettings.from_cli(workspace_root=tmp_path)
        assert settings.execution.wait_enabled is False
        assert settings.execution.max_wait_seconds == 60.0

    def test_env_beats_toml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / "crmflow.toml").write_text('[tenant]\norganization_id = "from_toml"\n')
        monkeypatch.setenv("CRMFLOW_TENANT__ORGANIZATION_ID", "from_env")
        settings = CrmflowSettings.from_cli(workspace_root=tmp_path)
        assert settings.tenant.organization_id == "from_env"
