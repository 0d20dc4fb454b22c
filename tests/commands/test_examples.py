"""Tests for --examples flag on CLI commands."""

from __future__ import annotations

import pytest
from click.testing import CliRunner

from crmflow.cli import cli

# (CLI args, expected keywords in output)
EXAMPLES_COMMANDS: list[tuple[list[str], list[str]]] = [
    # -- workflow --
    (["workflow", "--examples"], ["crmflow workflow create", "crmflow workflow save"]),
    (["workflow", "create", "--examples"], ["--bundle"]),
    (["workflow", "list", "--examples"], ["--archived", "--search lead"]),
    (["workflow", "save", "--examples"], ["graph.json"]),
    (["workflow", "import", "--examples"], ["nurture.yaml"]),
    (["workflow", "bundle-config", "--examples"], ["variablePath"]),
    # -- execution --
    (["execution", "--examples"], ["crmflow execution show RUN-0001"]),
    (["execution", "list", "--examples"], ["--status FAILED"]),
    # -- CRM --
    (["contact", "--examples"], ["crmflow contact create"]),
    (["contact", "update", "--examples"], ["--lifecycle-stage CUSTOMER"]),
    (["deal", "--examples"], ["crmflow deal move"]),
    (["deal", "create", "--examples"], ["--currency EUR"]),
    (["pipeline", "--examples"], ["crmflow pipeline create Partners"]),
    # -- standalone commands --
    (["run", "--examples"], ["crmflow run", "--data"]),
    (["init", "--examples"], ["crmflow init", "--no-sample-pipeline"]),
]


def _examples_id(item: tuple[list[str], list[str]]) -> str:
    """Generate a readable test ID from args."""
    args, _ = item
    return "_".join(a for a in args if a != "--examples")


@pytest.mark.parametrize(
    "args,expected_keywords",
    EXAMPLES_COMMANDS,
    ids=[_examples_id(item) for item in EXAMPLES_COMMANDS],
)
def test_examples_flag(
    cli_runner: CliRunner, args: list[str], expected_keywords: list[str]
) -> None:
    result = cli_runner.invoke(cli, args)
    assert result.exit_code == 0
    for kw in expected_keywords:
        assert kw in result.output, f"Expected '{kw}' in examples output for {args}"


class TestExamplesInHelp:
    """--examples appears in --help output for commands that have it."""

    @pytest.mark.parametrize(
        "args",
        [
            ["workflow", "--help"],
            ["workflow", "create", "--help"],
            ["execution", "list", "--help"],
            ["contact", "create", "--help"],
            ["deal", "move", "--help"],
            ["pipeline", "create", "--help"],
            ["run", "--help"],
            ["init", "--help"],
        ],
    )
    def test_examples_in_help(self, cli_runner: CliRunner, args: list[str]) -> None:
        result = cli_runner.invoke(cli, args)
        assert result.exit_code == 0
        assert "--examples" in result.output


class TestExamplesEagerExit:
    """--examples exits before argument validation."""

    def test_examples_skips_required_args(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["run", "--examples"])
        assert result.exit_code == 0
        assert "Examples for" in result.output

    def test_examples_skips_required_args_deal_move(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["deal", "move", "--examples"])
        assert result.exit_code == 0

    def test_examples_skips_required_args_rename_var(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["workflow", "rename-var", "--examples"])
        assert result.exit_code == 0
