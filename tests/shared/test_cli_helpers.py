from __future__ import annotations

from pathlib import Path

import click
import pytest
from click.testing import CliRunner

from depot_cli.shared import paths
from depot_cli.shared.cli import CLIContext, common_cli_options, handle_cli_errors
from depot_cli.shared.config import load_config
from depot_cli.shared.exceptions import (
    ConfigurationError,
    DepotCliError,
    SpecError,
    UnsupportedFormatError,
)


@click.command()
@common_cli_options
def show_context(cli_ctx: CLIContext) -> None:
    click.echo(
        f"dry={cli_ctx.dry_run} verbose={cli_ctx.logger.verbose} "
        f"format={cli_ctx.config.output.format}"
    )


@pytest.fixture
def isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    config_dir = tmp_path / "config"

    def fake_load_config(config_path: str | None):
        return load_config(config_path, env={paths.CONFIG_DIR_ENV: str(config_dir)})

    monkeypatch.setattr("depot_cli.shared.cli.load_config", fake_load_config)
    return config_dir


@pytest.mark.parametrize(
    ("args", "expected"),
    [
        ([], "dry=False verbose=False format=csv"),
        (["--dry-run", "--verbose"], "dry=True verbose=True format=csv"),
    ],
)
def test_context_reflects_flags(isolated_config: Path, args: list[str], expected: str) -> None:
    result = CliRunner().invoke(show_context, args)

    assert result.exit_code == 0, result.output
    assert expected in result.output


def test_context_uses_explicit_config_file(isolated_config: Path, tmp_path: Path) -> None:
    cfg_file = tmp_path / "custom.yaml"
    cfg_file.write_text("output:\n  format: json\n", encoding="utf-8")

    result = CliRunner().invoke(show_context, ["--config", str(cfg_file)])

    assert result.exit_code == 0, result.output
    assert "format=json" in result.output


def test_bad_config_file_aborts_before_command(isolated_config: Path, tmp_path: Path) -> None:
    cfg_file = tmp_path / "custom.yaml"
    cfg_file.write_text("output:\n  format: xml\n", encoding="utf-8")

    result = CliRunner().invoke(show_context, ["--config", str(cfg_file)])

    assert result.exit_code == 1
    assert "Unknown output format 'xml'" in result.output
    assert "dry=" not in result.output


@pytest.mark.parametrize(
    ("error", "message"),
    [
        (DepotCliError("boom"), "boom"),
        (
            UnsupportedFormatError("Unsupported document format."),
            "Unsupported document format.",
        ),
        (ConfigurationError("missing value"), "Configuration error: missing value"),
        (
            SpecError("document type 'Kontoauszug' needs at least one block"),
            "Invalid rule file: document type 'Kontoauszug' needs at least one block",
        ),
        (RuntimeError("kapow"), "Unexpected error: kapow"),
    ],
)
def test_errors_become_click_exceptions(error: Exception, message: str) -> None:
    @handle_cli_errors
    def failing() -> None:
        raise error

    with pytest.raises(click.ClickException) as excinfo:
        failing()
    assert excinfo.value.message == message


def test_click_exceptions_pass_through_unchanged() -> None:
    original = click.UsageError("bad usage")

    @handle_cli_errors
    def failing() -> None:
        raise original

    with pytest.raises(click.UsageError) as excinfo:
        failing()
    assert excinfo.value is original
