"""CLI wiring: config errors surface as exit codes, not tracebacks."""

import pytest
import structlog
from typer.testing import CliRunner

from predfusion.cli.app import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    structlog.reset_defaults()


def test_help_lists_subcommands():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "markets" in result.stdout
    assert "api" in result.stdout


def test_scan_without_enabled_platforms_exits_2(tmp_path):
    (tmp_path / "default.toml").write_text("[platforms.polymarket]\nenabled = false\n")
    result = runner.invoke(app, ["--config-dir", str(tmp_path), "markets", "scan"])
    assert result.exit_code == 2
    assert "Configuration error" in result.output


def test_version_command(tmp_path):
    result = runner.invoke(app, ["--config-dir", str(tmp_path), "--log-level", "warning", "version"])
    assert result.exit_code == 0
    assert result.stdout.strip() == "predfusion 0.1.0"


def test_api_uses_config_dir(tmp_path, monkeypatch):
    (tmp_path / "default.toml").write_text('[api]\nhost = "0.0.0.0"\nport = 9100\n')
    seen = {}
    monkeypatch.setattr("predfusion.cli.api_cmd.run_api", lambda **kwargs: seen.update(kwargs))
    result = runner.invoke(app, ["-C", str(tmp_path), "-p", "dev", "api"])
    assert result.exit_code == 0
    assert seen == {"host": "0.0.0.0", "port": 9100, "profile": "dev", "config_dir": tmp_path}
