"""
Tests for the stackdeploy CLI (root app, ``deploy`` and ``stack``).

The orchestrator and StackOperations are wired to FakeRuntime so no
Docker daemon is needed.
"""

from __future__ import annotations

import json

import httpx
import pytest
from typer.testing import CliRunner

from stackdeploy import __version__
from stackdeploy.cli.app import app
from stackdeploy.deploy.config import resolve_compose_layers
from stackdeploy.deploy.operations import StackOperations
from stackdeploy.deploy.orchestrator import DeploymentOrchestrator

runner = CliRunner()

TARGETS_UP = '{"status":"success","data":{"activeTargets":[{"health":"up"}]}}'


def _healthy_http(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/v1/targets":
        return httpx.Response(200, text=TARGETS_UP)
    return httpx.Response(200, text="ok")


@pytest.fixture(autouse=True)
def _quiet(monkeypatch):
    monkeypatch.setattr("stackdeploy.cli.app.configure_logging", lambda **kwargs: None)
    for key in ("POSTGRES_PASSWORD", "REDIS_PASSWORD", "GRAFANA_PASSWORD"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def wired(monkeypatch, fake_runtime, fake_clock):
    """Route the CLI's orchestrator and StackOperations to FakeRuntime."""
    fake_runtime.services = {
        "frontend": {"health": "healthy"},
        "backend": {"running": True, "has_healthcheck": False},
    }

    def make_orchestrator(**kwargs):
        return DeploymentOrchestrator(
            lambda config, layers: fake_runtime,
            clock=fake_clock,
            sleep=fake_clock.sleep,
            http_client=httpx.Client(transport=httpx.MockTransport(_healthy_http)),
            **kwargs,
        )

    def for_environment(cls, config, environment):
        return cls(config, fake_runtime, resolve_compose_layers(config, environment))

    monkeypatch.setattr("stackdeploy.cli.deploy.DeploymentOrchestrator", make_orchestrator)
    monkeypatch.setattr(StackOperations, "for_environment", classmethod(for_environment))
    return fake_runtime


class TestRootApp:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"stackdeploy {__version__}" in result.output

    def test_help_command(self):
        result = runner.invoke(app, ["help"])
        assert result.exit_code == 0
        assert "deploy" in result.output
        assert "Exit codes" in result.output

    def test_stack_group_registered(self):
        result = runner.invoke(app, ["stack", "--help"])
        assert result.exit_code == 0
        assert "env-setup" in result.output


class TestDeployCommand:
    def test_staging_success(self, wired, project_dir):
        result = runner.invoke(app, ["deploy", "staging", "-C", str(project_dir)])

        assert result.exit_code == 0, result.output
        assert "completed" in result.output
        assert wired.called("start")

    def test_unknown_environment_exits_2(self, wired, project_dir):
        result = runner.invoke(app, ["deploy", "qa", "-C", str(project_dir)])

        assert result.exit_code == 2
        assert wired.calls == []

    def test_production_declined(self, wired, project_dir):
        result = runner.invoke(app, ["deploy", "-C", str(project_dir)], input="n\n")

        assert result.exit_code == 1
        assert "PRODUCTION" in result.output
        assert wired.called("build") == []

    def test_production_with_closed_stdin_cancels(self, wired, project_dir, tmp_path):
        out = tmp_path / "runs"
        result = runner.invoke(app, ["deploy", "production", "-C", str(project_dir), "-o", str(out)], input="")

        assert result.exit_code == 1
        summaries = list(out.glob("*/summary.json"))
        assert len(summaries) == 1
        data = json.loads(summaries[0].read_text())
        assert data["kind"] == "cancelled"
        assert data["halted_stage"] == "confirmation"
        assert wired.called("build") == []

    def test_invalid_timeout_exits_2(self, wired, project_dir):
        result = runner.invoke(app, ["deploy", "staging", "--timeout", "0", "-C", str(project_dir)])

        assert result.exit_code == 2
        assert "Invalid configuration" in result.output
        assert wired.calls == []

    def test_malformed_env_setting_exits_2(self, wired, project_dir, monkeypatch):
        monkeypatch.setenv("STACKDEPLOY_TIMEOUT_SECONDS", "soon")
        result = runner.invoke(app, ["deploy", "staging", "-C", str(project_dir)])

        assert result.exit_code == 2
        assert "STACKDEPLOY_TIMEOUT_SECONDS" in result.output

    def test_production_with_yes(self, wired, project_dir):
        result = runner.invoke(app, ["deploy", "production", "--yes", "-C", str(project_dir)])
        assert result.exit_code == 0, result.output

    def test_json_output(self, wired, project_dir):
        result = runner.invoke(app, ["deploy", "staging", "--json", "-C", str(project_dir)])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["kind"] == "success"
        assert data["environment"] == "staging"
        assert data["run_id"]

    def test_output_dir_writes_summary(self, wired, project_dir, tmp_path):
        out = tmp_path / "runs"
        result = runner.invoke(app, ["deploy", "staging", "-C", str(project_dir), "-o", str(out)])

        assert result.exit_code == 0, result.output
        assert len(list(out.glob("*/summary.json"))) == 1


class TestStackCommands:
    def test_ps(self, wired, project_dir):
        result = runner.invoke(app, ["stack", "-C", str(project_dir), "ps"])

        assert result.exit_code == 0, result.output
        assert "frontend" in result.output
        assert "healthy" in result.output

    def test_health_fails_when_pending(self, wired, project_dir):
        wired.services["grafana"] = {"health": "starting"}
        result = runner.invoke(app, ["stack", "-C", str(project_dir), "health"])

        assert result.exit_code == 1
        assert "grafana" in result.output

    def test_health_ok(self, wired, project_dir):
        result = runner.invoke(app, ["stack", "-C", str(project_dir), "health"])
        assert result.exit_code == 0, result.output

    def test_scale(self, wired, project_dir):
        result = runner.invoke(app, ["stack", "-C", str(project_dir), "scale", "backend", "2"])

        assert result.exit_code == 0, result.output
        assert wired.called("scale") == [("scale", "backend", 2)]

    def test_logs(self, wired, project_dir):
        result = runner.invoke(app, ["stack", "-C", str(project_dir), "logs", "frontend", "--tail", "5"])

        assert result.exit_code == 0, result.output
        assert "frontend log line" in result.output
        assert wired.called("tail_logs") == [("tail_logs", "frontend", 5)]

    def test_unknown_environment(self, wired, project_dir):
        result = runner.invoke(app, ["stack", "-e", "qa", "-C", str(project_dir), "up"])

        assert result.exit_code == 2
        assert wired.calls == []

    def test_restore_without_backups(self, wired, project_dir):
        result = runner.invoke(app, ["stack", "-C", str(project_dir), "restore", "--yes"])

        assert result.exit_code == 1
        assert wired.calls == []

    def test_env_setup_prints_secrets(self, tmp_path):
        result = runner.invoke(app, ["stack", "-C", str(tmp_path), "env-setup"])

        assert result.exit_code == 0, result.output
        assert "SECRET_KEY=" in result.output
        assert (tmp_path / ".env").exists()
