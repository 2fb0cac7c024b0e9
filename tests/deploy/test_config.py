"""Tests for stackdeploy.deploy.config."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from stackdeploy.core.errors import InvalidEnvironmentError, OutcomeKind
from stackdeploy.deploy.config import (
    DeployConfig,
    Environment,
    parse_environment,
    resolve_compose_layers,
)


class TestParseEnvironment:
    @pytest.mark.parametrize("raw", ["production", "Staging", " development "])
    def test_valid(self, raw):
        assert parse_environment(raw).value == raw.strip().lower()

    @pytest.mark.parametrize("raw", ["prod", "qa", "", "production2"])
    def test_invalid(self, raw):
        with pytest.raises(InvalidEnvironmentError) as exc_info:
            parse_environment(raw)
        assert exc_info.value.outcome is OutcomeKind.INVALID_ENVIRONMENT
        assert exc_info.value.allowed == ["production", "staging", "development"]

    def test_enum_passthrough(self):
        assert parse_environment(Environment.STAGING) is Environment.STAGING


class TestDeployConfig:
    def test_defaults(self):
        config = DeployConfig()
        assert config.convergence_timeout_seconds == 300
        assert config.poll_interval_seconds == 10
        assert config.settle_seconds == 5
        assert config.smoke_retries == 3
        assert config.smoke_retry_delay_seconds == 5
        assert config.log_tail_lines == 20
        assert config.required_secrets == ["POSTGRES_PASSWORD", "REDIS_PASSWORD", "GRAFANA_PASSWORD"]
        assert config.frontend_port == 3000
        assert config.prometheus_port == 9090
        assert config.alertmanager_port == 9093
        assert len(config.run_id) == 12

    def test_run_ids_unique(self):
        assert DeployConfig().run_id != DeployConfig().run_id

    def test_frozen(self):
        config = DeployConfig()
        with pytest.raises(ValidationError):
            config.poll_interval_seconds = 1

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValidationError):
            DeployConfig(poll_interval_seconds=0)

    def test_volume_name(self):
        assert DeployConfig(project_name="mon").volume_name("loki-data") == "mon_loki-data"

    def test_missing_secrets(self):
        config = DeployConfig(env_values={"POSTGRES_PASSWORD": "x", "REDIS_PASSWORD": ""})
        assert config.missing_secrets() == ["REDIS_PASSWORD", "GRAFANA_PASSWORD"]

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("STACKDEPLOY_TIMEOUT_SECONDS", "120")
        monkeypatch.setenv("STACKDEPLOY_ASSUME_YES", "true")
        monkeypatch.setenv("STACKDEPLOY_PROJECT_NAME", "mon")
        config = DeployConfig.from_env()
        assert config.convergence_timeout_seconds == 120
        assert config.assume_yes is True
        assert config.project_name == "mon"

    def test_from_env_kwargs_win(self, monkeypatch):
        monkeypatch.setenv("STACKDEPLOY_TIMEOUT_SECONDS", "120")
        assert DeployConfig.from_env(convergence_timeout_seconds=60).convergence_timeout_seconds == 60

    def test_from_env_malformed_value_names_variable(self, monkeypatch):
        monkeypatch.setenv("STACKDEPLOY_TIMEOUT_SECONDS", "five minutes")
        with pytest.raises(ValueError, match="STACKDEPLOY_TIMEOUT_SECONDS"):
            DeployConfig.from_env()


class TestLoad:
    def test_environment_specific_env_file(self, project_dir):
        (project_dir / ".env.staging").write_text("FRONTEND_PORT=8080\nGRAFANA_PORT=3001\n")
        config = DeployConfig.load(project_dir, "staging")

        assert config.env_file == project_dir / ".env.staging"
        assert config.frontend_port == 8080
        assert config.grafana_port == 3001

    def test_falls_back_to_dotenv(self, project_dir):
        config = DeployConfig.load(project_dir, "development")
        assert config.env_file == project_dir / ".env"
        assert config.env_values["POSTGRES_PASSWORD"] == "pg"

    def test_no_env_file(self, tmp_path, monkeypatch):
        for key in ("POSTGRES_PASSWORD", "REDIS_PASSWORD", "GRAFANA_PASSWORD"):
            monkeypatch.delenv(key, raising=False)
        config = DeployConfig.load(tmp_path, "staging")
        assert config.env_file is None
        assert config.env_values == {}

    def test_real_env_wins_for_secrets(self, project_dir, monkeypatch):
        monkeypatch.setenv("POSTGRES_PASSWORD", "from-shell")
        config = DeployConfig.load(project_dir, "staging")
        assert config.env_values["POSTGRES_PASSWORD"] == "from-shell"

    def test_quoted_port_with_inline_comment(self, project_dir):
        (project_dir / ".env").write_text('FRONTEND_PORT="8080"  # public port\n')
        assert DeployConfig.load(project_dir, "staging").frontend_port == 8080

    def test_non_numeric_port_ignored(self, project_dir):
        (project_dir / ".env").write_text("FRONTEND_PORT=${PORT}\n")
        assert DeployConfig.load(project_dir, "staging").frontend_port == 3000

    def test_explicit_override_beats_env_file(self, project_dir):
        (project_dir / ".env").write_text("FRONTEND_PORT=8080\n")
        config = DeployConfig.load(project_dir, "staging", frontend_port=9000)
        assert config.frontend_port == 9000


class TestComposeLayers:
    def test_production_override_present(self, project_dir):
        layers = resolve_compose_layers(DeployConfig(project_dir=project_dir), Environment.PRODUCTION)
        assert [(l.path.name, l.role) for l in layers] == [
            ("docker-compose.yml", "base"),
            ("docker-compose.prod.yml", "override"),
        ]

    def test_override_absent(self, project_dir):
        layers = resolve_compose_layers(DeployConfig(project_dir=project_dir), Environment.STAGING)
        assert [l.path.name for l in layers] == ["docker-compose.yml"]

    @pytest.mark.parametrize(
        "env,filename",
        [(Environment.STAGING, "docker-compose.staging.yml"), (Environment.DEVELOPMENT, "docker-compose.dev.yml")],
    )
    def test_environment_override_names(self, tmp_path, env, filename):
        (tmp_path / filename).write_text("services: {}\n")
        layers = resolve_compose_layers(DeployConfig(project_dir=Path(tmp_path)), env)
        assert layers[-1].path.name == filename
