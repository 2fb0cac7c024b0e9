"""Configuration models for stack deployments.

Provides the immutable :class:`DeployConfig` consumed by every stage of a
deployment and by the stack maintenance operations, plus the environment
selector and the ordered compose-file layering.

Key Concepts:
    Environment: Enum of the three supported targets (production, staging,
        development). :func:`parse_environment` is the only gate.
    DeployConfig: Frozen pydantic model. Built once at the CLI boundary via
        ``from_env()`` (``STACKDEPLOY_*`` variables) or ``load()`` (reads the
        env file as well). Nothing below the CLI reads ``os.environ``.
    ComposeLayer: One ``-f`` file in the compose invocation. The base file
        comes first, then the environment override when it exists.

Architecture Decisions:
    - Pydantic v2 with ``frozen=True``: the config is shared by the poll
      loop, the smoke checks and the backup stage; no stage may mutate it.
    - from_env() classmethod: explicit env-var parsing rather than
      ``pydantic-settings``. Override precedence: kwargs > env vars > defaults.
    - Ports come from the env file (``FRONTEND_PORT`` etc.) because the
      compose files publish them from the same variables.

Related Modules:
    - :mod:`stackdeploy.core.envfile` parses the env file
    - :mod:`stackdeploy.deploy.compose` turns layers into ``-f`` flags
    - :mod:`stackdeploy.deploy.orchestrator` consumes the config

Tags:
    config, settings, pydantic, deployment, environment, compose
"""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from stackdeploy.core.envfile import load_env_file, resolve_env_file
from stackdeploy.core.errors import InvalidEnvironmentError


class Environment(str, Enum):
    """Deployment target."""

    PRODUCTION = "production"
    STAGING = "staging"
    DEVELOPMENT = "development"


# Environment -> compose override file layered on top of the base file
OVERRIDE_FILES: dict[Environment, str] = {
    Environment.PRODUCTION: "docker-compose.prod.yml",
    Environment.STAGING: "docker-compose.staging.yml",
    Environment.DEVELOPMENT: "docker-compose.dev.yml",
}

BASE_COMPOSE_FILE = "docker-compose.yml"

DEFAULT_REQUIRED_SECRETS = ["POSTGRES_PASSWORD", "REDIS_PASSWORD", "GRAFANA_PASSWORD"]

DEFAULT_VOLUMES = [
    "postgres-data",
    "grafana-data",
    "prometheus-data",
    "alertmanager-data",
    "loki-data",
]

# env-file key -> DeployConfig field
PORT_KEYS: dict[str, str] = {
    "FRONTEND_PORT": "frontend_port",
    "GRAFANA_PORT": "grafana_port",
    "PROMETHEUS_PORT": "prometheus_port",
    "ALERTMANAGER_PORT": "alertmanager_port",
}


def parse_environment(value: str | Environment) -> Environment:
    """Return the :class:`Environment` for *value* or raise.

    Matching ignores case and surrounding whitespace.
    """
    if isinstance(value, Environment):
        return value
    try:
        return Environment(str(value).strip().lower())
    except ValueError:
        raise InvalidEnvironmentError(str(value), [e.value for e in Environment]) from None


@dataclass(frozen=True)
class ComposeLayer:
    """One compose file in the ``-f`` chain."""

    path: Path
    role: str  # "base" or "override"


def resolve_compose_layers(config: DeployConfig, environment: Environment) -> list[ComposeLayer]:
    """Base file, then the environment override if it exists on disk."""
    layers = [ComposeLayer(path=config.project_dir / config.compose_file, role="base")]
    override = config.project_dir / OVERRIDE_FILES[environment]
    if override.is_file():
        layers.append(ComposeLayer(path=override, role="override"))
    return layers


class DeployConfig(BaseModel):
    """Immutable settings for one deployment or stack operation.

    Example::

        config = DeployConfig.load(Path("."), "staging", assume_yes=True)
        outcome = deploy("staging", config)
    """

    model_config = ConfigDict(frozen=True)

    # Project layout
    project_dir: Path = Field(default=Path("."), description="Directory holding the compose files")
    project_name: str = Field(
        default="docker-monitoring-stack",
        description="Compose project name; prefixes named volumes",
    )
    compose_file: str = Field(default=BASE_COMPOSE_FILE, description="Base compose file name")
    env_file: Path | None = Field(default=None, description="Resolved env file (None if absent)")
    env_values: dict[str, str] = Field(
        default_factory=dict,
        description="Key-value pairs parsed from the env file",
    )
    required_secrets: list[str] = Field(
        default_factory=lambda: list(DEFAULT_REQUIRED_SECRETS),
        description="Variables that must be non-empty (missing -> warning)",
    )

    # Published ports
    host: str = Field(default="localhost", description="Host the smoke checks target")
    frontend_port: int = 3000
    grafana_port: int = 3000
    prometheus_port: int = 9090
    alertmanager_port: int = 9093

    # Convergence
    convergence_timeout_seconds: float = Field(default=300.0, gt=0)
    poll_interval_seconds: float = Field(default=10.0, gt=0)
    classify_workers: int = Field(default=1, ge=1, description="Threads per poll tick")
    log_tail_lines: int = Field(default=20, ge=0, description="Log lines fetched for unhealthy services")

    # Restart
    settle_seconds: float = Field(default=5.0, ge=0, description="Pause after stopping services")

    # Smoke checks
    smoke_retries: int = Field(default=3, ge=0)
    smoke_retry_delay_seconds: float = Field(default=5.0, ge=0)
    scrape_grace_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Wait before checking Prometheus scrape targets",
    )
    http_timeout_seconds: float = Field(default=10.0, gt=0)

    # Backup
    backup_root: Path = Field(default=Path("backups"), description="Parent of timestamped backup dirs")
    volumes: list[str] = Field(
        default_factory=lambda: list(DEFAULT_VOLUMES),
        description="Named data volumes, without the project prefix",
    )
    backup_image: str = Field(default="alpine", description="Image used to tar volumes")

    # Execution
    command_timeout_seconds: float = Field(default=1800.0, gt=0, description="Per docker CLI call")
    assume_yes: bool = Field(default=False, description="Skip the production confirmation prompt")
    output_dir: Path | None = Field(default=None, description="Write summary.json here when set")

    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    def volume_name(self, volume: str) -> str:
        """Full docker volume name (``<project>_<volume>``)."""
        return f"{self.project_name}_{volume}"

    def missing_secrets(self) -> list[str]:
        """Required secrets that are absent or empty."""
        return [key for key in self.required_secrets if not self.env_values.get(key)]

    def url(self, port: int, path: str = "") -> str:
        return f"http://{self.host}:{port}{path}"

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls, **overrides: Any) -> DeployConfig:
        """Create config from STACKDEPLOY_* environment variables."""
        env_map = {
            "project_dir": "STACKDEPLOY_PROJECT_DIR",
            "project_name": "STACKDEPLOY_PROJECT_NAME",
            "host": "STACKDEPLOY_HOST",
            "convergence_timeout_seconds": "STACKDEPLOY_TIMEOUT_SECONDS",
            "poll_interval_seconds": "STACKDEPLOY_POLL_INTERVAL_SECONDS",
            "classify_workers": "STACKDEPLOY_CLASSIFY_WORKERS",
            "backup_root": "STACKDEPLOY_BACKUP_ROOT",
            "output_dir": "STACKDEPLOY_OUTPUT_DIR",
            "assume_yes": "STACKDEPLOY_ASSUME_YES",
        }
        values: dict[str, Any] = {}
        for field_name, env_var in env_map.items():
            env_val = os.environ.get(env_var)
            if env_val is None:
                continue
            try:
                if field_name in ("convergence_timeout_seconds", "poll_interval_seconds"):
                    values[field_name] = float(env_val)
                elif field_name == "classify_workers":
                    values[field_name] = int(env_val)
                elif field_name == "assume_yes":
                    values[field_name] = env_val.lower() in ("true", "1", "yes")
                elif field_name in ("project_dir", "backup_root", "output_dir"):
                    values[field_name] = Path(env_val)
                else:
                    values[field_name] = env_val
            except ValueError as exc:
                raise ValueError(f"{env_var}={env_val!r} is not a valid value") from exc
        values.update(overrides)
        return cls(**values)

    @classmethod
    def load(cls, project_dir: Path, environment: str, **overrides: Any) -> DeployConfig:
        """Build config for *environment* from env vars and the env file.

        The env file is ``.env.<environment>`` if present, else ``.env``.
        Real environment variables win over file values for the required
        secrets. Port overrides (``FRONTEND_PORT`` ...) apply unless given
        explicitly in *overrides*.
        """
        project_dir = Path(overrides.pop("project_dir", project_dir))
        env_file = resolve_env_file(project_dir, str(environment).strip().lower())
        env_values = load_env_file(env_file) if env_file is not None else {}

        required = overrides.get("required_secrets", DEFAULT_REQUIRED_SECRETS)
        for key in required:
            if os.environ.get(key):
                env_values[key] = os.environ[key]

        values: dict[str, Any] = {
            "project_dir": project_dir,
            "env_file": env_file,
            "env_values": env_values,
        }
        for key, field_name in PORT_KEYS.items():
            raw = env_values.get(key, "").strip()
            if raw.isdigit():
                values[field_name] = int(raw)
        values.update(overrides)
        return cls.from_env(**values)


__all__ = [
    "Environment",
    "OVERRIDE_FILES",
    "BASE_COMPOSE_FILE",
    "DEFAULT_REQUIRED_SECRETS",
    "DEFAULT_VOLUMES",
    "PORT_KEYS",
    "parse_environment",
    "ComposeLayer",
    "resolve_compose_layers",
    "DeployConfig",
]
