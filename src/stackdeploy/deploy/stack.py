"""Service and endpoint specifications for the monitoring stack.

The stack is fixed: eight compose services, five named data volumes and
three HTTP endpoints probed after a deployment. This module holds them as
frozen dataclasses so the CLI (``ps``, access URLs) and the smoke stage
share one definition.

Key Concepts:
    StackService: Frozen dataclass describing a compose service (name,
        role, published port field on ``DeployConfig``).
    SmokeEndpoint: Frozen dataclass for one post-deploy HTTP probe (name,
        URL, required body substring, primary flag, delay before probing).
    SERVICES: Registry dict mapping name -> StackService.
    smoke_endpoints(): Bind endpoint templates to a ``DeployConfig``.

Tags:
    stack, services, registry, smoke, endpoints
"""

from __future__ import annotations

from dataclasses import dataclass

from stackdeploy.deploy.config import DeployConfig


@dataclass(frozen=True)
class StackService:
    """A compose service of the monitoring stack."""

    name: str
    role: str
    port_field: str | None = None
    """``DeployConfig`` attribute holding the published port, if any."""

    path: str = ""
    """Path appended to the access URL shown after a deployment."""


FRONTEND = StackService("frontend", "web UI", "frontend_port")
BACKEND = StackService("backend", "API")
POSTGRES = StackService("postgres", "database")
REDIS = StackService("redis", "cache")
PROMETHEUS = StackService("prometheus", "metrics", "prometheus_port")
GRAFANA = StackService("grafana", "dashboards", "grafana_port", "/grafana")
ALERTMANAGER = StackService("alertmanager", "alert routing", "alertmanager_port")
LOKI = StackService("loki", "log aggregation")

SERVICES: dict[str, StackService] = {
    s.name: s
    for s in (FRONTEND, BACKEND, POSTGRES, REDIS, PROMETHEUS, GRAFANA, ALERTMANAGER, LOKI)
}


def get_service(name: str) -> StackService:
    """Look up a stack service by name (case-insensitive)."""
    key = name.lower()
    if key not in SERVICES:
        raise KeyError(f"Unknown service: {name!r}. Available: {', '.join(sorted(SERVICES))}")
    return SERVICES[key]


def access_urls(config: DeployConfig) -> dict[str, str]:
    """Human-facing URLs of the services that publish a port."""
    return {
        s.name: config.url(getattr(config, s.port_field), s.path)
        for s in SERVICES.values()
        if s.port_field
    }


@dataclass(frozen=True)
class SmokeEndpoint:
    """One HTTP probe run after the stack converged."""

    name: str
    url: str
    primary: bool = False
    """A failing primary endpoint fails the deployment; others warn."""

    expect_substring: str | None = None
    delay_seconds: float = 0.0
    """Wait before the first attempt."""


def smoke_endpoints(config: DeployConfig) -> list[SmokeEndpoint]:
    """Endpoints probed after convergence, in probe order."""
    return [
        SmokeEndpoint(
            name="frontend",
            url=config.url(config.frontend_port, "/health"),
            primary=True,
        ),
        SmokeEndpoint(
            name="grafana",
            url=config.url(config.grafana_port, "/grafana/api/health"),
        ),
        SmokeEndpoint(
            name="prometheus",
            url=config.url(config.prometheus_port, "/api/v1/targets"),
            expect_substring='"health":"up"',
            delay_seconds=config.scrape_grace_seconds,
        ),
    ]


__all__ = [
    "StackService",
    "SERVICES",
    "get_service",
    "access_urls",
    "SmokeEndpoint",
    "smoke_endpoints",
]
