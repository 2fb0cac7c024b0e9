"""Read-only queries against the stack's own monitoring APIs.

Backs the ``metrics`` and ``alerts`` commands: Prometheus active scrape
targets (``/api/v1/targets``) and Alertmanager active alerts
(``/api/v2/alerts``). Nothing here configures Prometheus or Alertmanager;
they are queried as they run.

Tags:
    monitoring, prometheus, alertmanager, httpx
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

from stackdeploy.core.errors import StackDeployError
from stackdeploy.core.logging import get_logger
from stackdeploy.deploy.config import DeployConfig

logger = get_logger(__name__)


@dataclass(frozen=True)
class ScrapeTarget:
    job: str
    instance: str
    health: str
    last_scrape: str = ""
    last_error: str = ""


@dataclass(frozen=True)
class ActiveAlert:
    name: str
    state: str
    starts_at: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)


def _get_json(client: httpx.Client, url: str) -> Any:
    try:
        resp = client.get(url)
        resp.raise_for_status()
        return resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("monitoring.query_failed", url=url, error=str(exc))
        raise StackDeployError(f"Query failed: {url}", cause=exc) from exc


def _client(config: DeployConfig, client: httpx.Client | None) -> tuple[httpx.Client, bool]:
    if client is not None:
        return client, False
    return httpx.Client(timeout=config.http_timeout_seconds), True


def fetch_targets(config: DeployConfig, client: httpx.Client | None = None) -> list[ScrapeTarget]:
    """Prometheus active scrape targets."""
    http, owned = _client(config, client)
    try:
        payload = _get_json(http, config.url(config.prometheus_port, "/api/v1/targets"))
    finally:
        if owned:
            http.close()

    targets = []
    for t in payload.get("data", {}).get("activeTargets", []):
        labels = t.get("labels", {})
        targets.append(
            ScrapeTarget(
                job=labels.get("job", t.get("scrapePool", "")),
                instance=labels.get("instance", t.get("scrapeUrl", "")),
                health=t.get("health", "unknown"),
                last_scrape=t.get("lastScrape", ""),
                last_error=t.get("lastError", ""),
            )
        )
    return targets


def fetch_alerts(config: DeployConfig, client: httpx.Client | None = None) -> list[ActiveAlert]:
    """Alertmanager alerts currently active."""
    http, owned = _client(config, client)
    try:
        payload = _get_json(http, config.url(config.alertmanager_port, "/api/v2/alerts"))
    finally:
        if owned:
            http.close()

    alerts = []
    for a in payload:
        labels = a.get("labels", {})
        alerts.append(
            ActiveAlert(
                name=labels.get("alertname", ""),
                state=a.get("status", {}).get("state", "unknown"),
                starts_at=a.get("startsAt", ""),
                labels=labels,
                annotations=a.get("annotations", {}),
            )
        )
    return alerts


__all__ = ["ScrapeTarget", "ActiveAlert", "fetch_targets", "fetch_alerts"]
