"""Post-deployment smoke checks.

Plain HTTP probes against the published endpoints once the stack has
converged. A probe passes on a 2xx response whose body contains the
endpoint's expected substring (when one is set). Failed attempts are
retried a bounded number of times with a fixed delay.

Primary endpoints gate the deployment; probing stops at the first failed
primary. Secondary endpoints only produce warnings.

Tags:
    smoke, http, httpx, health, retry
"""

from __future__ import annotations

import time
from collections.abc import Callable

import httpx

from stackdeploy.core.logging import get_logger
from stackdeploy.deploy.config import DeployConfig
from stackdeploy.deploy.results import SmokeCheckResult
from stackdeploy.deploy.stack import SmokeEndpoint, smoke_endpoints

logger = get_logger(__name__)


def probe(
    client: httpx.Client,
    endpoint: SmokeEndpoint,
    *,
    retries: int = 3,
    retry_delay: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
) -> SmokeCheckResult:
    """``GET`` *endpoint* up to ``retries + 1`` times."""
    result = SmokeCheckResult(name=endpoint.name, url=endpoint.url, primary=endpoint.primary)

    for attempt in range(1, retries + 2):
        result.attempts = attempt
        try:
            resp = client.get(endpoint.url)
        except httpx.HTTPError as exc:
            result.status_code = None
            result.error = f"{type(exc).__name__}: {exc}"
        else:
            result.status_code = resp.status_code
            if not resp.is_success:
                result.error = f"HTTP {resp.status_code}"
            elif endpoint.expect_substring and endpoint.expect_substring not in resp.text:
                result.error = f"response does not contain {endpoint.expect_substring!r}"
            else:
                result.passed = True
                result.error = None
                break
        logger.debug("smoke.attempt_failed", endpoint=endpoint.name, attempt=attempt, error=result.error)
        if attempt <= retries:
            sleep(retry_delay)

    log = logger.info if result.passed else logger.warning
    log(
        "smoke.checked",
        endpoint=endpoint.name,
        url=endpoint.url,
        passed=result.passed,
        attempts=result.attempts,
        status_code=result.status_code,
    )
    return result


def run_smoke_checks(
    config: DeployConfig,
    *,
    client: httpx.Client | None = None,
    sleep: Callable[[float], None] = time.sleep,
    endpoints: list[SmokeEndpoint] | None = None,
) -> list[SmokeCheckResult]:
    """Probe every endpoint in order, stopping after a failed primary."""
    endpoints = smoke_endpoints(config) if endpoints is None else endpoints
    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=config.http_timeout_seconds)

    results: list[SmokeCheckResult] = []
    try:
        for endpoint in endpoints:
            if endpoint.delay_seconds > 0:
                logger.info("smoke.waiting", endpoint=endpoint.name, seconds=endpoint.delay_seconds)
                sleep(endpoint.delay_seconds)
            result = probe(
                client,
                endpoint,
                retries=config.smoke_retries,
                retry_delay=config.smoke_retry_delay_seconds,
                sleep=sleep,
            )
            results.append(result)
            if endpoint.primary and not result.passed:
                break
    finally:
        if owns_client:
            client.close()
    return results


__all__ = ["probe", "run_smoke_checks"]
