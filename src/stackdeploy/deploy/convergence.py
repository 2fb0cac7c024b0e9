"""Health-convergence polling.

After ``compose up`` the stack is not usable until every service is either
healthy (healthcheck declared and passing) or simply running (no
healthcheck declared). :func:`wait_for_convergence` polls the runtime until
that holds or a deadline passes.

Algorithm (interval ``I``, timeout ``T``)::

    start = clock(); deadline = start + T
    while clock() < deadline and not stopped:
        observe every service
        if all converged: return CONVERGED
        sleep(min(I, deadline - clock()))
    return TIMED_OUT with the last observations

With ``I=10``, ``T=30`` and a service stuck in ``starting`` this makes
three passes (t=0, 10, 20) and times out with elapsed 30. A first-pass
convergence never sleeps. On timeout, ``T <= elapsed < T + I``.

Key Concepts:
    classify(): One service -> one :class:`ServiceObservation`. Depends
        only on what the runtime reports; any inspection error yields
        ``UNKNOWN``. An ``UNHEALTHY`` verdict also fetches the service's
        last log lines for the operator (logged, never returned).
    wait_for_convergence(): The loop. ``clock`` and ``sleep`` are
        injected so tests run on a fake clock. ``stop`` (a
        ``threading.Event``) ends polling early with ``TIMED_OUT``.
    workers: With ``workers > 1`` one tick classifies services on a
        ``ThreadPoolExecutor``. Observation order still follows
        enumeration order.

Related Modules:
    - :mod:`stackdeploy.deploy.compose` provides the runtime
    - :mod:`stackdeploy.deploy.results` holds the models

Tags:
    convergence, health, polling, timeout, docker
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from stackdeploy.core.errors import StackDeployError
from stackdeploy.core.logging import get_logger
from stackdeploy.deploy.compose import ContainerRuntime
from stackdeploy.deploy.results import (
    ConvergenceResult,
    ServiceDescriptor,
    ServiceObservation,
    ServiceState,
    Verdict,
)

logger = get_logger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], None]

# Raw docker health states -> classification
_PROBE_STATES = {
    "starting": ServiceState.STARTING,
    "healthy": ServiceState.HEALTHY,
    "unhealthy": ServiceState.UNHEALTHY,
}


def _classify_status(
    descriptor: ServiceDescriptor, runtime: ContainerRuntime, log_lines: int
) -> ServiceState:
    if descriptor.has_healthcheck is not False:
        probe = runtime.inspect_health(descriptor.name)
        if probe != "none":
            state = _PROBE_STATES.get(probe)
            if state is None:
                logger.warning("convergence.unexpected_probe_state", service=descriptor.name, probe=probe)
                return ServiceState.UNKNOWN
            if state is ServiceState.UNHEALTHY:
                _log_tail(runtime, descriptor.name, log_lines)
            return state
    if runtime.is_running(descriptor.name):
        return ServiceState.RUNNING_NO_HEALTHCHECK
    return ServiceState.NOT_RUNNING


def _log_tail(runtime: ContainerRuntime, service: str, lines: int) -> None:
    if lines <= 0:
        return
    try:
        output = runtime.tail_logs(service, lines)
    except StackDeployError as exc:
        logger.warning("convergence.log_tail_failed", service=service, error=str(exc))
        return
    logger.warning("convergence.unhealthy_logs", service=service, lines=lines, logs=output)


def classify(
    descriptor: ServiceDescriptor,
    runtime: ContainerRuntime,
    *,
    log_lines: int = 20,
    clock: Clock = time.time,
) -> ServiceObservation:
    """Classify one service from its current runtime state."""
    try:
        status = _classify_status(descriptor, runtime, log_lines)
    except StackDeployError as exc:
        logger.debug("convergence.inspect_failed", service=descriptor.name, error=str(exc))
        status = ServiceState.UNKNOWN
    return ServiceObservation(name=descriptor.name, status=status, observed_at=clock())


def observe(
    runtime: ContainerRuntime,
    *,
    log_lines: int = 20,
    clock: Clock = time.time,
    workers: int = 1,
) -> tuple[ServiceObservation, ...] | None:
    """One poll pass over the current service list.

    Returns None when the service list itself could not be read.
    """
    try:
        descriptors = runtime.list_services()
    except StackDeployError as exc:
        logger.warning("convergence.enumerate_failed", error=str(exc))
        return None

    def _one(d: ServiceDescriptor) -> ServiceObservation:
        return classify(d, runtime, log_lines=log_lines, clock=clock)

    if workers > 1 and len(descriptors) > 1:
        with ThreadPoolExecutor(max_workers=min(workers, len(descriptors))) as pool:
            return tuple(pool.map(_one, descriptors))
    return tuple(_one(d) for d in descriptors)


def wait_for_convergence(
    runtime: ContainerRuntime,
    *,
    timeout: float,
    interval: float,
    clock: Clock = time.time,
    sleep: Sleep = time.sleep,
    stop: threading.Event | None = None,
    workers: int = 1,
    log_lines: int = 20,
) -> ConvergenceResult:
    """Poll until every service converges or *timeout* elapses."""
    start = clock()
    deadline = start + timeout
    passes = 0
    last: tuple[ServiceObservation, ...] = ()

    while clock() < deadline and not (stop is not None and stop.is_set()):
        passes += 1
        observations = observe(runtime, log_lines=log_lines, clock=clock, workers=workers)
        if observations is not None:
            last = observations
            pending = [o.name for o in observations if not o.converged]
            logger.info(
                "convergence.tick",
                pass_number=passes,
                services=len(observations),
                pending=pending,
            )
            if not pending:
                elapsed = clock() - start
                logger.info("convergence.converged", passes=passes, elapsed_seconds=elapsed)
                return ConvergenceResult(
                    observations=observations,
                    verdict=Verdict.CONVERGED,
                    elapsed_seconds=elapsed,
                    passes=passes,
                )
        remaining = deadline - clock()
        if remaining > 0:
            sleep(min(interval, remaining))

    elapsed = clock() - start
    logger.warning(
        "convergence.timed_out",
        passes=passes,
        elapsed_seconds=elapsed,
        pending=[o.name for o in last if not o.converged],
        stopped=bool(stop is not None and stop.is_set()),
    )
    return ConvergenceResult(
        observations=last,
        verdict=Verdict.TIMED_OUT,
        elapsed_seconds=elapsed,
        passes=passes,
    )


__all__ = ["classify", "observe", "wait_for_convergence"]
