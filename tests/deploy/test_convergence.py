"""Tests for stackdeploy.deploy.convergence.

The poll loop runs on a virtual clock: ``fake_clock.sleep`` advances
``fake_clock()``, so timeouts of minutes run instantly.
"""

from __future__ import annotations

import threading

import pytest

from stackdeploy.core.errors import RuntimeCommandError
from stackdeploy.deploy.convergence import classify, observe, wait_for_convergence
from stackdeploy.deploy.results import ServiceDescriptor, ServiceState, Verdict


def _wait(runtime, clock, **kwargs):
    kwargs.setdefault("timeout", 30)
    kwargs.setdefault("interval", 10)
    return wait_for_convergence(runtime, clock=clock, sleep=clock.sleep, **kwargs)


# ===========================================================================
# classify
# ===========================================================================


class TestClassify:
    @pytest.mark.parametrize(
        "probe,expected",
        [
            ("starting", ServiceState.STARTING),
            ("healthy", ServiceState.HEALTHY),
            ("unhealthy", ServiceState.UNHEALTHY),
        ],
    )
    def test_probe_states(self, fake_runtime, probe, expected):
        fake_runtime.services = {"api": {"health": probe, "has_healthcheck": True}}
        obs = classify(ServiceDescriptor(name="api", has_healthcheck=True), fake_runtime)
        assert obs.status is expected
        assert obs.name == "api"

    def test_no_healthcheck_running(self, fake_runtime):
        fake_runtime.services = {"redis": {"running": True, "has_healthcheck": False}}
        obs = classify(ServiceDescriptor(name="redis", has_healthcheck=False), fake_runtime)
        assert obs.status is ServiceState.RUNNING_NO_HEALTHCHECK
        assert fake_runtime.called("inspect_health") == []

    def test_no_healthcheck_stopped(self, fake_runtime):
        fake_runtime.services = {"redis": {"running": False, "has_healthcheck": False}}
        obs = classify(ServiceDescriptor(name="redis", has_healthcheck=False), fake_runtime)
        assert obs.status is ServiceState.NOT_RUNNING

    def test_unknown_capability_resolved_by_inspection(self, fake_runtime):
        fake_runtime.services = {"loki": {"health": "none", "running": True}}
        obs = classify(ServiceDescriptor(name="loki"), fake_runtime)
        assert obs.status is ServiceState.RUNNING_NO_HEALTHCHECK
        assert fake_runtime.called("inspect_health") == [("inspect_health", "loki")]

    def test_vanished_service_is_unknown(self, fake_runtime):
        obs = classify(ServiceDescriptor(name="ghost", has_healthcheck=True), fake_runtime)
        assert obs.status is ServiceState.UNKNOWN

    def test_runtime_unreachable_is_unknown(self, fake_runtime):
        fake_runtime.services = {"api": {"health": "healthy"}}
        fake_runtime.fail["inspect_health"] = RuntimeCommandError("daemon gone")
        obs = classify(ServiceDescriptor(name="api", has_healthcheck=True), fake_runtime)
        assert obs.status is ServiceState.UNKNOWN

    def test_unexpected_probe_state_is_unknown(self, fake_runtime):
        fake_runtime.services = {"api": {"health": "exploded"}}
        obs = classify(ServiceDescriptor(name="api", has_healthcheck=True), fake_runtime)
        assert obs.status is ServiceState.UNKNOWN

    def test_unhealthy_fetches_log_tail(self, fake_runtime, captured_logs):
        fake_runtime.services = {"db": {"health": "unhealthy"}}
        fake_runtime.logs["db"] = "FATAL: password authentication failed\n"
        classify(ServiceDescriptor(name="db", has_healthcheck=True), fake_runtime, log_lines=20)

        assert fake_runtime.called("tail_logs") == [("tail_logs", "db", 20)]
        events = [e for e in captured_logs if e["event"] == "convergence.unhealthy_logs"]
        assert events and "password authentication failed" in events[0]["logs"]

    def test_failed_log_tail_is_only_logged(self, fake_runtime, captured_logs):
        fake_runtime.services = {"db": {"health": "unhealthy"}}
        fake_runtime.fail["tail_logs"] = RuntimeCommandError("logs failed")
        obs = classify(ServiceDescriptor(name="db", has_healthcheck=True), fake_runtime)

        assert obs.status is ServiceState.UNHEALTHY
        assert any(e["event"] == "convergence.log_tail_failed" for e in captured_logs)

    def test_repeatable_for_same_state(self, fake_runtime):
        fake_runtime.services = {
            "a": {"health": "healthy"},
            "b": {"health": "none", "running": False},
            "c": {"health": "starting"},
        }
        for name in fake_runtime.services:
            d = ServiceDescriptor(name=name)
            first = classify(d, fake_runtime)
            second = classify(d, fake_runtime)
            assert first.status is second.status

    def test_observation_is_immutable(self, fake_runtime):
        fake_runtime.services = {"api": {"health": "healthy"}}
        obs = classify(ServiceDescriptor(name="api"), fake_runtime)
        with pytest.raises(Exception):
            obs.status = ServiceState.UNHEALTHY


# ===========================================================================
# wait_for_convergence
# ===========================================================================


class TestWaitForConvergence:
    def test_converged_on_first_tick_without_sleep(self, fake_runtime, fake_clock):
        fake_runtime.services = {
            "frontend": {"health": "healthy"},
            "redis": {"running": True, "has_healthcheck": False},
        }
        result = _wait(fake_runtime, fake_clock)

        assert result.verdict is Verdict.CONVERGED
        assert result.passes == 1
        assert result.elapsed_seconds == 0
        assert fake_clock.sleeps == []

    def test_stuck_starting_times_out_after_three_passes(self, fake_runtime, fake_clock):
        fake_runtime.services = {
            "frontend": {"health": "starting"},
            "backend": {"health": "starting"},
        }
        result = _wait(fake_runtime, fake_clock, timeout=30, interval=10)

        assert result.verdict is Verdict.TIMED_OUT
        assert result.passes == 3
        assert result.elapsed_seconds == 30
        assert len(fake_runtime.called("list_services")) == 3

    @pytest.mark.parametrize("timeout,interval", [(30, 10), (25, 10), (300, 10), (7, 3), (5, 20)])
    def test_timeout_elapsed_bounds(self, fake_runtime, fake_clock, timeout, interval):
        fake_runtime.services = {"db": {"health": "starting"}}
        result = _wait(fake_runtime, fake_clock, timeout=timeout, interval=interval)

        assert result.verdict is Verdict.TIMED_OUT
        assert timeout <= result.elapsed_seconds < timeout + interval

    def test_converges_after_transition(self, fake_runtime, fake_clock):
        fake_runtime.services = {"grafana": {"health": "starting"}}

        def become_healthy(now):
            if now >= 20:
                fake_runtime.services["grafana"]["health"] = "healthy"

        fake_clock.on_sleep.append(become_healthy)
        result = _wait(fake_runtime, fake_clock, timeout=300, interval=10)

        assert result.verdict is Verdict.CONVERGED
        assert result.passes == 3
        assert result.elapsed_seconds == 20

    def test_mixed_states_not_converged(self, fake_runtime, fake_clock):
        fake_runtime.services = {
            "frontend": {"health": "healthy"},
            "backend": {"running": True, "has_healthcheck": False},
            "db": {"health": "unhealthy"},
        }
        result = _wait(fake_runtime, fake_clock, timeout=10, interval=10)

        statuses = {o.name: o.status for o in result.observations}
        assert statuses == {
            "frontend": ServiceState.HEALTHY,
            "backend": ServiceState.RUNNING_NO_HEALTHCHECK,
            "db": ServiceState.UNHEALTHY,
        }
        assert not result.converged
        assert result.pending() == ["db"]
        assert ("tail_logs", "db", 20) in fake_runtime.calls

    def test_empty_service_list_converges(self, fake_runtime, fake_clock):
        result = _wait(fake_runtime, fake_clock)
        assert result.converged
        assert result.observations == ()

    def test_enumeration_failure_keeps_polling(self, fake_runtime, fake_clock):
        fake_runtime.fail["list_services"] = RuntimeCommandError("daemon gone")
        result = _wait(fake_runtime, fake_clock, timeout=30, interval=10)

        assert result.verdict is Verdict.TIMED_OUT
        assert result.passes == 3
        assert result.observations == ()

    def test_stop_event_ends_early(self, fake_runtime, fake_clock):
        fake_runtime.services = {"db": {"health": "starting"}}
        stop = threading.Event()
        fake_clock.on_sleep.append(lambda now: stop.set())

        result = _wait(fake_runtime, fake_clock, timeout=300, interval=10, stop=stop)

        assert result.verdict is Verdict.TIMED_OUT
        assert result.passes == 1
        assert result.elapsed_seconds == 10

    def test_parallel_classification_keeps_order(self, fake_runtime, fake_clock):
        names = [f"svc{i}" for i in range(8)]
        fake_runtime.services = {n: {"health": "healthy"} for n in names}
        result = _wait(fake_runtime, fake_clock, workers=4)

        assert result.converged
        assert [o.name for o in result.observations] == names

    def test_last_sleep_clipped_to_deadline(self, fake_runtime, fake_clock):
        fake_runtime.services = {"db": {"health": "starting"}}
        _wait(fake_runtime, fake_clock, timeout=25, interval=10)
        assert fake_clock.sleeps == [10, 10, 5]


class TestObserve:
    def test_returns_none_when_listing_fails(self, fake_runtime):
        fake_runtime.fail["list_services"] = RuntimeCommandError("boom")
        assert observe(fake_runtime) is None

    def test_fresh_descriptors_each_pass(self, fake_runtime):
        fake_runtime.services = {"a": {"health": "healthy"}}
        first = observe(fake_runtime)
        fake_runtime.services["b"] = {"health": "starting"}
        second = observe(fake_runtime)
        assert [o.name for o in first] == ["a"]
        assert [o.name for o in second] == ["a", "b"]
