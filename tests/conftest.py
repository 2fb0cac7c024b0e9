"""
Shared pytest fixtures and configuration for stackdeploy tests.

This module provides:
- Location-based auto-markers
- Log capture for every test (nothing reaches stdout)
- ``FakeClock``: a clock/sleep pair that advances virtual time
- ``FakeRuntime``: an in-memory ContainerRuntime recording every call
- A project directory with compose and env files

Usage:
    def test_something(fake_runtime, fake_clock, project_dir):
        ...
"""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
import structlog

from stackdeploy.core.errors import RuntimeCommandError
from stackdeploy.deploy.results import ServiceDescriptor


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def captured_logs() -> Generator[list[dict[str, Any]], None, None]:
    """Capture structlog events emitted during the test."""
    with structlog.testing.capture_logs() as logs:
        yield logs


# =============================================================================
# Fakes
# =============================================================================


class FakeClock:
    """Virtual time: ``clock()`` reads it, ``clock.sleep(s)`` advances it."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []
        self.on_sleep: list[Any] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        for hook in self.on_sleep:
            hook(self.now)


class FakeRuntime:
    """In-memory ContainerRuntime.

    ``services`` maps a service name to its state::

        {"health": "healthy" | "starting" | "unhealthy" | "none" | ...,
         "running": bool,
         "has_healthcheck": True | False | None}

    ``fail`` maps a method name to the exception it raises.
    """

    def __init__(self, services: dict[str, dict[str, Any]] | None = None) -> None:
        self.services: dict[str, dict[str, Any]] = services or {}
        self.declared: list[str] | None = None
        self.volumes: set[str] = set()
        self.fail: dict[str, Exception] = {}
        self.fail_pull: set[str] = set()
        self.fail_inspect: set[str] = set()
        self.calls: list[tuple[Any, ...]] = []
        self.logs: dict[str, str] = {}

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        if name in self.fail:
            raise self.fail[name]

    def called(self, name: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == name]

    def call_names(self) -> list[str]:
        return [c[0] for c in self.calls]

    # -- ContainerRuntime --------------------------------------------------

    def check_prerequisites(self) -> None:
        self._record("check_prerequisites")

    def validate_config(self) -> None:
        self._record("validate_config")

    def declared_services(self) -> list[str]:
        self._record("declared_services")
        return list(self.declared if self.declared is not None else self.services)

    def list_services(self) -> list[ServiceDescriptor]:
        self._record("list_services")
        return [
            ServiceDescriptor(name=name, has_healthcheck=state.get("has_healthcheck"))
            for name, state in self.services.items()
        ]

    def inspect_health(self, service: str) -> str:
        self._record("inspect_health", service)
        if service in self.fail_inspect or service not in self.services:
            raise RuntimeCommandError(f"No container found for service {service!r}")
        return self.services[service].get("health", "none")

    def is_running(self, service: str) -> bool:
        self._record("is_running", service)
        if service in self.fail_inspect or service not in self.services:
            raise RuntimeCommandError(f"No container found for service {service!r}")
        return bool(self.services[service].get("running", True))

    def pull(self, service: str) -> None:
        self._record("pull", service)
        if service in self.fail_pull:
            raise RuntimeCommandError(f"pull {service} failed", stderr="manifest unknown")

    def build(self, *services: str) -> None:
        self._record("build", *services)

    def stop_all(self) -> None:
        self._record("stop_all")

    def start(self, files: list[Path]) -> None:
        self._record("start", list(files))

    def tail_logs(self, service: str, lines: int) -> str:
        self._record("tail_logs", service, lines)
        return self.logs.get(service, f"{service} log line\n")

    def restart(self) -> None:
        self._record("restart")

    def recreate(self) -> None:
        self._record("recreate")

    def scale(self, service: str, replicas: int) -> None:
        self._record("scale", service, replicas)

    def volume_exists(self, volume: str) -> bool:
        self._record("volume_exists", volume)
        return volume in self.volumes

    def archive_volume(self, volume: str, dest_dir: Path) -> Path:
        self._record("archive_volume", volume, dest_dir)
        path = dest_dir / f"{volume}.tar.gz"
        path.write_bytes(b"archive")
        return path

    def restore_volume(self, volume: str, archive: Path) -> None:
        self._record("restore_volume", volume, archive)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A project directory with base + production compose files and a full .env."""
    (tmp_path / "docker-compose.yml").write_text("services: {}\n", encoding="utf-8")
    (tmp_path / "docker-compose.prod.yml").write_text("services: {}\n", encoding="utf-8")
    (tmp_path / ".env").write_text(
        "POSTGRES_PASSWORD=pg\nREDIS_PASSWORD=redis\nGRAFANA_PASSWORD=graf\n",
        encoding="utf-8",
    )
    return tmp_path
