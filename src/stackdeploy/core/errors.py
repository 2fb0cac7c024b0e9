"""
Structured error hierarchy for stack-deploy.

Every fatal condition in the deploy pipeline is a :class:`StackDeployError`
subclass. Each class knows its :class:`ErrorCategory` (for routing and log
filtering) and the :class:`OutcomeKind` it turns into when it halts a
deployment. Stages raise; ``DeploymentOrchestrator.deploy()`` catches the
base class and converts it into a ``DeploymentOutcome``.

Hierarchy::

    StackDeployError
    ├── InvalidEnvironmentError      (VALIDATION)
    ├── PrerequisiteMissingError     (PREREQUISITE)
    ├── ConfigInvalidError           (CONFIG)
    ├── DeploymentCancelled          (CANCELLED)
    ├── BuildFailedError             (BUILD)
    ├── RestartFailedError           (RUNTIME)
    ├── ConvergenceTimeoutError      (CONVERGENCE)
    ├── SmokeCheckFailedError        (SMOKE)
    └── RuntimeCommandError          (RUNTIME)

``RuntimeCommandError`` is the low-level failure of one docker CLI call.
Callers either translate it into the stage-specific class or downgrade it
to a warning (pull failures, volume backups, log tails).

Tags:
    errors, exceptions, taxonomy, outcome
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories for classification and log routing."""

    VALIDATION = "VALIDATION"
    PREREQUISITE = "PREREQUISITE"
    CONFIG = "CONFIG"
    CANCELLED = "CANCELLED"
    BUILD = "BUILD"
    RUNTIME = "RUNTIME"
    CONVERGENCE = "CONVERGENCE"
    SMOKE = "SMOKE"
    INTERNAL = "INTERNAL"


class OutcomeKind(str, Enum):
    """Final verdict of a deployment run."""

    SUCCESS = "success"
    INVALID_ENVIRONMENT = "invalid_environment"
    PREREQUISITE_MISSING = "prerequisite_missing"
    CONFIG_INVALID = "config_invalid"
    CANCELLED = "cancelled"
    BUILD_FAILED = "build_failed"
    RESTART_FAILED = "restart_failed"
    CONVERGENCE_TIMEOUT = "convergence_timeout"
    SMOKE_CHECK_FAILED = "smoke_check_failed"


class StackDeployError(Exception):
    """Base exception for all stack-deploy errors.

    Subclasses set ``default_category`` and ``outcome`` class attributes.
    ``details`` carries structured metadata for logging.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    outcome: OutcomeKind | None = None

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        cause: Exception | None = None,
        **details: Any,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.cause = cause
        self.details = details
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logging."""
        result: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
        }
        if self.outcome is not None:
            result["outcome"] = self.outcome.value
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        result.update(self.details)
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


class InvalidEnvironmentError(StackDeployError):
    """Environment selector is not one of the supported environments."""

    default_category = ErrorCategory.VALIDATION
    outcome = OutcomeKind.INVALID_ENVIRONMENT

    def __init__(self, value: str, allowed: list[str]):
        self.value = value
        self.allowed = allowed
        super().__init__(
            f"Unknown environment {value!r}; expected one of: {', '.join(allowed)}",
            value=value,
        )


class PrerequisiteMissingError(StackDeployError):
    """Docker, the compose CLI, or the docker daemon is unavailable."""

    default_category = ErrorCategory.PREREQUISITE
    outcome = OutcomeKind.PREREQUISITE_MISSING


class ConfigInvalidError(StackDeployError):
    """The compose configuration failed validation."""

    default_category = ErrorCategory.CONFIG
    outcome = OutcomeKind.CONFIG_INVALID


class DeploymentCancelled(StackDeployError):
    """The operator declined the confirmation prompt."""

    default_category = ErrorCategory.CANCELLED
    outcome = OutcomeKind.CANCELLED


class BuildFailedError(StackDeployError):
    """Image build failed."""

    default_category = ErrorCategory.BUILD
    outcome = OutcomeKind.BUILD_FAILED


class RestartFailedError(StackDeployError):
    """Stopping the previous generation or starting the new one failed."""

    default_category = ErrorCategory.RUNTIME
    outcome = OutcomeKind.RESTART_FAILED


class ConvergenceTimeoutError(StackDeployError):
    """Services did not converge before the deadline."""

    default_category = ErrorCategory.CONVERGENCE
    outcome = OutcomeKind.CONVERGENCE_TIMEOUT


class SmokeCheckFailedError(StackDeployError):
    """The primary post-deployment smoke check failed."""

    default_category = ErrorCategory.SMOKE
    outcome = OutcomeKind.SMOKE_CHECK_FAILED


class RuntimeCommandError(StackDeployError):
    """A docker CLI invocation failed or timed out."""

    default_category = ErrorCategory.RUNTIME

    def __init__(
        self,
        message: str,
        *,
        args: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
        **kwargs: Any,
    ):
        self.command = list(args or [])
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message, returncode=returncode, **kwargs)


__all__ = [
    "ErrorCategory",
    "OutcomeKind",
    "StackDeployError",
    "InvalidEnvironmentError",
    "PrerequisiteMissingError",
    "ConfigInvalidError",
    "DeploymentCancelled",
    "BuildFailedError",
    "RestartFailedError",
    "ConvergenceTimeoutError",
    "SmokeCheckFailedError",
    "RuntimeCommandError",
]
