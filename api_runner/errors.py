"""
================================================================================
Runner Error Taxonomy
================================================================================

Exceptions raised by the collection runner.

    RunnerError
     +-- ConfigError          malformed collection / environment / options
     +-- AuthError            token acquisition or refresh failed
     |    +-- SubstitutionError   unresolved {{variable}} in a request
     +-- TransportError       network failure or timeout on one request
     +-- AssertionFailure     a declared check did not hold

ConfigError and AuthError end the run. TransportError and AssertionFailure
are recorded per request and only end the run when bail is enabled.

================================================================================
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class RunnerError(Exception):
    """Base class for all runner errors."""
    pass


class ConfigError(RunnerError):
    """Raised when a collection, environment, assertion or option is malformed."""
    pass


class AuthError(RunnerError):
    """
    Raised when a bearer token cannot be obtained.

    The run sequencer attaches the partial ``RunSummary`` collected before the
    failure as ``summary`` before re-raising.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.summary: Any = None


class SubstitutionError(AuthError):
    """Raised when a ``{{name}}`` placeholder has no value in the environment."""

    def __init__(self, name: str, source: str = "") -> None:
        where = f" in '{source}'" if source else ""
        super().__init__(f"Undefined variable '{name}'{where}")
        self.name = name


class TransportErrorKind(str, Enum):
    """Why a request never produced a usable response."""
    TIMEOUT = "timeout"
    NETWORK = "network"


class TransportError(RunnerError):
    """Raised by the executor when a request times out or the network fails."""

    def __init__(self, kind: TransportErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.args[0]}"


class AssertionFailure(RunnerError):
    """Failure category for a verdict that did not pass (never raised by the evaluator)."""
    pass


__all__ = [
    "RunnerError",
    "ConfigError",
    "AuthError",
    "SubstitutionError",
    "TransportErrorKind",
    "TransportError",
    "AssertionFailure",
]
