"""
================================================================================
Runner Data Models
================================================================================

Collections are loaded once and never change during a run. Outcomes and the
summary are built up by the run sequencer and handed to report sinks.

================================================================================
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import AssertionFailure, TransportError


# ================================================================================
# Collection
# ================================================================================

@dataclass(frozen=True)
class AssertionSpec:
    """One declared check. Validated when the collection is loaded."""
    name: str
    assertion_type: str
    field: str = ""
    expected: Any = None


@dataclass(frozen=True)
class RequestDefinition:
    """A request template; placeholders are resolved at execution time."""
    name: str
    method: str
    url: str
    headers: Tuple[Tuple[str, str], ...] = ()
    body: Optional[str] = None
    json_body: Any = None
    form: Tuple[Tuple[str, str], ...] = ()
    assertions: Tuple[AssertionSpec, ...] = ()
    is_token_request: bool = False


@dataclass(frozen=True)
class Folder:
    name: str
    requests: Tuple[RequestDefinition, ...] = ()


@dataclass(frozen=True)
class Collection:
    name: str
    folders: Tuple[Folder, ...] = ()

    def folder_names(self) -> List[str]:
        return [folder.name for folder in self.folders]

    def request_count(self) -> int:
        return sum(len(folder.requests) for folder in self.folders)


# ================================================================================
# Credentials
# ================================================================================

@dataclass(frozen=True)
class Token:
    """Bearer credential held in memory for the duration of a run."""
    access_token: str
    token_type: str
    expires_at: float
    refresh_token: Optional[str] = None

    def seconds_remaining(self, now: float) -> float:
        return self.expires_at - now

    def is_valid(self, now: float, margin: float = 0.0) -> bool:
        return self.seconds_remaining(now) > margin

    @property
    def authorization(self) -> str:
        scheme = self.token_type or "Bearer"
        if scheme.lower() == "bearer":
            scheme = "Bearer"
        return f"{scheme} {self.access_token}"


# ================================================================================
# Results
# ================================================================================

@dataclass
class Verdict:
    """Pass/fail result of one assertion against one outcome."""
    name: str
    passed: bool
    message: str
    assertion_type: str = ""


@dataclass
class RequestOutcome:
    """Result of executing one request in one iteration."""
    request_name: str
    method: str
    url: str
    status: Optional[int] = None
    latency_ms: float = 0.0
    size: int = 0
    body: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    verdicts: List[Verdict] = field(default_factory=list)
    folder: str = ""
    iteration: int = 1
    error: Optional[TransportError] = None

    @property
    def transport_failed(self) -> bool:
        return self.error is not None

    @property
    def passed(self) -> bool:
        return self.error is None and all(v.passed for v in self.verdicts)

    def failed_verdicts(self) -> List[Verdict]:
        return [v for v in self.verdicts if not v.passed]

    def json(self) -> Any:
        """
        Parsed response body.

        Raises:
            ValueError: If the body is not valid JSON
        """
        if not hasattr(self, "_json_cache"):
            self._json_cache = json.loads(self.body)
        return self._json_cache

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request": self.request_name,
            "folder": self.folder,
            "iteration": self.iteration,
            "method": self.method,
            "url": self.url,
            "status": self.status,
            "latency_ms": round(self.latency_ms, 2),
            "size": self.size,
            "error": str(self.error) if self.error else None,
            "error_kind": self.error.kind.value if self.error else None,
            "verdicts": [
                {
                    "name": v.name,
                    "type": v.assertion_type,
                    "passed": v.passed,
                    "message": v.message,
                }
                for v in self.verdicts
            ],
        }


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.ABORTED, RunState.FAILED)


@dataclass
class RunStats:
    iterations: int = 0
    requests_total: int = 0
    requests_failed: int = 0
    assertions_total: int = 0
    assertions_failed: int = 0

    @property
    def requests_passed(self) -> int:
        return self.requests_total - self.requests_failed

    @property
    def assertions_passed(self) -> int:
        return self.assertions_total - self.assertions_failed


@dataclass
class Failure:
    """A single failure line for reports: transport error or failed verdict."""
    error_name: str
    message: str
    source: str
    iteration: int


@dataclass
class RunSummary:
    """Aggregate of one run, emitted once to the report sink."""
    collection_name: str
    environment_name: str = ""
    state: RunState = RunState.IDLE
    outcomes: List[RequestOutcome] = field(default_factory=list)
    iterations: int = 0
    options: Dict[str, Any] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    fatal_error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.state is RunState.COMPLETED

    @property
    def stats(self) -> RunStats:
        return RunStats(
            iterations=self.iterations,
            requests_total=len(self.outcomes),
            requests_failed=sum(1 for o in self.outcomes if o.transport_failed),
            assertions_total=sum(len(o.verdicts) for o in self.outcomes),
            assertions_failed=sum(len(o.failed_verdicts()) for o in self.outcomes),
        )

    @property
    def average_response_time(self) -> float:
        timings = [o.latency_ms for o in self.outcomes if not o.transport_failed]
        return sum(timings) / len(timings) if timings else 0.0

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def failures(self) -> List[Failure]:
        failures: List[Failure] = []
        for outcome in self.outcomes:
            source = f"{outcome.folder} / {outcome.request_name}" if outcome.folder else outcome.request_name
            if outcome.error is not None:
                failures.append(Failure(
                    error_name=type(outcome.error).__name__,
                    message=str(outcome.error),
                    source=source,
                    iteration=outcome.iteration,
                ))
            for verdict in outcome.failed_verdicts():
                failures.append(Failure(
                    error_name=AssertionFailure.__name__,
                    message=f"{verdict.name}: {verdict.message}",
                    source=source,
                    iteration=outcome.iteration,
                ))
        return failures

    def to_dict(self) -> Dict[str, Any]:
        stats = self.stats
        return {
            "collection": self.collection_name,
            "environment": self.environment_name,
            "state": self.state.value,
            "success": self.success,
            "fatal_error": self.fatal_error,
            "options": self.options,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "stats": {
                "iterations": stats.iterations,
                "requests": {"total": stats.requests_total, "failed": stats.requests_failed},
                "assertions": {"total": stats.assertions_total, "failed": stats.assertions_failed},
                "average_response_time_ms": round(self.average_response_time, 2),
            },
            "failures": [
                {
                    "error": f.error_name,
                    "message": f.message,
                    "source": f.source,
                    "iteration": f.iteration,
                }
                for f in self.failures()
            ],
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


__all__ = [
    "AssertionSpec",
    "RequestDefinition",
    "Folder",
    "Collection",
    "Token",
    "Verdict",
    "RequestOutcome",
    "RunState",
    "RunStats",
    "Failure",
    "RunSummary",
]
