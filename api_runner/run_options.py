"""
================================================================================
Run Options
================================================================================

Typed run configuration for the sequencer.

Recognized options (camelCase and snake_case spellings both accepted):

    iterations    positive int, default 1      times the selected set repeats
    delayMs       non-negative, default 1000   pause between requests
    timeoutMs     positive, default 30000      per-request deadline
    bail          bool, default False          abort the run on first failure
    folderFilter  folder names, default all    restrict execution to folders

Any other key is reported through ``UnrecognizedOptionWarning`` and ignored.

================================================================================
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, replace
from typing import Any, FrozenSet, Iterable, Mapping, Optional

from loguru import logger

from .errors import ConfigError


DEFAULT_ITERATIONS = 1
DEFAULT_DELAY_MS = 1000
DEFAULT_TIMEOUT_MS = 30000

# Accepted spelling -> field name
_OPTION_ALIASES = {
    "iterations": "iterations",
    "iterationCount": "iterations",
    "iteration_count": "iterations",
    "delayMs": "delay_ms",
    "delay_ms": "delay_ms",
    "delay": "delay_ms",
    "delayRequest": "delay_ms",
    "timeoutMs": "timeout_ms",
    "timeout_ms": "timeout_ms",
    "timeout": "timeout_ms",
    "bail": "bail",
    "folderFilter": "folder_filter",
    "folder_filter": "folder_filter",
    "folder": "folder_filter",
}


class UnrecognizedOptionWarning(UserWarning):
    """Emitted for run option keys the runner does not know about."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Unrecognized run option '{key}' ignored")
        self.key = key


@dataclass(frozen=True)
class RunOptions:
    """Validated options for one run."""
    iterations: int = DEFAULT_ITERATIONS
    delay_ms: float = DEFAULT_DELAY_MS
    timeout_ms: float = DEFAULT_TIMEOUT_MS
    bail: bool = False
    folder_filter: Optional[FrozenSet[str]] = None

    def __post_init__(self) -> None:
        if isinstance(self.iterations, bool) or not isinstance(self.iterations, int):
            raise ConfigError(f"iterations must be an integer, got {self.iterations!r}")
        if self.iterations < 1:
            raise ConfigError(f"iterations must be positive, got {self.iterations}")
        if not _is_number(self.delay_ms) or self.delay_ms < 0:
            raise ConfigError(f"delayMs must be non-negative, got {self.delay_ms!r}")
        if not _is_number(self.timeout_ms) or self.timeout_ms <= 0:
            raise ConfigError(f"timeoutMs must be positive, got {self.timeout_ms!r}")
        if not isinstance(self.bail, bool):
            raise ConfigError(f"bail must be a boolean, got {self.bail!r}")
        if self.folder_filter is not None:
            object.__setattr__(self, "folder_filter", frozenset(self.folder_filter))

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "RunOptions":
        """
        Build options from a loosely-typed mapping (config file, CLI overrides).

        Raises:
            ConfigError: If a recognized option has an invalid value
        """
        values: dict = {}
        for key, value in (data or {}).items():
            field_name = _OPTION_ALIASES.get(key)
            if field_name is None:
                logger.warning(f"Unrecognized run option '{key}' ignored")
                warnings.warn(UnrecognizedOptionWarning(key), stacklevel=2)
                continue
            if value is None:
                continue
            if field_name == "folder_filter":
                value = _as_folder_set(value)
            elif field_name == "iterations":
                value = _as_int(key, value)
            elif field_name in ("delay_ms", "timeout_ms"):
                value = _as_number(key, value)
            elif field_name == "bail":
                value = _as_bool(key, value)
            values[field_name] = value
        return cls(**values)

    def merged(self, **overrides: Any) -> "RunOptions":
        """Return a copy with the non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "iterations": self.iterations,
            "delayMs": self.delay_ms,
            "timeoutMs": self.timeout_ms,
            "bail": self.bail,
            "folderFilter": sorted(self.folder_filter) if self.folder_filter is not None else None,
        }


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from e


def _as_number(key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be a number, got {value!r}")
    if _is_number(value):
        return value
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be a number, got {value!r}") from e


def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "1", "yes", "on", "false", "0", "no", "off"):
        return value.lower() in ("true", "1", "yes", "on")
    raise ConfigError(f"{key} must be a boolean, got {value!r}")


def _as_folder_set(value: Any) -> FrozenSet[str]:
    if isinstance(value, str):
        return frozenset([value])
    if isinstance(value, Iterable):
        names = list(value)
        if all(isinstance(name, str) for name in names):
            return frozenset(names)
    raise ConfigError(f"folderFilter must be a folder name or list of names, got {value!r}")


__all__ = [
    "RunOptions",
    "UnrecognizedOptionWarning",
    "DEFAULT_ITERATIONS",
    "DEFAULT_DELAY_MS",
    "DEFAULT_TIMEOUT_MS",
]
