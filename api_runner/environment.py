"""
================================================================================
Environment Variables
================================================================================

Named variable set used to fill ``{{name}}`` placeholders in requests.

Lookups never fall back to an empty string: an undefined name raises
SubstitutionError so a misconfigured environment fails before a malformed
request is sent. A null value (``id:`` with nothing after it) counts as
undefined; an explicit empty string is a value.

Supported file layouts (YAML or JSON):

    # plain mapping
    name: Development
    variables:
      base_url: https://gmail.googleapis.com
      client_id: ...

    # exported environment
    name: Gmail API Development
    values:
      - {key: base_url, value: https://gmail.googleapis.com, enabled: true}

================================================================================
"""

from __future__ import annotations

import csv
import re
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, MutableMapping, Optional, Union

import yaml
from loguru import logger

from .errors import ConfigError, SubstitutionError


# {{name}} with optional inner whitespace
VARIABLE_PATTERN = re.compile(r"\{\{\s*([^{}\s]+)\s*\}\}")


class Environment(MutableMapping[str, str]):
    """
    Mutable mapping of variable name to string value.

    Example:
        >>> env = Environment({"base_url": "https://api.example.com", "id": "42"})
        >>> env.resolve("{{base_url}}/users/{{id}}")
        'https://api.example.com/users/42'
    """

    def __init__(self, values: Optional[Mapping[str, Any]] = None, name: str = "") -> None:
        self.name = name
        self._values: Dict[str, str] = {}
        for key, value in (values or {}).items():
            self[key] = value

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __setitem__(self, key: str, value: Any) -> None:
        if not isinstance(key, str) or not key:
            raise ConfigError(f"Variable names must be non-empty strings, got {key!r}")
        if value is None:
            # null means undefined, never an empty string
            self._values.pop(key, None)
            return
        self._values[key] = _stringify(value)

    def __delitem__(self, key: str) -> None:
        del self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Environment(name={self.name!r}, variables={sorted(self._values)!r})"

    def lookup(self, name: str) -> str:
        """
        Value of ``name``.

        Raises:
            SubstitutionError: If the variable is not defined
        """
        try:
            return self._values[name]
        except KeyError:
            raise SubstitutionError(name) from None

    def resolve(self, text: str) -> str:
        return resolve_template(text, self)

    def resolve_structure(self, data: Any) -> Any:
        return resolve_structure(data, self)

    def overlay(self, values: Optional[Mapping[str, Any]]) -> "VariableScope":
        """Read-only view that checks ``values`` before this environment."""
        return VariableScope(self, values or {})


class VariableScope:
    """
    Read-only lookup chain used for one iteration.

    Iteration data shadows environment values; writes always go to the
    underlying Environment, never to the scope.
    """

    def __init__(self, environment: Environment, overlay: Mapping[str, Any]) -> None:
        self.environment = environment
        self._overlay = {
            key: _stringify(value) for key, value in overlay.items() if value is not None
        }

    def lookup(self, name: str) -> str:
        if name in self._overlay:
            return self._overlay[name]
        return self.environment.lookup(name)

    def resolve(self, text: str) -> str:
        return resolve_template(text, self)

    def resolve_structure(self, data: Any) -> Any:
        return resolve_structure(data, self)


Variables = Union[Environment, VariableScope]


def resolve_template(text: str, variables: Variables) -> str:
    """
    Replace every ``{{name}}`` in ``text``.

    Raises:
        SubstitutionError: On the first undefined name
    """
    def replace_var(match: "re.Match[str]") -> str:
        name = match.group(1)
        try:
            return variables.lookup(name)
        except SubstitutionError:
            raise SubstitutionError(name, text) from None

    return VARIABLE_PATTERN.sub(replace_var, text)


def resolve_structure(data: Any, variables: Variables) -> Any:
    """Recursively resolve placeholders in strings, dict keys and values, and lists."""
    if isinstance(data, str):
        return resolve_template(data, variables)
    if isinstance(data, dict):
        return {
            resolve_structure(k, variables): resolve_structure(v, variables)
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [resolve_structure(item, variables) for item in data]
    return data


def load_environment(path: Union[str, Path]) -> Environment:
    """
    Load an environment file.

    Raises:
        ConfigError: If the file is missing, unparsable, or declares a
                     variable twice
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Environment file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid environment file {path}: {e}") from e

    if not isinstance(content, dict):
        raise ConfigError(f"Environment file must contain a mapping: {path}")

    name = str(content.get("name") or path.stem)

    if "values" in content:
        values = _parse_value_list(content["values"], path)
    elif "variables" in content:
        variables = content["variables"]
        if not isinstance(variables, dict):
            raise ConfigError(f"'variables' must be a mapping in {path}")
        values = variables
    else:
        values = {k: v for k, v in content.items() if k != "name"}

    for key, value in values.items():
        if isinstance(value, (dict, list)):
            raise ConfigError(f"Variable '{key}' in {path} must be a scalar value")
        if value is None:
            logger.warning(f"Variable '{key}' in {path.name} has no value and is treated as undefined")

    environment = Environment(values, name=name)
    logger.info(f"Loaded environment '{name}' with {len(environment)} variables from {path.name}")
    return environment


def _parse_value_list(entries: Any, path: Path) -> Dict[str, Any]:
    if not isinstance(entries, list):
        raise ConfigError(f"'values' must be a list in {path}")

    values: Dict[str, Any] = {}
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict) or "key" not in entry:
            raise ConfigError(f"Entry #{index + 1} in {path} needs a 'key'")
        if entry.get("enabled", True) is False:
            continue
        key = entry["key"]
        if key in values:
            raise ConfigError(f"Variable '{key}' is declared more than once in {path}")
        values[key] = entry.get("value")
    return values


def load_iteration_data(path: Union[str, Path]) -> List[Dict[str, str]]:
    """
    Load per-iteration variables from a CSV file with a header row.

    Raises:
        ConfigError: If the file is missing or has no header
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Iteration data file not found: {path}")

    with open(path, "r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        if not reader.fieldnames:
            raise ConfigError(f"Iteration data file has no header row: {path}")
        rows = [
            {key: value for key, value in row.items() if key and value is not None}
            for row in reader
        ]

    logger.info(f"Loaded {len(rows)} iteration data rows from {path.name}")
    return rows


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


__all__ = [
    "Environment",
    "VariableScope",
    "Variables",
    "VARIABLE_PATTERN",
    "resolve_template",
    "resolve_structure",
    "load_environment",
    "load_iteration_data",
]
