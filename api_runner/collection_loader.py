"""
================================================================================
Collection Loader Module
================================================================================

Loads a request collection (folders -> ordered requests -> assertions) from a
YAML or JSON file.

Key Features:
- YAML definitions (JSON files parse through the same loader)
- Placeholders ({{name}}) are kept verbatim and resolved at execution time
- Every assertion is validated here, so a bad declaration stops the run
  before any request is sent

Example:
    collection = load_collection("collections/gmail_api_e2e.yaml")
    for folder in collection.folders:
        print(folder.name, len(folder.requests))

================================================================================
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Tuple, Union

import yaml
from loguru import logger

from .assertion_executor import build_assertion
from .errors import ConfigError
from .models import Collection, Folder, RequestDefinition

SUPPORTED_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}

# Values of `auth:` that mark a request as exempt from the bearer header
_NO_AUTH_VALUES = {"none", "noauth", "token", "token_request"}


def load_collection(path: Union[str, Path]) -> Collection:
    """
    Load and validate a collection file.

    Raises:
        ConfigError: If the file is missing, unparsable, or any folder,
                     request or assertion is malformed
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Collection file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"YAML parsing error in {path}: {e}") from e

    collection = parse_collection(content, default_name=path.stem)
    logger.info(
        f"Loaded collection '{collection.name}' from {path.name}: "
        f"{len(collection.folders)} folders, {collection.request_count()} requests"
    )
    return collection


def parse_collection(content: Any, default_name: str = "collection") -> Collection:
    """Build a Collection from already-parsed data."""
    if not isinstance(content, Mapping):
        raise ConfigError("Collection must be a mapping with a 'folders' list")

    folders_data = content.get("folders")
    if not isinstance(folders_data, list) or not folders_data:
        raise ConfigError("Collection must declare a non-empty 'folders' list")

    folders: List[Folder] = []
    seen: set = set()
    for index, folder_data in enumerate(folders_data):
        folder = _parse_folder(folder_data, index)
        if folder.name in seen:
            raise ConfigError(f"Folder '{folder.name}' is declared more than once")
        seen.add(folder.name)
        folders.append(folder)

    return Collection(name=str(content.get("name") or default_name), folders=tuple(folders))


def _parse_folder(data: Any, index: int) -> Folder:
    if not isinstance(data, Mapping):
        raise ConfigError(f"Folder #{index + 1} must be a mapping")

    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError(f"Folder #{index + 1} is missing a 'name'")

    requests_data = data.get("requests", [])
    if not isinstance(requests_data, list):
        raise ConfigError(f"Folder '{name}': 'requests' must be a list")

    requests = tuple(
        _parse_request(request_data, f"{name} #{position + 1}")
        for position, request_data in enumerate(requests_data)
    )
    return Folder(name=name, requests=requests)


def _parse_request(data: Any, source: str) -> RequestDefinition:
    if not isinstance(data, Mapping):
        raise ConfigError(f"Request {source} must be a mapping")

    name = data.get("name")
    url = data.get("url")
    if not isinstance(name, str) or not name:
        raise ConfigError(f"Request {source} is missing a 'name'")
    if not isinstance(url, str) or not url:
        raise ConfigError(f"Request '{name}' is missing a 'url'")
    source = f"{source} '{name}'"

    method = str(data.get("method", "GET")).upper()
    if method not in SUPPORTED_METHODS:
        raise ConfigError(f"Request {source}: unsupported method '{method}'")

    body_kinds = [key for key in ("body", "json", "form") if data.get(key) is not None]
    if len(body_kinds) > 1:
        raise ConfigError(f"Request {source}: declare only one of {body_kinds}")

    body = data.get("body")
    if body is not None and not isinstance(body, str):
        raise ConfigError(f"Request {source}: 'body' must be a string (use 'json' for structures)")

    assertions_data = data.get("assertions", [])
    if not isinstance(assertions_data, list):
        raise ConfigError(f"Request {source}: 'assertions' must be a list")
    assertions = tuple(
        build_assertion(assertion_data, f"{source} assertion #{position + 1}")
        for position, assertion_data in enumerate(assertions_data)
    )

    return RequestDefinition(
        name=name,
        method=method,
        url=url,
        headers=_string_pairs(data.get("headers"), "headers", source),
        body=body,
        json_body=data.get("json"),
        form=_string_pairs(data.get("form"), "form", source),
        assertions=assertions,
        is_token_request=_is_token_request(data),
    )


def _string_pairs(value: Any, label: str, source: str) -> Tuple[Tuple[str, str], ...]:
    if value is None:
        return ()
    if not isinstance(value, Mapping):
        raise ConfigError(f"Request {source}: '{label}' must be a mapping")
    pairs: Dict[str, str] = {}
    for key, item in value.items():
        if isinstance(item, (dict, list)):
            raise ConfigError(f"Request {source}: {label} value '{key}' must be a scalar")
        if item is None:
            raise ConfigError(f"Request {source}: {label} value '{key}' is null (use \"\" for an empty value)")
        if isinstance(item, bool):
            item = "true" if item else "false"
        pairs[str(key)] = str(item)
    return tuple(pairs.items())


def _is_token_request(data: Mapping[str, Any]) -> bool:
    if data.get("token_request") is True:
        return True
    auth = data.get("auth")
    return isinstance(auth, str) and auth.lower() in _NO_AUTH_VALUES


__all__ = [
    "load_collection",
    "parse_collection",
    "SUPPORTED_METHODS",
]
