import json

import pytest

from api_runner.collection_loader import load_collection, parse_collection
from api_runner.errors import ConfigError


def _collection(*requests, folder="Folder"):
    return {"name": "Sample", "folders": [{"name": folder, "requests": list(requests)}]}


def test_parses_folders_requests_and_assertions():
    collection = parse_collection({
        "name": "Sample",
        "folders": [
            {"name": "Auth", "requests": [
                {"name": "Token", "method": "post", "url": "{{token_url}}", "auth": "none",
                 "form": {"grant_type": "refresh_token", "refresh_token": "{{refresh_token}}"}},
            ]},
            {"name": "Users", "requests": [
                {"name": "Get User", "url": "{{base_url}}/users/{{id}}",
                 "headers": {"Accept": "application/json"},
                 "assertions": [
                     {"type": "status_equals", "expected": 200},
                     {"type": "field_present", "field": "id"},
                 ]},
            ]},
        ],
    })

    assert collection.name == "Sample"
    assert collection.folder_names() == ["Auth", "Users"]
    assert collection.request_count() == 2

    token = collection.folders[0].requests[0]
    assert token.method == "POST"
    assert token.is_token_request
    assert dict(token.form)["grant_type"] == "refresh_token"

    user = collection.folders[1].requests[0]
    assert user.method == "GET"
    assert user.url == "{{base_url}}/users/{{id}}"
    assert user.headers == (("Accept", "application/json"),)
    assert [a.assertion_type for a in user.assertions] == ["status_equals", "field_present"]
    assert not user.is_token_request


def test_token_request_flag():
    collection = parse_collection(_collection(
        {"name": "A", "url": "u", "token_request": True},
        {"name": "B", "url": "u", "auth": "bearer"},
    ))
    assert [r.is_token_request for r in collection.folders[0].requests] == [True, False]


def test_scalar_header_values_become_strings():
    collection = parse_collection(_collection(
        {"name": "A", "url": "u", "headers": {"X-Count": 3, "X-Flag": True}},
    ))
    assert collection.folders[0].requests[0].headers == (("X-Count", "3"), ("X-Flag", "true"))


def test_empty_header_value_is_kept():
    collection = parse_collection(_collection({"name": "A", "url": "u", "headers": {"X-Empty": ""}}))
    assert collection.folders[0].requests[0].headers == (("X-Empty", ""),)


@pytest.mark.parametrize(
    "content",
    [
        [],
        {"folders": []},
        {"folders": [{"requests": []}]},
        {"folders": [{"name": "A"}, {"name": "A"}]},
        _collection({"url": "u"}),
        _collection({"name": "A"}),
        _collection({"name": "A", "url": "u", "method": "FETCH"}),
        _collection({"name": "A", "url": "u", "body": "x", "json": {"a": 1}}),
        _collection({"name": "A", "url": "u", "body": {"a": 1}}),
        _collection({"name": "A", "url": "u", "headers": ["Accept"]}),
        _collection({"name": "A", "url": "u", "form": {"a": {"b": 1}}}),
        _collection({"name": "A", "url": "u", "headers": {"X-User": None}}),
        _collection({"name": "A", "url": "u", "assertions": [{"type": "field_present", "field": "messages[abc].id"}]}),
        _collection({"name": "A", "url": "u", "assertions": [{"type": "status_is_ok"}]}),
        _collection({"name": "A", "url": "u", "assertions": [{"type": "field_equals"}]}),
    ],
    ids=[
        "not-a-mapping", "no-folders", "folder-without-name", "duplicate-folder",
        "request-without-name", "request-without-url", "unsupported-method",
        "two-bodies", "structured-raw-body", "headers-list", "nested-form",
        "null-header-value", "bad-field-path",
        "unknown-assertion", "assertion-missing-field",
    ],
)
def test_malformed_collections_are_rejected(content):
    with pytest.raises(ConfigError):
        parse_collection(content)


def test_load_json_collection(tmp_path):
    path = tmp_path / "sample.json"
    path.write_text(json.dumps(_collection({"name": "Ping", "url": "{{base_url}}/ping"})), encoding="utf-8")

    collection = load_collection(path)
    assert collection.folders[0].requests[0].name == "Ping"


def test_collection_name_defaults_to_file_stem(tmp_path):
    path = tmp_path / "nightly.yaml"
    path.write_text("folders:\n  - name: A\n    requests: []\n", encoding="utf-8")
    assert load_collection(path).name == "nightly"


def test_invalid_yaml(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("folders: [\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_collection(path)


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_collection(tmp_path / "missing.yaml")


def test_repository_collection_loads(project_root):
    collection = load_collection(project_root / "collections" / "gmail_api_e2e.yaml")

    assert collection.folder_names() == [
        "Authentication",
        "Profile & User Info",
        "Labels",
        "Messages",
        "Threads & History",
    ]
    assert collection.folders[0].requests[0].is_token_request
    assert all(request.assertions for folder in collection.folders for request in folder.requests)
