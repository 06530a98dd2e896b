"""
================================================================================
Test Suite Pytest Configuration
================================================================================

Registers markers and provides the fakes shared by the unit tests:

    - fake_api: httpx MockTransport handler with canned routes
    - clock: controllable epoch clock for token expiry
    - executor / token_manager: runner collaborators wired to fake_api
    - make_collection: builds a Collection from plain dicts

================================================================================
"""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, Generator, List, Optional, Tuple

import httpx
import pytest

from api_runner.collection_loader import parse_collection
from api_runner.environment import Environment
from api_runner.http_client import RequestExecutor
from api_runner.models import Collection
from api_runner.token_manager import TokenManager


TOKEN_URL = "https://oauth.example.com/token"
BASE_URL = "https://api.example.com"


def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line("markers", "auth: Tests related to token handling")
    config.addinivalue_line("markers", "sequencer: Tests for run sequencing and bail policy")
    config.addinivalue_line("markers", "reporting: Tests for report sinks")


class FakeApi:
    """
    Routes requests to canned responses and records every call.

    A route's response may be a callable taking the httpx.Request, which lets
    a test raise transport exceptions or vary the reply.
    """

    def __init__(self) -> None:
        self.calls: List[httpx.Request] = []
        self._routes: Dict[Tuple[str, str], Any] = {}

    def route(
        self,
        method: str,
        url: str,
        status: int = 200,
        json_body: Any = None,
        text: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        handler: Optional[Callable[[httpx.Request], httpx.Response]] = None,
    ) -> None:
        if handler is None:
            def handler(request: httpx.Request) -> httpx.Response:
                if json_body is not None:
                    return httpx.Response(status, json=json_body, headers=headers)
                return httpx.Response(status, text=text or "", headers=headers)
        self._routes[(method.upper(), url)] = handler

    def calls_to(self, url: str) -> List[httpx.Request]:
        return [call for call in self.calls if str(call.url).split("?")[0] == url]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        key = (request.method, str(request.url).split("?")[0])
        handler = self._routes.get(key)
        if handler is None:
            return httpx.Response(404, json={"error": {"message": f"no route for {key}"}})
        return handler(request)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def token_payload(access_token: str = "at-1", expires_in: int = 3600) -> Dict[str, Any]:
    return {"access_token": access_token, "expires_in": expires_in, "token_type": "Bearer"}


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def executor(fake_api: FakeApi) -> Generator[RequestExecutor, None, None]:
    with RequestExecutor(transport=httpx.MockTransport(fake_api)) as ex:
        yield ex


@pytest.fixture
def token_manager(fake_api: FakeApi, clock: FakeClock) -> Generator[TokenManager, None, None]:
    fake_api.route("POST", TOKEN_URL, json_body=token_payload())
    client = httpx.Client(transport=httpx.MockTransport(fake_api))
    manager = TokenManager(TOKEN_URL, client=client, clock=clock)
    yield manager
    client.close()


@pytest.fixture
def environment() -> Environment:
    return Environment(
        {
            "base_url": BASE_URL,
            "token_url": TOKEN_URL,
            "client_id": "client-123",
            "client_secret": "secret-456",
            "refresh_token": "rt-789",
            "id": "42",
        },
        name="Test",
    )


@pytest.fixture
def make_collection() -> Callable[..., Collection]:
    """
    Build a collection from {folder name: [request dicts]}.

    Requests default to GET {{base_url}}/<slug> with a status_equals 200 check.
    """
    def build(folders: Dict[str, List[Dict[str, Any]]], name: str = "Test Collection") -> Collection:
        data = {"name": name, "folders": []}
        for folder_name, requests in folders.items():
            entries = []
            for request in requests:
                entry = {
                    "method": "GET",
                    "url": "{{base_url}}/" + request["name"].lower().replace(" ", "-"),
                    "assertions": [{"type": "status_equals", "expected": 200}],
                }
                entry.update(request)
                entries.append(entry)
            data["folders"].append({"name": folder_name, "requests": entries})
        return parse_collection(json.loads(json.dumps(data)))

    return build
