"""
================================================================================
Request Executor with Allure Integration
================================================================================

Issues one collection request and returns a structured outcome:
    - {{variable}} substitution in URL, headers and body before sending
    - Bearer authorization for every request except token-issuance requests
    - Per-request deadline; timeouts and network failures raise TransportError
    - No automatic retry: retry/abort policy belongs to the run sequencer
    - Allure attachments with masked headers/body and a cURL command

================================================================================
"""

from __future__ import annotations

import json
import time
from typing import Any, Dict, Optional, Tuple

import allure
import httpx
from allure_commons.types import AttachmentType
from loguru import logger

from .environment import Variables
from .errors import TransportError, TransportErrorKind
from .models import RequestDefinition, RequestOutcome, Token


# Maximum response length to include in Allure reports
MAX_RESPONSE_LENGTH = 3000

SENSITIVE_HEADERS = {"authorization", "x-api-key", "x-app-auth", "cookie", "set-cookie"}
SENSITIVE_FIELDS = ("password", "secret", "token", "api_key", "authorization", "session")


class PreparedRequest:
    """A request with every placeholder resolved, ready to send."""

    def __init__(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        content: Optional[str] = None,
        json_body: Any = None,
        form: Optional[Dict[str, str]] = None,
    ) -> None:
        self.method = method
        self.url = url
        self.headers = headers
        self.content = content
        self.json_body = json_body
        self.form = form

    def send_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"headers": self.headers}
        if self.content is not None:
            kwargs["content"] = self.content.encode("utf-8")
        elif self.json_body is not None:
            kwargs["json"] = self.json_body
        elif self.form:
            kwargs["data"] = self.form
        return kwargs


class RequestExecutor:
    """
    Executes collection requests one at a time.

    Usage:
        >>> with RequestExecutor() as executor:
        ...     outcome = executor.execute(request, environment, token, timeout_ms=30000)
        ...     print(outcome.status, outcome.latency_ms)
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Any = time.perf_counter,
    ) -> None:
        """
        Args:
            client: httpx client to use; created on __enter__ if None
            transport: Optional transport for the created client
            clock: Monotonic clock in seconds, used for latency
        """
        self._client = client
        self._owns_client = client is None
        self._transport = transport
        self._clock = clock

    def __enter__(self) -> "RequestExecutor":
        if self._client is None:
            self._client = httpx.Client(transport=self._transport, follow_redirects=True)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None

    def prepare(
        self,
        request: RequestDefinition,
        variables: Variables,
        token: Optional[Token] = None,
    ) -> PreparedRequest:
        """
        Resolve placeholders and attach authorization.

        Raises:
            SubstitutionError: If any placeholder is undefined
        """
        url = variables.resolve(request.url)
        headers = {
            variables.resolve(key): variables.resolve(value)
            for key, value in request.headers
        }

        if token is not None and not request.is_token_request:
            headers = {k: v for k, v in headers.items() if k.lower() != "authorization"}
            headers["Authorization"] = token.authorization

        content = variables.resolve(request.body) if request.body is not None else None
        json_body = (
            variables.resolve_structure(request.json_body)
            if request.json_body is not None else None
        )
        form = {
            variables.resolve(key): variables.resolve(value)
            for key, value in request.form
        } or None

        return PreparedRequest(request.method, url, headers, content, json_body, form)

    def execute(
        self,
        request: RequestDefinition,
        variables: Variables,
        token: Optional[Token],
        timeout_ms: float,
    ) -> RequestOutcome:
        """
        Execute a single request.

        Args:
            request: Request template from the collection
            variables: Environment (or iteration scope) for substitution
            token: Bearer token; ignored for token-issuance requests
            timeout_ms: Deadline for the whole request

        Returns:
            RequestOutcome with an empty verdict list

        Raises:
            SubstitutionError: Before any network call, if a placeholder is undefined
            TransportError: On timeout, network failure, redirect loop or undecodable body
        """
        if self._client is None:
            raise RuntimeError(
                "RequestExecutor must be used within a context manager. "
                "Use 'with RequestExecutor() as executor:'"
            )

        prepared = self.prepare(request, variables, token)
        timeout_s = timeout_ms / 1000.0

        started = self._clock()
        try:
            response = self._client.request(
                prepared.method,
                prepared.url,
                timeout=httpx.Timeout(timeout_s),
                **prepared.send_kwargs(),
            )
        except httpx.TimeoutException as e:
            raise TransportError(
                TransportErrorKind.TIMEOUT,
                f"{prepared.method} {prepared.url} exceeded {timeout_ms:.0f}ms ({e.__class__.__name__})",
            ) from e
        except (httpx.RequestError, httpx.InvalidURL) as e:
            # TransportError, TooManyRedirects, DecodingError
            raise TransportError(
                TransportErrorKind.NETWORK,
                f"{prepared.method} {prepared.url} failed: {e}",
            ) from e
        latency_ms = (self._clock() - started) * 1000.0

        if latency_ms > timeout_ms:
            raise TransportError(
                TransportErrorKind.TIMEOUT,
                f"{prepared.method} {prepared.url} took {latency_ms:.0f}ms, deadline {timeout_ms:.0f}ms",
            )

        outcome = RequestOutcome(
            request_name=request.name,
            method=prepared.method,
            url=prepared.url,
            status=response.status_code,
            latency_ms=latency_ms,
            size=len(response.content),
            body=response.text,
            headers=dict(response.headers),
        )
        logger.debug(f"{prepared.method} {prepared.url} -> {response.status_code} ({latency_ms:.0f}ms)")
        self._log_to_allure(request.name, prepared, response)
        return outcome

    def _log_to_allure(
        self,
        name: str,
        prepared: PreparedRequest,
        response: httpx.Response,
    ) -> None:
        """
        Attach the request/response pair to the Allure report.

        Attaches URL, masked headers and body, a cURL command, and the
        (truncated) response body.
        """
        status_mark = "PASS" if response.status_code < 400 else "FAIL"
        step_title = f"[{status_mark}] {name}: {prepared.method} {prepared.url} -> {response.status_code}"

        with allure.step(step_title):
            allure.attach(prepared.url, name="Request URL", attachment_type=AttachmentType.TEXT)

            safe_headers = self._redact_headers(prepared.headers)
            if safe_headers:
                allure.attach(
                    json.dumps(safe_headers, ensure_ascii=False, indent=2),
                    name="Request Headers",
                    attachment_type=AttachmentType.JSON,
                )

            safe_body, body_text = self._request_body_for_log(prepared)
            if body_text:
                allure.attach(body_text, name="Request Body", attachment_type=AttachmentType.TEXT)

            allure.attach(
                self._build_curl(prepared.method, prepared.url, safe_headers, safe_body),
                name="cURL Command",
                attachment_type=AttachmentType.TEXT,
            )

            try:
                response_content = json.dumps(response.json(), ensure_ascii=False, indent=2)
            except ValueError:
                response_content = response.text or "<empty>"

            if len(response_content) > MAX_RESPONSE_LENGTH:
                response_content = (
                    f"{response_content[:MAX_RESPONSE_LENGTH]}\n\n"
                    f"... [Truncated, full length: {len(response_content)} chars] ..."
                )

            allure.attach(
                response_content,
                name=f"Response Body ({response.status_code})",
                attachment_type=AttachmentType.TEXT,
            )

    def _request_body_for_log(self, prepared: PreparedRequest) -> Tuple[Any, str]:
        if prepared.json_body is not None:
            safe = self._redact_body(prepared.json_body)
            return safe, json.dumps(safe, ensure_ascii=False, indent=2)
        if prepared.form:
            safe = self._redact_body(prepared.form)
            return safe, json.dumps(safe, ensure_ascii=False, indent=2)
        if prepared.content:
            return prepared.content, prepared.content
        return None, ""

    def _redact_headers(self, headers: Dict[str, Any]) -> Dict[str, Any]:
        """Mask sensitive header values before logging."""
        return {
            key: "***MASKED***" if key.lower() in SENSITIVE_HEADERS else value
            for key, value in headers.items()
        }

    def _redact_body(self, payload: Any) -> Any:
        """Recursively mask sensitive fields in request bodies."""
        if isinstance(payload, dict):
            redacted = {}
            for key, value in payload.items():
                if any(token in str(key).lower() for token in SENSITIVE_FIELDS):
                    redacted[key] = "***MASKED***"
                else:
                    redacted[key] = self._redact_body(value)
            return redacted
        if isinstance(payload, list):
            return [self._redact_body(item) for item in payload]
        return payload

    def _build_curl(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Any,
    ) -> str:
        """Build a copy-paste cURL command from already-masked parts."""
        parts = [f"curl -X {method}"]
        for key, value in headers.items():
            parts.append(f"-H '{key}: {value}'")
        if isinstance(body, (dict, list)):
            parts.append(f"-d '{json.dumps(body, ensure_ascii=False)}'")
        elif body:
            parts.append(f"-d '{body}'")
        parts.append(f"'{url}'")
        return " \\\n  ".join(parts)


__all__ = [
    "RequestExecutor",
    "PreparedRequest",
    "MAX_RESPONSE_LENGTH",
]
