import json

import pytest

from api_runner.assertion_executor import AssertionExecutor, AssertionType, build_assertion, parse_field_path
from api_runner.errors import ConfigError
from api_runner.models import RequestOutcome


def _outcome(status=200, body=None, text=None, headers=None, latency_ms=120.0):
    if text is None:
        text = json.dumps(body if body is not None else {})
    return RequestOutcome(
        request_name="Get Profile",
        method="GET",
        url="https://api.example.com/profile",
        status=status,
        latency_ms=latency_ms,
        size=len(text),
        body=text,
        headers=headers or {"Content-Type": "application/json"},
    )


def _check(outcome, **declaration):
    return AssertionExecutor().evaluate_one(outcome, build_assertion(declaration))


PROFILE = {
    "emailAddress": "user@example.com",
    "messagesTotal": "1532",
    "threadsTotal": 812,
    "labels": [{"id": "INBOX", "type": "system"}, {"id": "Label_1", "type": "user"}],
}


@pytest.mark.parametrize(
    "declaration, passed",
    [
        ({"type": "status_equals", "expected": 200}, True),
        ({"type": "status_equals", "expected": 201}, False),
        ({"type": "status_in", "expected": [200, 204]}, True),
        ({"type": "status_in_range", "expected": [200, 299]}, True),
        ({"type": "status_in_range", "expected": [400, 499]}, False),
        ({"type": "field_present", "field": "emailAddress"}, True),
        ({"type": "field_present", "field": "labels[1].id"}, True),
        ({"type": "field_present", "field": "labels[5].id"}, False),
        ({"type": "field_absent", "field": "error"}, True),
        ({"type": "field_equals", "field": "labels[0].id", "expected": "INBOX"}, True),
        ({"type": "field_equals", "field": "threadsTotal", "expected": 0}, False),
        ({"type": "field_not_equals", "field": "emailAddress", "expected": ""}, True),
        ({"type": "field_contains", "field": "emailAddress", "expected": "@"}, True),
        ({"type": "field_matches", "field": "emailAddress", "expected": r"^[^@]+@example\.com$"}, True),
        ({"type": "field_greater_than", "field": "messagesTotal", "expected": 1000}, True),
        ({"type": "field_less_than", "field": "threadsTotal", "expected": 100}, False),
        ({"type": "field_length_equals", "field": "labels", "expected": 2}, True),
        ({"type": "jsonpath", "field": "$.labels[?(@.type == 'user')].id", "expected": "Label_1"}, True),
        ({"type": "jsonpath", "field": "$.labels[*].name"}, False),
        ({"type": "header_present", "field": "content-type"}, True),
        ({"type": "header_equals", "field": "Content-Type", "expected": "text/html"}, False),
        ({"type": "response_time_below", "expected": 500}, True),
        ({"type": "response_time_below", "expected": 100}, False),
    ],
)
def test_assertion_types(declaration, passed):
    verdict = _check(_outcome(body=PROFILE), **declaration)
    assert verdict.passed is passed, verdict.message
    assert verdict.assertion_type == declaration["type"]


def test_every_assertion_is_evaluated_after_a_failure():
    outcome = _outcome(status=500, body=PROFILE)
    assertions = [
        build_assertion({"type": "status_equals", "expected": 200}),
        build_assertion({"type": "field_present", "field": "emailAddress"}),
        build_assertion({"type": "response_time_below", "expected": 1000}),
    ]

    verdicts = AssertionExecutor().evaluate(outcome, assertions)

    assert [v.passed for v in verdicts] == [False, True, True]
    assert "got 500" in verdicts[0].message


def test_non_json_body_fails_body_assertions_without_raising():
    outcome = _outcome(text="<html>Service Unavailable</html>", status=503)
    assertions = [
        build_assertion({"type": "field_present", "field": "id"}),
        build_assertion({"type": "jsonpath", "field": "$.id"}),
        build_assertion({"type": "status_equals", "expected": 503}),
    ]

    verdicts = AssertionExecutor().evaluate(outcome, assertions)

    assert [v.passed for v in verdicts] == [False, False, True]
    assert verdicts[0].message == "Response body is not valid JSON"


def test_non_numeric_comparison_fails_cleanly():
    verdict = _check(_outcome(body=PROFILE), type="field_greater_than", field="emailAddress", expected=1)
    assert not verdict.passed
    assert "Cannot compare" in verdict.message


def test_default_and_custom_names():
    assert build_assertion({"type": "status_equals", "expected": 200}).name == "status_equals 200"
    named = build_assertion({"type": "field_present", "field": "id", "name": "Has id"})
    assert named.name == "Has id"


def test_get_field_value():
    data = {"a": {"b": [{"c": 1}, {"c": 2}]}}
    assert AssertionExecutor.get_field_value(data, "a.b[1].c") == 2
    assert AssertionExecutor.get_field_value(data, "a.b[-1].c") == 2
    assert AssertionExecutor.get_field_value(data, "") is data


def test_parse_field_path():
    assert parse_field_path("messages[0].id") == [("messages", [0]), ("id", [])]
    assert parse_field_path("[1][-1]") == [("", [1, -1])]
    for bad in ("messages[abc].id", "a..b", "items[1", "a.", "a]b"):
        with pytest.raises(ValueError):
            parse_field_path(bad)


@pytest.mark.parametrize(
    "declaration",
    [
        {"type": "status_is"},
        {"type": "status_equals"},
        {"type": "status_equals", "expected": "200"},
        {"type": "status_in", "expected": []},
        {"type": "status_in_range", "expected": [500, 200]},
        {"type": "field_equals", "expected": 1},
        {"type": "field_matches", "field": "id", "expected": "("},
        {"type": "field_greater_than", "field": "id", "expected": "ten"},
        {"type": "field_length_equals", "field": "id", "expected": -1},
        {"type": "response_time_below", "expected": 0},
        {"type": "jsonpath", "field": "$[[["},
        {"type": "field_present", "field": "messages[abc].id"},
        {"type": "field_equals", "field": "a..b", "expected": 1},
        {"type": "field_length_equals", "field": "items[1", "expected": 2},
        "status_equals",
    ],
)
def test_invalid_declarations_are_rejected_at_load_time(declaration):
    with pytest.raises(ConfigError):
        build_assertion(declaration)


def test_all_types_have_handlers():
    handlers = AssertionExecutor()._handlers
    assert set(handlers) == {t.value for t in AssertionType}
