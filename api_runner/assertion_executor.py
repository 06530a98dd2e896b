"""
================================================================================
Assertion Executor Module
================================================================================

Evaluates declared checks against a request outcome.

Key Features:
- Status code, body field, header and response-time assertions
- Dot-notation field access with list indexing ("messages[0].id")
- JSONPath queries via jsonpath-ng
- Declarations are validated at load time; evaluation never raises
- Every assertion runs, so a failing request yields a complete verdict list

================================================================================
"""

from __future__ import annotations

import json
import re
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import allure
from jsonpath_ng.ext import parse as jsonpath_parse
from loguru import logger

from .errors import ConfigError
from .models import AssertionSpec, RequestOutcome, Verdict


# ================================================================================
# Assertion Types
# ================================================================================

class AssertionType(str, Enum):
    """Supported assertion types."""
    STATUS_EQUALS = "status_equals"
    STATUS_IN = "status_in"
    STATUS_IN_RANGE = "status_in_range"
    FIELD_PRESENT = "field_present"
    FIELD_ABSENT = "field_absent"
    FIELD_EQUALS = "field_equals"
    FIELD_NOT_EQUALS = "field_not_equals"
    FIELD_CONTAINS = "field_contains"
    FIELD_MATCHES = "field_matches"
    FIELD_GREATER_THAN = "field_greater_than"
    FIELD_LESS_THAN = "field_less_than"
    FIELD_LENGTH_EQUALS = "field_length_equals"
    JSONPATH = "jsonpath"
    HEADER_PRESENT = "header_present"
    HEADER_EQUALS = "header_equals"
    RESPONSE_TIME_BELOW = "response_time_below"


# Types that read a field/header name from the declaration
_NEEDS_FIELD = {
    AssertionType.FIELD_PRESENT,
    AssertionType.FIELD_ABSENT,
    AssertionType.FIELD_EQUALS,
    AssertionType.FIELD_NOT_EQUALS,
    AssertionType.FIELD_CONTAINS,
    AssertionType.FIELD_MATCHES,
    AssertionType.FIELD_GREATER_THAN,
    AssertionType.FIELD_LESS_THAN,
    AssertionType.FIELD_LENGTH_EQUALS,
    AssertionType.JSONPATH,
    AssertionType.HEADER_PRESENT,
    AssertionType.HEADER_EQUALS,
}

# Types that compare against an expected value
_NEEDS_EXPECTED = {
    AssertionType.STATUS_EQUALS,
    AssertionType.STATUS_IN,
    AssertionType.STATUS_IN_RANGE,
    AssertionType.FIELD_EQUALS,
    AssertionType.FIELD_NOT_EQUALS,
    AssertionType.FIELD_CONTAINS,
    AssertionType.FIELD_MATCHES,
    AssertionType.FIELD_GREATER_THAN,
    AssertionType.FIELD_LESS_THAN,
    AssertionType.FIELD_LENGTH_EQUALS,
    AssertionType.HEADER_EQUALS,
    AssertionType.RESPONSE_TIME_BELOW,
}

# Types whose field is a dot-notation body path
_FIELD_PATH_TYPES = _NEEDS_FIELD - {
    AssertionType.JSONPATH,
    AssertionType.HEADER_PRESENT,
    AssertionType.HEADER_EQUALS,
}

_MISSING = object()

# One dot-separated segment: optional key followed by any number of [n] indexes
_PATH_SEGMENT = re.compile(r"^([^\[\]]*)((?:\[-?\d+\])*)$")
_PATH_INDEX = re.compile(r"\[(-?\d+)\]")


def parse_field_path(field_path: str) -> List[Tuple[str, List[int]]]:
    """
    Split a dot-notation path into (key, indexes) steps.

    "messages[0].id" -> [("messages", [0]), ("id", [])]

    Raises:
        ValueError: On an empty segment or a non-integer index
    """
    steps: List[Tuple[str, List[int]]] = []
    for segment in field_path.split("."):
        match = _PATH_SEGMENT.match(segment)
        if match is None or not segment:
            raise ValueError(f"Invalid segment '{segment}' in field path '{field_path}'")
        key, raw_indexes = match.groups()
        steps.append((key, [int(raw) for raw in _PATH_INDEX.findall(raw_indexes)]))
    return steps


# ================================================================================
# Load-time validation
# ================================================================================

def build_assertion(data: Mapping[str, Any], source: str = "") -> AssertionSpec:
    """
    Validate one assertion declaration and turn it into an AssertionSpec.

    Raises:
        ConfigError: For unknown types, missing field/expected values,
                     malformed ranges, regexes, field paths or JSONPath
                     expressions
    """
    where = f" ({source})" if source else ""
    if not isinstance(data, Mapping):
        raise ConfigError(f"Assertion must be a mapping{where}, got {data!r}")

    raw_type = data.get("type")
    try:
        assertion_type = AssertionType(raw_type)
    except ValueError:
        raise ConfigError(f"Unknown assertion type '{raw_type}'{where}") from None

    field = data.get("field", "")
    if assertion_type in _NEEDS_FIELD and (not isinstance(field, str) or not field):
        raise ConfigError(f"Assertion '{assertion_type.value}' requires a 'field'{where}")
    if assertion_type in _NEEDS_EXPECTED and "expected" not in data:
        raise ConfigError(f"Assertion '{assertion_type.value}' requires 'expected'{where}")

    expected = data.get("expected")
    if assertion_type in _FIELD_PATH_TYPES:
        try:
            parse_field_path(field)
        except ValueError as e:
            raise ConfigError(f"{e}{where}") from None
    _check_expected(assertion_type, field, expected, where)

    name = data.get("name") or _default_name(assertion_type, field, expected)
    return AssertionSpec(
        name=str(name),
        assertion_type=assertion_type.value,
        field=field or "",
        expected=expected,
    )


def _check_expected(assertion_type: AssertionType, field: str, expected: Any, where: str) -> None:
    if assertion_type is AssertionType.STATUS_EQUALS:
        if not _is_int(expected):
            raise ConfigError(f"status_equals expects an integer status{where}")
    elif assertion_type is AssertionType.STATUS_IN:
        if not isinstance(expected, list) or not expected or not all(_is_int(s) for s in expected):
            raise ConfigError(f"status_in expects a non-empty list of statuses{where}")
    elif assertion_type is AssertionType.STATUS_IN_RANGE:
        if (
            not isinstance(expected, list)
            or len(expected) != 2
            or not all(_is_int(s) for s in expected)
            or expected[0] > expected[1]
        ):
            raise ConfigError(f"status_in_range expects [low, high]{where}")
    elif assertion_type is AssertionType.FIELD_MATCHES:
        try:
            re.compile(str(expected))
        except re.error as e:
            raise ConfigError(f"Invalid regex pattern '{expected}'{where}: {e}") from e
    elif assertion_type in (AssertionType.FIELD_GREATER_THAN, AssertionType.FIELD_LESS_THAN):
        if not _is_number(expected):
            raise ConfigError(f"{assertion_type.value} expects a number{where}")
    elif assertion_type is AssertionType.FIELD_LENGTH_EQUALS:
        if not _is_int(expected) or expected < 0:
            raise ConfigError(f"field_length_equals expects a non-negative integer{where}")
    elif assertion_type is AssertionType.RESPONSE_TIME_BELOW:
        if not _is_number(expected) or expected <= 0:
            raise ConfigError(f"response_time_below expects a positive number of ms{where}")
    elif assertion_type is AssertionType.JSONPATH:
        try:
            jsonpath_parse(field)
        except Exception as e:
            raise ConfigError(f"Invalid JSONPath '{field}'{where}: {e}") from e


def _default_name(assertion_type: AssertionType, field: str, expected: Any) -> str:
    parts = [assertion_type.value]
    if field:
        parts.append(field)
    if expected is not None:
        parts.append(json.dumps(expected, default=str))
    return " ".join(parts)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# ================================================================================
# Assertion Executor
# ================================================================================

Handler = Callable[[RequestOutcome, AssertionSpec], Tuple[bool, str]]


class AssertionExecutor:
    """
    Evaluates declared assertions against a request outcome.

    Example:
        executor = AssertionExecutor()
        verdicts = executor.evaluate(outcome, request.assertions)
        failed = [v for v in verdicts if not v.passed]
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, Handler] = {
            AssertionType.STATUS_EQUALS.value: self._assert_status_equals,
            AssertionType.STATUS_IN.value: self._assert_status_in,
            AssertionType.STATUS_IN_RANGE.value: self._assert_status_in_range,
            AssertionType.FIELD_PRESENT.value: self._assert_field_present,
            AssertionType.FIELD_ABSENT.value: self._assert_field_absent,
            AssertionType.FIELD_EQUALS.value: self._assert_field_equals,
            AssertionType.FIELD_NOT_EQUALS.value: self._assert_field_not_equals,
            AssertionType.FIELD_CONTAINS.value: self._assert_field_contains,
            AssertionType.FIELD_MATCHES.value: self._assert_field_matches,
            AssertionType.FIELD_GREATER_THAN.value: self._assert_field_greater_than,
            AssertionType.FIELD_LESS_THAN.value: self._assert_field_less_than,
            AssertionType.FIELD_LENGTH_EQUALS.value: self._assert_field_length_equals,
            AssertionType.JSONPATH.value: self._assert_jsonpath,
            AssertionType.HEADER_PRESENT.value: self._assert_header_present,
            AssertionType.HEADER_EQUALS.value: self._assert_header_equals,
            AssertionType.RESPONSE_TIME_BELOW.value: self._assert_response_time_below,
        }

    def evaluate(
        self,
        outcome: RequestOutcome,
        assertions: Sequence[AssertionSpec],
    ) -> List[Verdict]:
        """
        Run every assertion in declaration order.

        Returns:
            One Verdict per assertion, failures included
        """
        verdicts: List[Verdict] = []
        with allure.step(f"Executing {len(assertions)} assertions"):
            for spec in assertions:
                verdict = self.evaluate_one(outcome, spec)
                verdicts.append(verdict)

                status = "PASS" if verdict.passed else "FAIL"
                logger.debug(f"{status}: {outcome.request_name} - {verdict.name} - {verdict.message}")

                allure.attach(
                    json.dumps({
                        "name": verdict.name,
                        "type": verdict.assertion_type,
                        "passed": verdict.passed,
                        "message": verdict.message,
                    }, indent=2),
                    name=f"Assertion: {verdict.name}",
                    attachment_type=allure.attachment_type.JSON,
                )
        return verdicts

    def evaluate_one(self, outcome: RequestOutcome, spec: AssertionSpec) -> Verdict:
        handler = self._handlers.get(spec.assertion_type)
        if handler is None:
            passed, message = False, f"Unsupported assertion type '{spec.assertion_type}'"
        else:
            try:
                passed, message = handler(outcome, spec)
            except Exception as e:
                passed, message = False, f"Assertion could not be evaluated: {e}"
        return Verdict(
            name=spec.name,
            passed=bool(passed),
            message=message,
            assertion_type=spec.assertion_type,
        )

    # ============================================================
    # Field access
    # ============================================================

    @staticmethod
    def get_field_value(data: Any, field_path: str) -> Any:
        """
        Extract a value from nested data using dot notation.

        Args:
            data: Parsed JSON body
            field_path: Dot-separated path (e.g., "messages[0].id")

        Returns:
            The value at the path, or the _MISSING sentinel if absent

        Raises:
            ValueError: If the path itself is malformed
        """
        if not field_path:
            return data

        current = data
        for key, indexes in parse_field_path(field_path):
            if key:
                if isinstance(current, dict) and key in current:
                    current = current[key]
                else:
                    return _MISSING

            for index in indexes:
                if isinstance(current, list) and -len(current) <= index < len(current):
                    current = current[index]
                else:
                    return _MISSING

        return current

    def _field(self, outcome: RequestOutcome, field: str) -> Tuple[Any, Optional[str]]:
        try:
            data = outcome.json()
        except ValueError:
            return _MISSING, "Response body is not valid JSON"
        return self.get_field_value(data, field), None

    # ============================================================
    # Assertion Handlers
    # ============================================================

    def _assert_status_equals(self, outcome: RequestOutcome, spec: AssertionSpec) -> Tuple[bool, str]:
        passed = outcome.status == spec.expected
        return passed, f"Expected status {spec.expected}, got {outcome.status}"

    def _assert_status_in(self, outcome: RequestOutcome, spec: AssertionSpec) -> Tuple[bool, str]:
        passed = outcome.status in spec.expected
        return passed, f"Expected status in {spec.expected}, got {outcome.status}"

    def _assert_status_in_range(self, outcome: RequestOutcome, spec: AssertionSpec) -> Tuple[bool, str]:
        low, high = spec.expected
        passed = outcome.status is not None and low <= outcome.status <= high
        return passed, f"Expected status between {low} and {high}, got {outcome.status}"

    def _assert_field_present(self, outcome: RequestOutcome, spec: AssertionSpec) -> Tuple[bool, str]:
        actual, error = self._field(outcome, spec.field)
        if error:
            return False, error
        return actual is not _MISSING, f"Expected field '{spec.field}' to be present"

    def _assert_field_absent(self, outcome: RequestOutcome, spec: AssertionSpec) -> Tuple[bool, str]:
        actual, error = self._field(outcome, spec.field)
        if error:
            return False, error
        return actual is _MISSING, f"Expected field '{spec.field}' to be absent"

    def _assert_field_equals(self, outcome: RequestOutcome, spec: AssertionSpec) -> Tuple[bool, str]:
        actual, error = self._field(outcome, spec.field)
        if error:
            return False, error
        if actual is _MISSING:
            return False, f"Field '{spec.field}' is missing"
        return actual == spec.expected, f"Expected '{spec.field}' to equal {spec.expected!r}, got {actual!r}"

    def _assert_field_not_equals(self, outcome: RequestOutcome, spec: AssertionSpec) -> Tuple[bool, str]:
        actual, error = self._field(outcome, spec.field)
        if error:
            return False, error
        if actual is _MISSING:
            return False, f"Field '{spec.field}' is missing"
        return actual != spec.expected, f"Expected '{spec.field}' to not equal {spec.expected!r}"

    def _assert_field_contains(self, outcome: RequestOutcome, spec: AssertionSpec) -> Tuple[bool, str]:
        actual, error = self._field(outcome, spec.field)
        if error:
            return False, error
        if actual is _MISSING or actual is None:
            return False, f"Field '{spec.field}' is missing, cannot check contains"
        try:
            passed = spec.expected in actual
        except TypeError:
            return False, f"Field '{spec.field}' ({actual!r}) does not support contains"
        return passed, f"Expected '{spec.field}' to contain {spec.expected!r}"

    def _assert_field_matches(self, outcome: RequestOutcome, spec: AssertionSpec) -> Tuple[bool, str]:
        actual, error = self._field(outcome, spec.field)
        if error:
            return False, error
        if actual is _MISSING or actual is None:
            return False, f"Field '{spec.field}' is missing, cannot match regex"
        passed = bool(re.search(str(spec.expected), str(actual)))
        return passed, f"Expected '{spec.field}' ({actual!r}) to match pattern '{spec.expected}'"

    def _assert_field_greater_than(self, outcome: RequestOutcome, spec: AssertionSpec) -> Tuple[bool, str]:
        actual, error = self._field(outcome, spec.field)
        if error:
            return False, error
        number = _to_number(actual)
        if number is None:
            return False, f"Cannot compare '{spec.field}' value: {_show(actual)}"
        return number > spec.expected, f"Expected '{spec.field}' ({actual}) to be greater than {spec.expected}"

    def _assert_field_less_than(self, outcome: RequestOutcome, spec: AssertionSpec) -> Tuple[bool, str]:
        actual, error = self._field(outcome, spec.field)
        if error:
            return False, error
        number = _to_number(actual)
        if number is None:
            return False, f"Cannot compare '{spec.field}' value: {_show(actual)}"
        return number < spec.expected, f"Expected '{spec.field}' ({actual}) to be less than {spec.expected}"

    def _assert_field_length_equals(self, outcome: RequestOutcome, spec: AssertionSpec) -> Tuple[bool, str]:
        actual, error = self._field(outcome, spec.field)
        if error:
            return False, error
        try:
            actual_len = len(actual)
        except TypeError:
            return False, f"Cannot get length of '{spec.field}'"
        return actual_len == spec.expected, f"Expected '{spec.field}' length to be {spec.expected}, got {actual_len}"

    def _assert_jsonpath(self, outcome: RequestOutcome, spec: AssertionSpec) -> Tuple[bool, str]:
        try:
            data = outcome.json()
        except ValueError:
            return False, "Response body is not valid JSON"
        matches = [match.value for match in jsonpath_parse(spec.field).find(data)]
        if not matches:
            return False, f"JSONPath '{spec.field}' matched nothing"
        if spec.expected is None:
            return True, f"JSONPath '{spec.field}' matched {len(matches)} value(s)"
        return matches[0] == spec.expected, f"Expected JSONPath '{spec.field}' to equal {spec.expected!r}, got {matches[0]!r}"

    def _assert_header_present(self, outcome: RequestOutcome, spec: AssertionSpec) -> Tuple[bool, str]:
        passed = _header(outcome, spec.field) is not None
        return passed, f"Expected response header '{spec.field}' to be present"

    def _assert_header_equals(self, outcome: RequestOutcome, spec: AssertionSpec) -> Tuple[bool, str]:
        actual = _header(outcome, spec.field)
        return actual == str(spec.expected), f"Expected header '{spec.field}' to equal {spec.expected!r}, got {actual!r}"

    def _assert_response_time_below(self, outcome: RequestOutcome, spec: AssertionSpec) -> Tuple[bool, str]:
        passed = outcome.latency_ms < spec.expected
        return passed, f"Expected response time below {spec.expected}ms, got {outcome.latency_ms:.0f}ms"


def _header(outcome: RequestOutcome, name: str) -> Optional[str]:
    wanted = name.lower()
    for key, value in outcome.headers.items():
        if key.lower() == wanted:
            return value
    return None


def _to_number(value: Any) -> Optional[float]:
    # Gmail returns int64 counters as JSON strings
    if _is_number(value):
        return value
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _show(value: Any) -> str:
    return "<missing>" if value is _MISSING else repr(value)


__all__ = [
    "AssertionType",
    "AssertionExecutor",
    "build_assertion",
    "parse_field_path",
]
