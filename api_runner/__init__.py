"""
================================================================================
API Collection Runner
================================================================================

Runs a declarative collection of HTTP requests against a target service,
managing the OAuth 2.0 bearer token the requests need, and reports
pass/fail assertion outcomes.

Modules:
    - collection_loader: YAML/JSON collection loading and validation
    - environment: variable sets and {{name}} substitution
    - token_manager: OAuth 2.0 token acquisition and run-scoped caching
    - http_client: single-request executor with timeout and Allure logging
    - assertion_executor: declarative checks against request outcomes
    - run_sequencer: iteration/delay/bail orchestration and run summary
    - report_sink: console, JSON, JUnit and HTML summary renderers
    - allure_results: per-request Allure test cases for `allure generate`
    - config_loader / run_options: runner settings and typed run options

================================================================================
"""

from .allure_results import AllureResultsWriter
from .assertion_executor import AssertionExecutor, AssertionType
from .collection_loader import load_collection
from .config_loader import ConfigLoader
from .environment import Environment, load_environment, load_iteration_data
from .errors import (
    AssertionFailure,
    AuthError,
    ConfigError,
    RunnerError,
    SubstitutionError,
    TransportError,
    TransportErrorKind,
)
from .http_client import RequestExecutor
from .models import Collection, RequestOutcome, RunState, RunSummary, Token, Verdict
from .report_sink import ConsoleReportSink, MultiReportSink, ReportSink, default_sinks
from .run_options import RunOptions, UnrecognizedOptionWarning
from .run_sequencer import RunSequencer
from .token_manager import TokenManager

__version__ = "1.0.0"

__all__ = [
    "AllureResultsWriter",
    "AssertionExecutor",
    "AssertionType",
    "AssertionFailure",
    "AuthError",
    "Collection",
    "ConfigError",
    "ConfigLoader",
    "ConsoleReportSink",
    "Environment",
    "MultiReportSink",
    "ReportSink",
    "RequestExecutor",
    "RequestOutcome",
    "RunnerError",
    "RunOptions",
    "RunSequencer",
    "RunState",
    "RunSummary",
    "SubstitutionError",
    "Token",
    "TokenManager",
    "TransportError",
    "TransportErrorKind",
    "UnrecognizedOptionWarning",
    "Verdict",
    "default_sinks",
    "load_collection",
    "load_environment",
    "load_iteration_data",
]
