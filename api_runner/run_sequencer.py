"""
================================================================================
Run Sequencer
================================================================================

Walks the selected requests of a collection, one at a time, for the
configured number of iterations.

State machine:

    IDLE --run()--> RUNNING --+--> COMPLETED   no failed assertion, no transport error
                              +--> FAILED      failures recorded, no bail
                              +--> ABORTED     bail triggered, or auth/substitution error

Per request:
    1. token from the TokenManager (skipped for token-issuance requests)
    2. RequestExecutor.execute with options.timeout_ms
    3. TransportError -> synthetic failed outcome; bail aborts
    4. AssertionExecutor.evaluate -> verdicts; any failure with bail aborts
    5. sleep options.delay_ms (not after the very last request)

The summary is emitted to the report sink exactly once, when a terminal state
is entered. Bail stops the whole run, not only the current iteration.
With an AllureResultsWriter attached, every executed request is also
recorded as one Allure test case.

================================================================================
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

from loguru import logger

from .allure_results import AllureResultsWriter
from .assertion_executor import AssertionExecutor
from .environment import Environment, Variables
from .errors import AuthError, ConfigError, TransportError
from .http_client import RequestExecutor
from .models import Collection, RequestDefinition, RequestOutcome, RunState, RunSummary, Token
from .report_sink import ReportSink
from .run_options import RunOptions
from .token_manager import TokenManager


SelectedRequest = Tuple[str, RequestDefinition]


def select_requests(collection: Collection, options: RunOptions) -> List[SelectedRequest]:
    """
    Requests to run, as (folder name, request) pairs in collection order.

    Raises:
        ConfigError: If the folder filter names a folder the collection lacks
    """
    if options.folder_filter is not None:
        unknown = sorted(set(options.folder_filter) - set(collection.folder_names()))
        if unknown:
            raise ConfigError(
                f"Folder filter names unknown folder(s): {', '.join(unknown)}. "
                f"Available: {', '.join(collection.folder_names())}"
            )

    return [
        (folder.name, request)
        for folder in collection.folders
        if options.folder_filter is None or folder.name in options.folder_filter
        for request in folder.requests
    ]


class RunSequencer:
    """
    Sequential executor for one collection run.

    Collaborators are passed in explicitly; the sequencer never looks up a
    reporter or client from shared state.

    Example:
        with RequestExecutor() as executor, TokenManager(token_url) as tokens:
            sequencer = RunSequencer(executor, AssertionExecutor(), tokens, report_sink=sink)
            summary = sequencer.run(collection, environment, RunOptions(iterations=2))
            sys.exit(0 if summary.success else 1)
    """

    def __init__(
        self,
        executor: RequestExecutor,
        evaluator: Optional[AssertionExecutor] = None,
        token_manager: Optional[TokenManager] = None,
        report_sink: Optional[ReportSink] = None,
        sleep: Callable[[float], None] = time.sleep,
        allure_results: Optional[AllureResultsWriter] = None,
    ) -> None:
        self.executor = executor
        self.evaluator = evaluator or AssertionExecutor()
        self.token_manager = token_manager
        self.report_sink = report_sink
        self._sleep = sleep
        self.allure_results = allure_results
        self.state = RunState.IDLE

    def run(
        self,
        collection: Collection,
        environment: Environment,
        options: Optional[RunOptions] = None,
        iteration_data: Optional[Sequence[Mapping[str, str]]] = None,
    ) -> RunSummary:
        """
        Execute the run and return its summary.

        Raises:
            ConfigError: Before the run starts, if the selection is invalid
            AuthError: If a token cannot be obtained or a placeholder is
                       undefined; the partial summary is attached as
                       ``error.summary`` and has already been emitted
        """
        options = options or RunOptions()
        selected = select_requests(collection, options)

        summary = RunSummary(
            collection_name=collection.name,
            environment_name=environment.name,
            options=options.to_dict(),
            started_at=datetime.now(timezone.utc),
        )
        self.state = RunState.RUNNING
        logger.info(
            f"Running '{collection.name}' against '{environment.name or 'environment'}': "
            f"{len(selected)} requests x {options.iterations} iteration(s)"
        )

        total_steps = len(selected) * options.iterations
        step = 0
        aborted = False

        try:
            for iteration in range(1, options.iterations + 1):
                summary.iterations = iteration
                variables = self._iteration_scope(environment, iteration_data, iteration)
                logger.info(f"Iteration {iteration}/{options.iterations}")

                for folder_name, request in selected:
                    step += 1
                    outcome = self._run_request(
                        collection.name, folder_name, request, environment, variables, iteration, options
                    )
                    summary.outcomes.append(outcome)

                    if options.bail and not outcome.passed:
                        logger.warning(f"Bail: stopping run after failure in '{request.name}'")
                        aborted = True
                        break

                    if step < total_steps and options.delay_ms > 0:
                        self._sleep(options.delay_ms / 1000.0)

                if aborted:
                    break
        except AuthError as e:
            summary.fatal_error = f"{type(e).__name__}: {e}"
            logger.error(f"Run aborted: {summary.fatal_error}")
            self._finish(summary, RunState.ABORTED)
            e.summary = summary
            raise

        if aborted:
            final_state = RunState.ABORTED
        else:
            stats = summary.stats
            clean = stats.assertions_failed == 0 and stats.requests_failed == 0
            final_state = RunState.COMPLETED if clean else RunState.FAILED
        self._finish(summary, final_state)
        return summary

    def _run_request(
        self,
        collection_name: str,
        folder_name: str,
        request: RequestDefinition,
        environment: Environment,
        variables: Variables,
        iteration: int,
        options: RunOptions,
    ) -> RequestOutcome:
        if self.allure_results is None:
            return self._execute_request(folder_name, request, environment, variables, iteration, options)

        case_id = self.allure_results.start_request(collection_name, folder_name, request.name, iteration)
        try:
            outcome = self._execute_request(folder_name, request, environment, variables, iteration, options)
        except Exception as e:
            self.allure_results.abort_request(case_id, e)
            raise
        self.allure_results.finish_request(case_id, outcome)
        return outcome

    def _execute_request(
        self,
        folder_name: str,
        request: RequestDefinition,
        environment: Environment,
        variables: Variables,
        iteration: int,
        options: RunOptions,
    ) -> RequestOutcome:
        token = self._token_for(request, environment)

        try:
            outcome = self.executor.execute(request, variables, token, options.timeout_ms)
        except TransportError as e:
            logger.error(f"[{folder_name}] {request.name}: {e}")
            outcome = RequestOutcome(
                request_name=request.name,
                method=request.method,
                url=variables.resolve(request.url),
                error=e,
            )
        else:
            outcome.verdicts = self.evaluator.evaluate(outcome, request.assertions)
            failed = len(outcome.failed_verdicts())
            level = "INFO" if failed == 0 else "WARNING"
            logger.log(
                level,
                f"[{folder_name}] {request.name}: {outcome.status} "
                f"({outcome.latency_ms:.0f}ms, {len(outcome.verdicts) - failed}/{len(outcome.verdicts)} assertions passed)",
            )

        outcome.folder = folder_name
        outcome.iteration = iteration
        return outcome

    def _token_for(self, request: RequestDefinition, environment: Environment) -> Optional[Token]:
        if request.is_token_request or self.token_manager is None:
            return None
        return self.token_manager.token_for_environment(environment)

    @staticmethod
    def _iteration_scope(
        environment: Environment,
        iteration_data: Optional[Sequence[Mapping[str, str]]],
        iteration: int,
    ) -> Variables:
        if not iteration_data:
            return environment
        row = iteration_data[min(iteration, len(iteration_data)) - 1]
        return environment.overlay(row)

    def _finish(self, summary: RunSummary, state: RunState) -> None:
        self.state = state
        summary.state = state
        summary.finished_at = datetime.now(timezone.utc)
        stats = summary.stats
        logger.info(
            f"Run {state.value}: {stats.requests_total} requests, "
            f"{stats.assertions_failed}/{stats.assertions_total} assertions failed, "
            f"{stats.requests_failed} transport errors"
        )
        if self.report_sink is not None:
            self.report_sink.emit(summary)


__all__ = [
    "RunSequencer",
    "select_requests",
]
