"""
================================================================================
Allure Results Writer
================================================================================

Turns a collection run into Allure results without pytest.

Each executed request becomes one Allure test case. The ``allure.step`` and
``allure.attach`` calls made by the request executor and the assertion
evaluator land inside the current test case, and the finished results are
written as ``*-result.json`` plus attachment files into the results
directory, ready for ``allure generate``.

Usage:
    with AllureResultsWriter("reports/allure-results") as results:
        sequencer = RunSequencer(executor, allure_results=results)
        sequencer.run(collection, environment, options)

================================================================================
"""

from __future__ import annotations

from pathlib import Path
from typing import Union

import allure_commons
from allure_commons.logger import AllureFileLogger
from allure_commons.model2 import Label, Parameter, Status, StatusDetails, TestResult, TestStepResult
from allure_commons.reporter import AllureReporter
from allure_commons.types import LabelType
from allure_commons.utils import md5, now, uuid4
from loguru import logger

from .models import RequestOutcome


class AllureResultsWriter:
    """
    Allure plugin scoped to one run.

    Registered with the allure plugin manager on ``__enter__`` and removed on
    ``__exit__``, so steps and attachments outside a run stay inert.
    """

    def __init__(self, results_dir: Union[str, Path], clean: bool = False) -> None:
        """
        Args:
            results_dir: Directory for result JSON and attachments
            clean: Remove previous results first
        """
        self.results_dir = Path(results_dir)
        self.reporter = AllureReporter()
        self._file_logger = AllureFileLogger(str(self.results_dir), clean=clean)
        self._registered = False
        self.written = 0

    def __enter__(self) -> "AllureResultsWriter":
        allure_commons.plugin_manager.register(self)
        allure_commons.plugin_manager.register(self._file_logger)
        self._registered = True
        logger.debug(f"Writing Allure results to {self.results_dir}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._registered:
            allure_commons.plugin_manager.unregister(self._file_logger)
            allure_commons.plugin_manager.unregister(self)
            self._registered = False
        logger.info(f"Allure results: {self.results_dir} ({self.written} test cases)")

    # ============================================================
    # Test case lifecycle (called by the run sequencer)
    # ============================================================

    def start_request(self, collection: str, folder: str, request_name: str, iteration: int) -> str:
        """Open a test case for one request execution; returns its uuid."""
        uuid = uuid4()
        full_name = f"{collection}.{folder}.{request_name}"
        self.reporter.schedule_test(uuid, TestResult(
            uuid=uuid,
            name=request_name,
            fullName=full_name,
            historyId=md5(full_name, str(iteration)),
            start=now(),
            labels=[
                Label(name=LabelType.PARENT_SUITE, value=collection),
                Label(name=LabelType.SUITE, value=folder),
                Label(name=LabelType.FRAMEWORK, value="api-collection-runner"),
            ],
            parameters=[Parameter(name="iteration", value=str(iteration))],
        ))
        return uuid

    def finish_request(self, uuid: str, outcome: RequestOutcome) -> None:
        """Close the test case with the outcome's status."""
        test_result = self.reporter.get_test(uuid)
        if outcome.error is not None:
            test_result.status = Status.BROKEN
            test_result.statusDetails = StatusDetails(message=str(outcome.error))
        elif outcome.failed_verdicts():
            test_result.status = Status.FAILED
            test_result.statusDetails = StatusDetails(message="\n".join(
                f"{v.name}: {v.message}" for v in outcome.failed_verdicts()
            ))
        else:
            test_result.status = Status.PASSED
        self._close(uuid)

    def abort_request(self, uuid: str, error: BaseException) -> None:
        """Close the test case of a request that ended the run."""
        test_result = self.reporter.get_test(uuid)
        test_result.status = Status.BROKEN
        test_result.statusDetails = StatusDetails(message=f"{type(error).__name__}: {error}")
        self._close(uuid)

    def _close(self, uuid: str) -> None:
        self.reporter.get_test(uuid).stop = now()
        self.reporter.close_test(uuid)
        self.written += 1

    # ============================================================
    # allure_commons hooks
    # ============================================================

    @allure_commons.hookimpl
    def start_step(self, uuid, title, params):
        parameters = [Parameter(name=name, value=value) for name, value in params.items()]
        self.reporter.start_step(None, uuid, TestStepResult(name=title, start=now(), parameters=parameters))

    @allure_commons.hookimpl
    def stop_step(self, uuid, exc_type, exc_val, exc_tb):
        status = Status.PASSED if exc_val is None else Status.BROKEN
        details = StatusDetails(message=str(exc_val)) if exc_val is not None else None
        self.reporter.stop_step(uuid, stop=now(), status=status, statusDetails=details)

    @allure_commons.hookimpl
    def attach_data(self, body, name, attachment_type, extension):
        if self.reporter.get_last_item(TestResult) is None:
            return
        self.reporter.attach_data(uuid4(), body, name=name, attachment_type=attachment_type, extension=extension)

    @allure_commons.hookimpl
    def attach_file(self, source, name, attachment_type, extension):
        if self.reporter.get_last_item(TestResult) is None:
            return
        self.reporter.attach_file(uuid4(), source, name=name, attachment_type=attachment_type, extension=extension)


__all__ = ["AllureResultsWriter"]
