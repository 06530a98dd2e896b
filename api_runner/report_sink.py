"""
================================================================================
Report Sinks
================================================================================

Receivers for the run summary. Each sink renders purely from the RunSummary;
none of them touches the network.

    ConsoleReportSink   summary block through loguru
    JsonReportSink      <prefix>-report-<timestamp>.json
    JUnitReportSink     <prefix>-junit-<timestamp>.xml
    HtmlReportSink      <prefix>-report-<timestamp>.html
    MultiReportSink     fan-out to several sinks

================================================================================
"""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence, Tuple, Union

from jinja2 import BaseLoader, Environment, select_autoescape
from loguru import logger

from .models import RequestOutcome, RunSummary


class ReportSink(Protocol):
    """Anything that accepts a finished run summary."""

    def emit(self, summary: RunSummary) -> None:
        ...


def report_timestamp(moment: Optional[datetime] = None) -> str:
    """File-name-safe timestamp, e.g. 2024-05-01T10-22-03-123456."""
    moment = moment or datetime.now()
    return moment.isoformat().replace(":", "-").replace(".", "-")


# ================================================================================
# Console
# ================================================================================

class ConsoleReportSink:
    """Logs the run statistics and a numbered failure list."""

    def emit(self, summary: RunSummary) -> None:
        stats = summary.stats
        logger.info("=" * 80)
        logger.info("Test Execution Summary")
        logger.info("=" * 80)
        logger.info(f"Collection: {summary.collection_name}")
        logger.info(f"Environment: {summary.environment_name}")
        logger.info(f"Total Iterations: {stats.iterations}")
        logger.info(f"Total Requests: {stats.requests_total}")
        logger.info(f"Passed Requests: {stats.requests_passed}")
        logger.info(f"Failed Requests: {stats.requests_failed}")
        logger.info(f"Total Assertions: {stats.assertions_total}")
        logger.info(f"Passed Assertions: {stats.assertions_passed}")
        logger.info(f"Failed Assertions: {stats.assertions_failed}")
        logger.info(f"Average Response Time: {summary.average_response_time:.0f}ms")
        logger.info(f"Final State: {summary.state.value.upper()}")
        logger.info("=" * 80)

        if summary.fatal_error:
            logger.error(f"Run aborted: {summary.fatal_error}")

        failures = summary.failures()
        if failures:
            logger.error("Test Failures:")
            for index, failure in enumerate(failures, start=1):
                logger.error(f"{index}. {failure.error_name}: {failure.message}")
                logger.error(f"   Source: {failure.source} (iteration {failure.iteration})")
        elif summary.success:
            logger.info("All tests passed!")


# ================================================================================
# File sinks
# ================================================================================

class FileReportSink:
    """Base for sinks that write one file into the reports directory."""

    suffix = "report"
    extension = "txt"

    def __init__(
        self,
        reports_dir: Union[str, Path],
        prefix: str = "api-e2e",
        timestamp: Optional[str] = None,
    ) -> None:
        self.reports_dir = Path(reports_dir)
        self.path = self.reports_dir / f"{prefix}-{self.suffix}-{timestamp or report_timestamp()}.{self.extension}"

    def emit(self, summary: RunSummary) -> None:
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        self.path.write_text(self.render(summary), encoding="utf-8")
        logger.info(f"{type(self).__name__.replace('ReportSink', '')} report: {self.path}")

    def render(self, summary: RunSummary) -> str:
        raise NotImplementedError


class JsonReportSink(FileReportSink):
    extension = "json"

    def render(self, summary: RunSummary) -> str:
        return json.dumps(summary.to_dict(), ensure_ascii=False, indent=2, default=str)


class JUnitReportSink(FileReportSink):
    """One <testsuite> per (iteration, folder), one <testcase> per outcome."""

    suffix = "junit"
    extension = "xml"

    def render(self, summary: RunSummary) -> str:
        stats = summary.stats
        root = ET.Element("testsuites", {
            "name": summary.collection_name,
            "tests": str(stats.requests_total),
            "failures": str(sum(1 for o in summary.outcomes if o.failed_verdicts())),
            "errors": str(stats.requests_failed),
            "time": f"{summary.duration_seconds:.3f}",
        })

        for (iteration, folder), outcomes in _group_outcomes(summary.outcomes):
            suite = ET.SubElement(root, "testsuite", {
                "name": folder or summary.collection_name,
                "id": str(iteration),
                "tests": str(len(outcomes)),
                "failures": str(sum(1 for o in outcomes if o.failed_verdicts())),
                "errors": str(sum(1 for o in outcomes if o.transport_failed)),
                "time": f"{sum(o.latency_ms for o in outcomes) / 1000.0:.3f}",
            })
            for outcome in outcomes:
                case = ET.SubElement(suite, "testcase", {
                    "name": outcome.request_name,
                    "classname": f"{summary.collection_name}.{folder}" if folder else summary.collection_name,
                    "time": f"{outcome.latency_ms / 1000.0:.3f}",
                })
                if outcome.error is not None:
                    error = ET.SubElement(case, "error", {
                        "type": outcome.error.kind.value,
                        "message": str(outcome.error),
                    })
                    error.text = str(outcome.error)
                for verdict in outcome.failed_verdicts():
                    failure = ET.SubElement(case, "failure", {
                        "type": verdict.assertion_type or "AssertionFailure",
                        "message": verdict.name,
                    })
                    failure.text = verdict.message

        if summary.fatal_error:
            ET.SubElement(root, "system-err").text = summary.fatal_error

        return ET.tostring(root, encoding="unicode", xml_declaration=True)


_HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{{ summary.collection_name }} - {{ summary.environment_name }}</title>
<style>
body { font-family: sans-serif; margin: 2em; }
table { border-collapse: collapse; width: 100%; }
th, td { border: 1px solid #ccc; padding: 4px 8px; text-align: left; vertical-align: top; }
.pass { color: #1a7f37; }
.fail { color: #cf222e; }
</style>
</head>
<body>
<h1>{{ summary.collection_name }}</h1>
<p>Environment: {{ summary.environment_name }}</p>
<p>State: <strong class="{{ 'pass' if summary.success else 'fail' }}">{{ summary.state.value | upper }}</strong></p>
{% if summary.fatal_error %}
<p class="fail">Run aborted: {{ summary.fatal_error }}</p>
{% endif %}
<table>
<tr><th>Iterations</th><td>{{ stats.iterations }}</td></tr>
<tr><th>Requests</th><td>{{ stats.requests_total }} ({{ stats.requests_failed }} failed)</td></tr>
<tr><th>Assertions</th><td>{{ stats.assertions_total }} ({{ stats.assertions_failed }} failed)</td></tr>
<tr><th>Average response time</th><td>{{ "%.0f" | format(summary.average_response_time) }} ms</td></tr>
</table>
<h2>Requests</h2>
<table>
<tr><th>Iteration</th><th>Folder</th><th>Request</th><th>Status</th><th>Time</th><th>Assertions</th></tr>
{% for o in summary.outcomes %}
<tr><td>{{ o.iteration }}</td><td>{{ o.folder }}</td><td>{{ o.method }} {{ o.request_name }}</td>
<td>{{ o.status if o.status is not none else "-" }}</td><td>{{ "%.0f" | format(o.latency_ms) }} ms</td>
<td>
{%- if o.error is not none -%}
<span class="fail">{{ o.error }}</span>
{%- else -%}
{%- for v in o.verdicts -%}
<span class="{{ 'pass' if v.passed else 'fail' }}">{{ v.name }}{% if not v.passed %}: {{ v.message }}{% endif %}</span>
{%- if not loop.last %}<br>{% endif -%}
{%- endfor -%}
{%- endif -%}
</td></tr>
{% endfor %}
</table>
</body>
</html>
"""

_env = Environment(
    loader=BaseLoader(),
    autoescape=select_autoescape(enabled_extensions=("html", "xml"), default_for_string=True),
)


class HtmlReportSink(FileReportSink):
    """Single-page HTML report rendered from a jinja2 template."""

    extension = "html"

    def render(self, summary: RunSummary) -> str:
        return _env.from_string(_HTML_TEMPLATE).render(summary=summary, stats=summary.stats)


class MultiReportSink:
    """Emits the same summary to every wrapped sink, in order."""

    def __init__(self, sinks: Sequence[ReportSink]) -> None:
        self.sinks = list(sinks)

    def emit(self, summary: RunSummary) -> None:
        for sink in self.sinks:
            sink.emit(summary)

    def written_paths(self) -> List[Path]:
        return [sink.path for sink in self.sinks if isinstance(sink, FileReportSink)]


def default_sinks(reports_dir: Union[str, Path], prefix: str = "api-e2e") -> MultiReportSink:
    """Console, HTML, JSON and JUnit sinks sharing one timestamp."""
    timestamp = report_timestamp()
    return MultiReportSink([
        ConsoleReportSink(),
        HtmlReportSink(reports_dir, prefix, timestamp),
        JsonReportSink(reports_dir, prefix, timestamp),
        JUnitReportSink(reports_dir, prefix, timestamp),
    ])


def _group_outcomes(outcomes: Sequence[RequestOutcome]) -> List[Tuple[Tuple[int, str], List[RequestOutcome]]]:
    groups: Dict[Tuple[int, str], List[RequestOutcome]] = {}
    for outcome in outcomes:
        groups.setdefault((outcome.iteration, outcome.folder), []).append(outcome)
    return list(groups.items())


__all__ = [
    "ReportSink",
    "ConsoleReportSink",
    "FileReportSink",
    "JsonReportSink",
    "JUnitReportSink",
    "HtmlReportSink",
    "MultiReportSink",
    "default_sinks",
    "report_timestamp",
]
