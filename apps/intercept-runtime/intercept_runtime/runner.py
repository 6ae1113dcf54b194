"""Run execution engine."""

from __future__ import annotations

import asyncio
import json
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

import structlog

from .cases import TestCase
from .config import RunConfig, RunMode
from .console_reporter import ConsoleReporter
from .errors import RouterInternalError
from .logging_utils import bind_run_context, clear_run_context
from .models import RunDetails, RunSummary, TestOutcome, TestStatus
from .output_config import OutputFormat
from .reporter import AFTER_ATTEMPT, AFTER_RUN, BEFORE_RUN, RunReporter, log_run_end, log_run_start
from .retry import RetryOrchestrator, ScopeFactory

LOGGER = structlog.get_logger("intercept_runtime")

EXIT_OK = 0
EXIT_TESTS_FAILED = 1
EXIT_ABORTED = 2


@dataclass
class RunArtifacts:
    run_dir: Path
    events_file: Path
    summary_file: Path
    junit_file: Path


@dataclass
class RunResult:
    summary: RunSummary
    outcomes: tuple[TestOutcome, ...]
    artifacts: RunArtifacts
    aborted: RouterInternalError | None = None

    @property
    def exit_code(self) -> int:
        if self.aborted is not None:
            return EXIT_ABORTED
        return EXIT_TESTS_FAILED if self.summary.total_failed > 0 else EXIT_OK


class SuiteRunner:
    """Executes test cases sequentially and records artifacts."""

    def __init__(
        self,
        *,
        cases: Sequence[TestCase],
        config: RunConfig,
        output_root: Path,
        run_id: str,
        mode: RunMode = RunMode.HEADLESS,
        specs: Sequence[str] = (),
        output_format: OutputFormat = OutputFormat.AUTO,
        reporter: RunReporter | None = None,
        scope_factory: ScopeFactory | None = None,
    ) -> None:
        self.cases = list(cases)
        self.config = config
        self.output_root = output_root
        self.run_id = run_id
        self.mode = mode
        self.specs = list(specs)
        self.reporter = reporter or RunReporter()
        self._console = ConsoleReporter(output_format=output_format)
        self._orchestrator = RetryOrchestrator(
            config=config,
            mode=mode,
            reporter=self.reporter,
            scope_factory=scope_factory,
        )

    def run(self) -> RunResult:
        return asyncio.run(self.run_async())

    async def run_async(self) -> RunResult:
        artifacts = self._prepare_artifacts()
        events_handle = artifacts.events_file.open("w", encoding="utf-8")

        def write_event(outcome: TestOutcome) -> None:
            events_handle.write(json.dumps(outcome.model_dump(mode="json")) + "\n")

        self.reporter.on(BEFORE_RUN, log_run_start)
        self.reporter.on(AFTER_ATTEMPT, write_event)
        self.reporter.on(AFTER_ATTEMPT, self._console.report_outcome)
        self.reporter.on(AFTER_RUN, log_run_end)

        details = RunDetails(
            run_id=self.run_id,
            browser=self.config.browser,
            specs=self.specs,
            mode=self.mode.value,
            config=self.config.model_dump(mode="json"),
        )
        run_start = datetime.now(timezone.utc)
        aborted: RouterInternalError | None = None

        bind_run_context(self.run_id, self.mode.value)
        try:
            self.reporter.on_run_start(details)
            self._console.start_run(total_tests=len(self.cases), run_name=self.run_id, browser=self.config.browser)
            try:
                for test_case in self.cases:
                    try:
                        await self._orchestrator.run_case(test_case)
                    except RouterInternalError as exc:
                        aborted = exc
                        LOGGER.error("run_aborted", test_id=test_case.test_id, error=str(exc))
                        self._console.print_error(f"Run aborted by internal router error: {exc}")
                        break
            finally:
                events_handle.close()

            summary = self.reporter.on_run_end()
            run_end = datetime.now(timezone.utc)
            outcomes = self.reporter.outcomes
            artifacts.summary_file.write_text(
                json.dumps(self._summary_payload(summary, details, run_start, run_end, outcomes, aborted), indent=2),
                encoding="utf-8",
            )
            self._write_junit(outcomes, artifacts.junit_file)
            self._console.finish_run(summary)
        finally:
            clear_run_context()
        return RunResult(summary=summary, outcomes=outcomes, artifacts=artifacts, aborted=aborted)

    def _prepare_artifacts(self) -> RunArtifacts:
        run_dir = self.output_root / self.run_id
        run_dir.mkdir(parents=True, exist_ok=True)
        return RunArtifacts(
            run_dir=run_dir,
            events_file=run_dir / "events.jsonl",
            summary_file=run_dir / "summary.json",
            junit_file=run_dir / "results.junit.xml",
        )

    def _summary_payload(
        self,
        summary: RunSummary,
        details: RunDetails,
        run_start: datetime,
        run_end: datetime,
        outcomes: Sequence[TestOutcome],
        aborted: RouterInternalError | None,
    ) -> dict[str, Any]:
        failures = [
            {
                "test_id": outcome.test_id,
                "title": outcome.title,
                "attempt": outcome.attempt,
                "error_kind": outcome.error_kind,
                "error": outcome.failure_detail,
            }
            for outcome in _final_outcomes(outcomes)
            if outcome.status == TestStatus.FAILED
        ]
        return {
            "run_id": self.run_id,
            "mode": details.mode,
            "browser": details.browser,
            "specs": details.specs,
            "started_at": run_start.isoformat(),
            "finished_at": run_end.isoformat(),
            **summary.model_dump(mode="json"),
            "failures": failures,
            "aborted": str(aborted) if aborted else None,
        }

    def _write_junit(self, outcomes: Sequence[TestOutcome], junit_file: Path) -> None:
        final = _final_outcomes(outcomes)
        suite = ET.Element(
            "testsuite",
            attrib={
                "name": self.run_id,
                "tests": str(len(final)),
                "failures": str(len([o for o in final if o.status == TestStatus.FAILED])),
                "skipped": str(len([o for o in final if o.status in (TestStatus.SKIPPED, TestStatus.PENDING)])),
            },
        )
        for outcome in final:
            case = ET.SubElement(
                suite,
                "testcase",
                attrib={
                    "classname": outcome.test_id.split("::", 1)[0],
                    "name": outcome.title,
                    "time": str(outcome.duration_ms / 1000),
                },
            )
            if outcome.status == TestStatus.FAILED:
                failure = ET.SubElement(
                    case,
                    "failure",
                    attrib={"message": outcome.failure_detail or "Test failed", "type": outcome.error_kind or ""},
                )
                failure.text = outcome.failure_detail or ""
            elif outcome.status in (TestStatus.SKIPPED, TestStatus.PENDING):
                ET.SubElement(case, "skipped", attrib={"message": outcome.status.value})
        ET.ElementTree(suite).write(junit_file, encoding="utf-8", xml_declaration=True)


def _final_outcomes(outcomes: Sequence[TestOutcome]) -> list[TestOutcome]:
    final: dict[str, TestOutcome] = {}
    for outcome in outcomes:
        final[outcome.test_id] = outcome
    return list(final.values())
