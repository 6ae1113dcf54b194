"""Append-only outcome log and run lifecycle listeners."""

from __future__ import annotations

from collections import defaultdict
from itertools import chain
from typing import Any, Callable, Iterable, Sequence

import structlog

from .models import RunDetails, RunSummary, TestOutcome, TestStatus

LOGGER = structlog.get_logger("intercept_runtime")

BEFORE_RUN = "before:run"
AFTER_RUN = "after:run"
AFTER_ATTEMPT = "after:attempt"
EVENTS = (BEFORE_RUN, AFTER_RUN, AFTER_ATTEMPT)

Listener = Callable[[Any], None]


class RunReporter:
    """Collects TestOutcome records and computes the RunSummary at run end."""

    def __init__(self) -> None:
        self._outcomes: list[TestOutcome] = []
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._details: RunDetails | None = None
        self._summary: RunSummary | None = None

    def on(self, event: str, listener: Listener) -> None:
        if event not in EVENTS:
            raise ValueError(f"Unknown run event '{event}', expected one of {', '.join(EVENTS)}")
        self._listeners[event].append(listener)

    @property
    def details(self) -> RunDetails | None:
        return self._details

    @property
    def outcomes(self) -> tuple[TestOutcome, ...]:
        return tuple(self._outcomes)

    def on_run_start(self, details: RunDetails) -> None:
        if self._details is not None:
            raise RuntimeError(f"Run {self._details.run_id} was already started")
        self._details = details
        self._emit(BEFORE_RUN, details)

    def record_outcome(self, outcome: TestOutcome) -> None:
        if self._details is None:
            raise RuntimeError("Cannot record outcomes before the run has started")
        if self._summary is not None:
            raise RuntimeError("Cannot record outcomes after the run has ended")
        self._outcomes.append(outcome)
        self._emit(AFTER_ATTEMPT, outcome)

    def on_run_end(self) -> RunSummary:
        if self._details is None:
            raise RuntimeError("Cannot end a run that was never started")
        if self._summary is not None:
            raise RuntimeError(f"Run {self._details.run_id} has already ended")
        self._summary = summarize(self._outcomes)
        self._emit(AFTER_RUN, self._summary)
        return self._summary

    def _emit(self, event: str, payload: Any) -> None:
        for listener in self._listeners[event]:
            listener(payload)


def summarize(outcomes: Iterable[TestOutcome]) -> RunSummary:
    """Recompute run totals from scratch. A test counts with its last attempt."""

    records = list(outcomes)
    final: dict[str, TestOutcome] = {}
    for outcome in records:
        current = final.get(outcome.test_id)
        if current is None or outcome.attempt >= current.attempt:
            final[outcome.test_id] = outcome

    counts = {status: 0 for status in TestStatus}
    for outcome in final.values():
        counts[outcome.status] += 1

    return RunSummary(
        total_tests=len(final),
        total_passed=counts[TestStatus.PASSED],
        total_failed=counts[TestStatus.FAILED],
        total_pending=counts[TestStatus.PENDING],
        total_skipped=counts[TestStatus.SKIPPED],
        total_attempts=len(records),
        total_duration_ms=round(sum(outcome.duration_ms for outcome in records), 3),
    )


def merge_logs(*logs: Sequence[TestOutcome]) -> list[TestOutcome]:
    """Reduce per-worker outcome logs into one log ordered by test and attempt."""

    first_seen: dict[str, int] = {}
    merged = list(chain.from_iterable(logs))
    for position, outcome in enumerate(merged):
        first_seen.setdefault(outcome.test_id, position)
    return sorted(merged, key=lambda outcome: (first_seen[outcome.test_id], outcome.attempt))


def log_run_start(details: RunDetails) -> None:
    LOGGER.info(
        "run_started",
        run_id=details.run_id,
        browser=details.browser,
        specs=len(details.specs),
        mode=details.mode,
    )


def log_run_end(summary: RunSummary) -> None:
    LOGGER.info(
        "run_finished",
        total_tests=summary.total_tests,
        passed=summary.total_passed,
        failed=summary.total_failed,
        pending=summary.total_pending,
        skipped=summary.total_skipped,
        duration_ms=summary.total_duration_ms,
    )
