"""Per-test-case retry state machine."""

from __future__ import annotations

import time
import traceback
from typing import Callable

import structlog

from .cases import TestCase
from .config import RunConfig, RunMode
from .errors import InvalidRuleError, RouterInternalError
from .models import AttemptState, TestOutcome, TestStatus
from .reporter import RunReporter
from .scope import TestCaseScope

LOGGER = structlog.get_logger("intercept_runtime")

ScopeFactory = Callable[[str, int], TestCaseScope]

_TRANSITIONS: dict[AttemptState, frozenset[AttemptState]] = {
    AttemptState.NOT_STARTED: frozenset({AttemptState.RUNNING}),
    AttemptState.RUNNING: frozenset(
        {AttemptState.PASSED, AttemptState.FAILED_RETRYABLE, AttemptState.FAILED_FINAL}
    ),
    AttemptState.FAILED_RETRYABLE: frozenset({AttemptState.RUNNING}),
    AttemptState.PASSED: frozenset(),
    AttemptState.FAILED_FINAL: frozenset(),
}


def advance(current: AttemptState, target: AttemptState) -> AttemptState:
    if target not in _TRANSITIONS[current]:
        raise ValueError(f"Illegal attempt transition {current.value} -> {target.value}")
    return target


class RetryOrchestrator:
    """Runs one test case at a time, re-entering it while retries remain."""

    def __init__(
        self,
        *,
        config: RunConfig,
        mode: RunMode,
        reporter: RunReporter,
        scope_factory: ScopeFactory | None = None,
    ) -> None:
        self._config = config
        self._mode = mode
        self._reporter = reporter
        self._scope_factory = scope_factory or self._default_scope

    def max_retries(self, test_case: TestCase) -> int:
        if self._mode is RunMode.INTERACTIVE:
            return self._config.retries_for(self._mode)
        if test_case.retries is not None:
            return test_case.retries
        return self._config.retries_for(self._mode)

    async def run_case(self, test_case: TestCase) -> list[TestOutcome]:
        logger = LOGGER.bind(test_id=test_case.test_id)
        if test_case.skip or test_case.body is None:
            status = TestStatus.SKIPPED if test_case.skip else TestStatus.PENDING
            outcome = TestOutcome(
                test_id=test_case.test_id,
                title=test_case.title,
                status=status,
                state=AttemptState.NOT_STARTED,
                attempt=1,
            )
            self._reporter.record_outcome(outcome)
            logger.info("test_not_run", status=status.value)
            return [outcome]

        max_retries = self.max_retries(test_case)
        outcomes: list[TestOutcome] = []
        state = AttemptState.NOT_STARTED
        attempt = 0

        while state in (AttemptState.NOT_STARTED, AttemptState.FAILED_RETRYABLE):
            attempt += 1
            state = advance(state, AttemptState.RUNNING)
            scope = self._scope_factory(test_case.test_id, attempt)
            timer = time.perf_counter()
            failure: Exception | None = None
            detail: str | None = None
            try:
                await test_case.body(scope)
            except RouterInternalError as exc:
                outcome = self._outcome(test_case, attempt, timer, AttemptState.FAILED_FINAL, exc)
                outcomes.append(outcome)
                self._reporter.record_outcome(outcome)
                logger.error("run_aborted", attempt=attempt, error=str(exc))
                raise
            except Exception as exc:
                failure = exc
                detail = traceback.format_exc()
            finally:
                scope.close()

            if failure is None:
                state = advance(state, AttemptState.PASSED)
            elif isinstance(failure, InvalidRuleError) or attempt > max_retries:
                state = advance(state, AttemptState.FAILED_FINAL)
            else:
                state = advance(state, AttemptState.FAILED_RETRYABLE)

            outcome = self._outcome(test_case, attempt, timer, state, failure)
            outcomes.append(outcome)
            self._reporter.record_outcome(outcome)
            if failure is not None:
                logger.warning(
                    "attempt_failed",
                    attempt=attempt,
                    state=state.value,
                    error_kind=type(failure).__name__,
                    error=str(failure),
                )
                logger.debug("attempt_traceback", attempt=attempt, traceback=detail)
            else:
                logger.info("attempt_passed", attempt=attempt, duration_ms=outcome.duration_ms)
        return outcomes

    def _default_scope(self, test_id: str, attempt: int) -> TestCaseScope:
        return TestCaseScope(test_id, config=self._config, attempt=attempt)

    @staticmethod
    def _outcome(
        test_case: TestCase,
        attempt: int,
        timer: float,
        state: AttemptState,
        failure: BaseException | None,
    ) -> TestOutcome:
        duration_ms = (time.perf_counter() - timer) * 1000
        return TestOutcome(
            test_id=test_case.test_id,
            title=test_case.title,
            status=TestStatus.PASSED if failure is None else TestStatus.FAILED,
            state=state,
            attempt=attempt,
            duration_ms=round(duration_ms, 3),
            failure_detail=(str(failure) or repr(failure)) if failure is not None else None,
            error_kind=type(failure).__name__ if failure is not None else None,
        )
