"""Declaring test cases in spec modules."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .scope import TestCaseScope

CaseBody = Callable[[TestCaseScope], Awaitable[None]]


@dataclass(frozen=True)
class TestCase:
    """A named async body run against a fresh scope on every attempt."""

    __test__ = False

    test_id: str
    title: str
    body: Optional[CaseBody] = None
    skip: bool = False
    retries: Optional[int] = None

    @property
    def is_pending(self) -> bool:
        return self.body is None and not self.skip


def case(title: str, *, retries: int | None = None, skip: bool = False) -> Callable[[CaseBody], TestCase]:
    """Decorator turning ``async def body(scope)`` into a TestCase.

    Example::

        @case("Should create a batch")
        async def create_batch(scope):
            scope.intercept("POST", "**/api/batches", {"statusCode": 201}, alias="createBatch")
            ...
    """

    def decorator(body: CaseBody) -> TestCase:
        return TestCase(
            test_id=f"{body.__module__}::{body.__qualname__}",
            title=title,
            body=body,
            skip=skip,
            retries=retries,
        )

    return decorator


def skip(title: str) -> Callable[[CaseBody], TestCase]:
    return case(title, skip=True)


def pending(title: str, *, test_id: str | None = None) -> TestCase:
    """A case with no body yet. It is reported, never run."""

    return TestCase(test_id=test_id or title, title=title)
