"""Pydantic models shared by the interception, wait and run layers."""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

HTTP_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"})
ANY_METHOD = "*"


class _PassthroughMarker:
    """Body marker telling the router to let the request reach the network."""

    def __repr__(self) -> str:
        return "PASSTHROUGH"

    def __reduce__(self) -> str:
        return "PASSTHROUGH"


PASSTHROUGH = _PassthroughMarker()


class ResponseSpec(BaseModel):
    """Canned response served for a matched rule."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    status_code: int = 200
    body: Any = None
    headers: dict[str, str] = Field(default_factory=dict)
    delay_ms: Optional[int] = None

    @field_validator("status_code")
    @classmethod
    def _status_in_range(cls, value: int) -> int:
        if not 100 <= value <= 599:
            raise ValueError(f"status_code must be between 100 and 599, got {value}")
        return value

    @field_validator("delay_ms")
    @classmethod
    def _delay_not_negative(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 0:
            raise ValueError("delay_ms cannot be negative")
        return value

    @property
    def is_passthrough(self) -> bool:
        return self.body is PASSTHROUGH


class MockRule(BaseModel):
    """Interception rule keyed by method and URL pattern."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    method: str = ANY_METHOD
    url_pattern: Union[str, re.Pattern]
    response: Optional[ResponseSpec] = None
    alias: Optional[str] = None
    times: Optional[int] = None
    regex: bool = False

    @property
    def is_spy(self) -> bool:
        """Spy rules record the exchange but let the real network answer."""

        return self.response is None or self.response.is_passthrough

    def describe(self) -> str:
        pattern = self.url_pattern.pattern if isinstance(self.url_pattern, re.Pattern) else self.url_pattern
        return f"{self.method.upper()} {pattern}"


class OutgoingRequest(BaseModel):
    """Request issued by the driven browser."""

    method: str
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"

    def encoded_body(self) -> bytes | None:
        if self.body is None or self.method.upper() == "GET":
            return None
        if isinstance(self.body, bytes):
            return self.body
        if isinstance(self.body, (dict, list)):
            return json.dumps(self.body).encode("utf-8")
        return str(self.body).encode("utf-8")


class SyntheticResponse(BaseModel):
    """Wire-level response produced without touching the network."""

    model_config = ConfigDict(frozen=True)

    status_code: int
    headers: dict[str, str]
    body: bytes

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json_body(self) -> Any:
        return json.loads(self.text)


class ExchangeState(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


class InterceptedExchange(BaseModel):
    """One observed request and, once resolved, its response."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    alias: Optional[str] = None
    request: OutgoingRequest
    response: Optional[ResponseSpec] = None
    state: ExchangeState = ExchangeState.PENDING
    sequence_number: int
    intercepted: bool = True
    error: Optional[str] = None
    observed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TestStatus(str, Enum):
    __test__ = False

    PASSED = "passed"
    FAILED = "failed"
    PENDING = "pending"
    SKIPPED = "skipped"


class AttemptState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    PASSED = "passed"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_FINAL = "failed_final"


class TestOutcome(BaseModel):
    """Result of one attempt of one test case."""

    __test__ = False
    model_config = ConfigDict(frozen=True)

    test_id: str
    title: str
    status: TestStatus
    state: AttemptState
    attempt: int = 1
    duration_ms: float = 0.0
    failure_detail: Optional[str] = None
    error_kind: Optional[str] = None


class RunSummary(BaseModel):
    """Run-level totals recomputed from the outcome log."""

    model_config = ConfigDict(frozen=True)

    total_tests: int = 0
    total_passed: int = 0
    total_failed: int = 0
    total_pending: int = 0
    total_skipped: int = 0
    total_attempts: int = 0
    total_duration_ms: float = 0.0


class RunDetails(BaseModel):
    """Metadata handed to run-start listeners."""

    run_id: str
    browser: str
    specs: list[str] = Field(default_factory=list)
    mode: str
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    config: dict[str, Any] = Field(default_factory=dict)
