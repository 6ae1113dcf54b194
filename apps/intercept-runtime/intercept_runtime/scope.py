"""Per-test-case handle bundling registry, waits, router and network."""

from __future__ import annotations

import re
from typing import Any, Iterable, Mapping, Union

import structlog
from pydantic import ValidationError

from .config import RunConfig
from .errors import InvalidRuleError
from .models import PASSTHROUGH, InterceptedExchange, MockRule, ResponseSpec
from .network import NetworkDriver, NetworkResponse
from .registry import InterceptionRegistry, RuleHandle
from .router import RequestRouter
from .waits import WaitCoordinator

LOGGER = structlog.get_logger("intercept_runtime")

ResponseLike = Union[ResponseSpec, Mapping[str, Any], None]


class TestCaseScope:
    """Everything one attempt of one test case may touch.

    A new scope is built for every attempt, so rules and exchange history
    never leak between test cases or between retries.
    """

    __test__ = False

    def __init__(self, test_id: str, *, config: RunConfig | None = None, attempt: int = 1) -> None:
        self.test_id = test_id
        self.attempt = attempt
        self.config = config or RunConfig()
        self.registry = InterceptionRegistry()
        self.waits = WaitCoordinator(default_timeout_ms=self.config.request_timeout_ms)
        self.router = RequestRouter(self.registry, self.waits)
        self.network = NetworkDriver(
            self.router,
            base_url=self.config.base_url,
            timeout=self.config.page_load_timeout_ms / 1000,
        )
        self._logger = LOGGER.bind(test_id=test_id, attempt=attempt)

    def intercept(
        self,
        method: str,
        url: Union[str, re.Pattern],
        response: ResponseLike = None,
        *,
        alias: str | None = None,
        times: int | None = None,
        regex: bool = False,
    ) -> RuleHandle:
        """Register a rule. Without ``response`` the rule only spies on traffic."""

        try:
            spec = _coerce_response(response)
            rule = MockRule(method=method, url_pattern=url, response=spec, alias=alias, times=times, regex=regex)
        except ValidationError as exc:
            raise InvalidRuleError(f"Invalid mock rule for {method} {url}: {exc}") from exc
        handle = self.registry.register(rule)
        self._logger.debug("intercept_added", rule=rule.describe(), alias=alias)
        return handle

    def unintercept(self, handle: RuleHandle) -> None:
        self.registry.unregister(handle)

    async def wait_for(
        self,
        alias: str,
        *,
        index: int | None = None,
        timeout_ms: float | None = None,
    ) -> InterceptedExchange:
        return await self.waits.wait_for(alias.lstrip("@"), index=index, timeout_ms=timeout_ms)

    async def wait_for_all(self, aliases: Iterable[str], *, timeout_ms: float | None = None) -> list[InterceptedExchange]:
        return await self.waits.wait_for_all([alias.lstrip("@") for alias in aliases], timeout_ms=timeout_ms)

    async def request(
        self,
        method: str,
        url: str,
        *,
        body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> NetworkResponse:
        return await self.network.request(method, url, body=body, headers=headers)

    def close(self) -> None:
        self.waits.reset()
        self.registry.clear()


def _coerce_response(response: ResponseLike) -> ResponseSpec | None:
    if response is None or isinstance(response, ResponseSpec):
        return response
    if response is PASSTHROUGH:
        return ResponseSpec(body=PASSTHROUGH)
    payload = dict(response)
    # accept the camelCase keys used by static responses in browser specs
    for source, target in (("statusCode", "status_code"), ("delayMs", "delay_ms"), ("delay", "delay_ms")):
        if source in payload:
            payload.setdefault(target, payload.pop(source))
    return ResponseSpec.model_validate(payload)
