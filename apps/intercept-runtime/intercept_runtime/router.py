"""Routes outgoing requests to mock rules or the real network."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from .models import InterceptedExchange, OutgoingRequest, ResponseSpec, SyntheticResponse
from .registry import InterceptionRegistry
from .synthesizer import ResponseSynthesizer
from .waits import WaitCoordinator

LOGGER = structlog.get_logger("intercept_runtime")


@dataclass
class RoutedResponse:
    """Router decision for one request.

    ``response`` is set when a mock rule answered; otherwise the request is a
    passthrough and the caller's network layer must perform it. A mocked
    ``exchange`` may still be Pending while an earlier exchange on the same
    alias is unresolved.
    """

    exchange: InterceptedExchange
    response: SyntheticResponse | None = None
    spied: bool = False

    @property
    def passthrough(self) -> bool:
        return self.response is None


class RequestRouter:
    """Consults the registry for every request issued by the browser engine."""

    def __init__(
        self,
        registry: InterceptionRegistry,
        coordinator: WaitCoordinator,
        synthesizer: ResponseSynthesizer | None = None,
    ) -> None:
        self._registry = registry
        self._coordinator = coordinator
        self._synthesizer = synthesizer or ResponseSynthesizer()
        self._logger = LOGGER.bind(component="router")

    async def route(self, request: OutgoingRequest) -> RoutedResponse:
        claimed = self._registry.claim(request)
        if claimed is None:
            exchange = self._coordinator.record(request, alias=None, intercepted=False)
            self._coordinator.resolve(exchange, None)
            self._logger.debug("request_passthrough", method=request.method, url=request.url)
            return RoutedResponse(exchange=exchange)

        handle, rule = claimed
        exchange = self._coordinator.record(request, alias=rule.alias)
        if rule.is_spy:
            self._logger.debug(
                "request_spied",
                method=request.method,
                url=request.url,
                alias=rule.alias,
                sequence=exchange.sequence_number,
            )
            return RoutedResponse(exchange=exchange, spied=True)

        response = await self._synthesizer.synthesize(rule.response)
        self._coordinator.resolve(exchange, rule.response)
        self._logger.info(
            "request_intercepted",
            method=request.method,
            url=request.url,
            rule_id=handle.rule_id,
            alias=rule.alias,
            sequence=exchange.sequence_number,
            status=response.status_code,
            delay_ms=rule.response.delay_ms or 0,
        )
        return RoutedResponse(exchange=exchange, response=response)

    async def complete(
        self,
        exchange: InterceptedExchange,
        response: ResponseSpec | None,
        *,
        error: str | None = None,
    ) -> None:
        """Report the real network's answer for a spied exchange."""

        self._coordinator.resolve(exchange, response, error=error)
        self._logger.debug(
            "request_completed",
            alias=exchange.alias,
            sequence=exchange.sequence_number,
            status=response.status_code if response else None,
            error=error,
        )
