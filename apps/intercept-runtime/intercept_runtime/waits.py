"""Exchange history and alias waits for one test case."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Iterable

import structlog

from .errors import RouterInternalError, WaitTimeoutError
from .models import ExchangeState, InterceptedExchange, OutgoingRequest, ResponseSpec

LOGGER = structlog.get_logger("intercept_runtime")

DEFAULT_WAIT_TIMEOUT_MS = 10_000


class WaitCoordinator:
    """Owns every exchange of the current test case and resolves alias waits.

    Each ``(alias, index)`` slot is backed by a future that the router resolves
    exactly once. Waits without an explicit index consume slots in order, so
    repeated waits on one alias observe successive exchanges.
    """

    def __init__(self, default_timeout_ms: float = DEFAULT_WAIT_TIMEOUT_MS) -> None:
        self.default_timeout_ms = default_timeout_ms
        self._exchanges: dict[str, list[InterceptedExchange]] = defaultdict(list)
        self._unaliased: list[InterceptedExchange] = []
        self._slots: dict[tuple[str, int], asyncio.Future[InterceptedExchange]] = {}
        self._cursor: dict[str, int] = defaultdict(int)
        # exchanges whose resolution waits on an earlier same-alias exchange
        self._settling: set[tuple[str, int]] = set()
        self._deferred: set[asyncio.Task[None]] = set()
        self._logger = LOGGER.bind(component="waits")

    def record(
        self,
        request: OutgoingRequest,
        alias: str | None,
        *,
        intercepted: bool = True,
    ) -> InterceptedExchange:
        """Append a pending exchange. Must not await: assignment is atomic on the loop."""

        history = self._exchanges[alias] if alias is not None else self._unaliased
        sequence_number = len(history)
        if history and history[-1].sequence_number != sequence_number - 1:
            raise RouterInternalError(
                f"Sequence for {alias or '<unaliased>'} is not contiguous at {sequence_number}"
            )
        exchange = InterceptedExchange(
            alias=alias,
            request=request,
            sequence_number=sequence_number,
            intercepted=intercepted,
        )
        history.append(exchange)
        return exchange

    def resolve(
        self,
        exchange: InterceptedExchange,
        response: ResponseSpec | None,
        *,
        error: str | None = None,
    ) -> None:
        """Mark ``exchange`` resolved in issue order without blocking the caller.

        While an earlier same-alias exchange is still pending, the resolution is
        handed to a task that waits for that predecessor's slot.
        """

        self._check_owned(exchange)
        predecessor = self._pending_predecessor(exchange)
        if predecessor is None:
            self._mark_resolved(exchange, response, error)
            return
        key = (exchange.alias, exchange.sequence_number)
        self._settling.add(key)
        task = asyncio.get_running_loop().create_task(
            self._resolve_after(predecessor, exchange, response, error)
        )
        self._deferred.add(task)
        task.add_done_callback(self._deferred_done)

    async def wait_for(
        self,
        alias: str,
        *,
        index: int | None = None,
        timeout_ms: float | None = None,
    ) -> InterceptedExchange:
        timeout_ms = self.default_timeout_ms if timeout_ms is None else timeout_ms
        consume = index is None
        position = self._cursor[alias] if consume else index
        if position < 0:
            raise ValueError(f"Exchange index must not be negative, got {position}")
        slot = self._slot(alias, position)
        if consume:
            self._cursor[alias] = position + 1

        try:
            exchange = await asyncio.wait_for(asyncio.shield(slot), timeout=max(timeout_ms, 0) / 1000)
        except asyncio.TimeoutError:
            if consume:
                self._give_back(alias, position)
            self._logger.info("wait_timed_out", alias=alias, index=position, timeout_ms=timeout_ms)
            raise WaitTimeoutError(alias, timeout_ms) from None
        except asyncio.CancelledError:
            if consume:
                self._give_back(alias, position)
            raise
        self._logger.debug(
            "wait_resolved",
            alias=alias,
            index=position,
            status=exchange.response.status_code if exchange.response else None,
        )
        return exchange

    async def wait_for_all(
        self,
        aliases: Iterable[str],
        *,
        timeout_ms: float | None = None,
    ) -> list[InterceptedExchange]:
        """Wait on several aliases under one shared deadline.

        All or nothing: when one alias times out or the wait is cancelled, the
        exchanges already taken for earlier aliases are given back.
        """

        timeout_ms = self.default_timeout_ms if timeout_ms is None else timeout_ms
        aliases = list(aliases)
        cursors = {alias: self._cursor[alias] for alias in aliases}
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000
        exchanges = []
        alias = None
        try:
            for alias in aliases:
                remaining_ms = max(0.0, (deadline - loop.time()) * 1000)
                exchanges.append(await self.wait_for(alias, timeout_ms=remaining_ms))
        except WaitTimeoutError:
            self._cursor.update(cursors)
            raise WaitTimeoutError(alias, timeout_ms) from None
        except asyncio.CancelledError:
            self._cursor.update(cursors)
            raise
        return exchanges

    def exchanges(self, alias: str | None = None) -> list[InterceptedExchange]:
        if alias is None:
            merged = [item for history in self._exchanges.values() for item in history]
            merged.extend(self._unaliased)
            return sorted(merged, key=lambda item: item.observed_at)
        return list(self._exchanges.get(alias, []))

    def get(self, alias: str, index: int = -1) -> InterceptedExchange | None:
        history = self._exchanges.get(alias, [])
        try:
            return history[index]
        except IndexError:
            return None

    def unaliased(self) -> list[InterceptedExchange]:
        return list(self._unaliased)

    def reset(self) -> None:
        for task in self._deferred:
            task.cancel()
        self._deferred.clear()
        self._settling.clear()
        for slot in self._slots.values():
            if not slot.done():
                slot.cancel()
        self._slots.clear()
        self._exchanges.clear()
        self._unaliased.clear()
        self._cursor.clear()

    def _slot(self, alias: str, index: int) -> asyncio.Future[InterceptedExchange]:
        key = (alias, index)
        slot = self._slots.get(key)
        if slot is None:
            slot = asyncio.get_running_loop().create_future()
            self._slots[key] = slot
            history = self._exchanges.get(alias, [])
            if index < len(history) and history[index].state is ExchangeState.RESOLVED:
                slot.set_result(history[index])
        return slot

    def _check_owned(self, exchange: InterceptedExchange) -> None:
        history = self._exchanges.get(exchange.alias, []) if exchange.alias is not None else self._unaliased
        index = exchange.sequence_number
        if index >= len(history) or history[index] is not exchange:
            raise RouterInternalError(
                f"Exchange {exchange.alias or '<unaliased>'}#{index} does not belong to this test case"
            )
        if exchange.state is ExchangeState.RESOLVED or (exchange.alias, index) in self._settling:
            raise RouterInternalError(f"Exchange {exchange.alias or '<unaliased>'}#{index} resolved twice")

    def _give_back(self, alias: str, position: int) -> None:
        if self._cursor[alias] == position + 1:
            self._cursor[alias] = position

    def _pending_predecessor(self, exchange: InterceptedExchange) -> asyncio.Future[InterceptedExchange] | None:
        if exchange.alias is None or exchange.sequence_number == 0:
            return None
        previous = self._exchanges[exchange.alias][exchange.sequence_number - 1]
        if previous.state is ExchangeState.RESOLVED:
            return None
        return self._slot(exchange.alias, previous.sequence_number)

    async def _resolve_after(
        self,
        predecessor: asyncio.Future[InterceptedExchange],
        exchange: InterceptedExchange,
        response: ResponseSpec | None,
        error: str | None,
    ) -> None:
        await asyncio.shield(predecessor)
        self._settling.discard((exchange.alias, exchange.sequence_number))
        self._mark_resolved(exchange, response, error)

    def _deferred_done(self, task: asyncio.Task[None]) -> None:
        self._deferred.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._logger.error("deferred_resolve_failed", error=str(task.exception()))

    def _mark_resolved(
        self,
        exchange: InterceptedExchange,
        response: ResponseSpec | None,
        error: str | None,
    ) -> None:
        if exchange.state is ExchangeState.RESOLVED:
            raise RouterInternalError(
                f"Exchange {exchange.alias or '<unaliased>'}#{exchange.sequence_number} resolved twice"
            )
        exchange.response = response
        exchange.error = error
        exchange.state = ExchangeState.RESOLVED
        if exchange.alias is None:
            return
        slot = self._slots.get((exchange.alias, exchange.sequence_number))
        if slot is None:
            slot = asyncio.get_running_loop().create_future()
            self._slots[(exchange.alias, exchange.sequence_number)] = slot
        if slot.done():
            raise RouterInternalError(
                f"Wait slot {exchange.alias}#{exchange.sequence_number} was already completed"
            )
        slot.set_result(exchange)
