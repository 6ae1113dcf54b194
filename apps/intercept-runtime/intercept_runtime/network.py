"""Engine-side network hook: routes requests, performs passthrough calls."""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from http import client
from typing import Any, Protocol
from urllib import error, request
from urllib.parse import urljoin

import structlog

from .config import DEFAULT_BASE_URL
from .models import OutgoingRequest, ResponseSpec
from .router import RequestRouter

LOGGER = structlog.get_logger("intercept_runtime")

DEFAULT_TIMEOUT = 10.0


@dataclass
class NetworkResponse:
    """Response handed back to the browser engine."""

    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    elapsed_ms: float = 0.0
    intercepted: bool = False

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.text)


class NetworkHook(Protocol):
    """What the browser engine calls for every outgoing request."""

    async def handle(self, outgoing: OutgoingRequest) -> NetworkResponse:
        ...


class NetworkDriver:
    """Routes each request through the router; unmatched ones go over HTTP."""

    def __init__(
        self,
        router: RequestRouter,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._router = router
        self._base_url = (base_url or DEFAULT_BASE_URL).rstrip("/") + "/"
        self._timeout = timeout or DEFAULT_TIMEOUT

    async def request(
        self,
        method: str,
        url: str,
        *,
        body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> NetworkResponse:
        outgoing = OutgoingRequest(
            method=method.upper(),
            url=self.resolve_url(url),
            headers={"Accept": "application/json", **(headers or {})},
            body=body,
        )
        return await self.handle(outgoing)

    async def handle(self, outgoing: OutgoingRequest) -> NetworkResponse:
        start = time.perf_counter()
        routed = await self._router.route(outgoing)
        if routed.response is not None:
            return NetworkResponse(
                status_code=routed.response.status_code,
                headers=dict(routed.response.headers),
                body=routed.response.body,
                elapsed_ms=(time.perf_counter() - start) * 1000,
                intercepted=True,
            )

        try:
            status, headers, payload, elapsed_ms = await asyncio.to_thread(
                self._perform_request,
                outgoing.method,
                outgoing.url,
                outgoing.headers,
                outgoing.encoded_body(),
            )
        except Exception as exc:
            if routed.spied:
                await self._router.complete(routed.exchange, None, error=str(exc) or type(exc).__name__)
            raise

        if routed.spied:
            observed = ResponseSpec(status_code=status, headers=headers, body=_decode_body(payload, headers))
            await self._router.complete(routed.exchange, observed)
        return NetworkResponse(status_code=status, headers=headers, body=payload, elapsed_ms=elapsed_ms)

    def resolve_url(self, url: str) -> str:
        if "://" in url:
            return url
        return urljoin(self._base_url, url.lstrip("/"))

    def _perform_request(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
    ) -> tuple[int, dict[str, str], bytes, float]:
        req = request.Request(url, data=body, headers=headers, method=method)
        start = time.perf_counter()
        try:
            with request.urlopen(req, timeout=self._timeout) as response:
                payload = response.read()
                status = response.getcode()
                response_headers = dict(response.headers.items())
        except error.HTTPError as exc:
            payload = exc.read()
            status = exc.code
            response_headers = dict(exc.headers.items()) if exc.headers else {}
        except (OSError, client.HTTPException) as exc:
            raise RuntimeError(f"HTTP request failed for {method} {url}: {exc}") from exc
        elapsed_ms = (time.perf_counter() - start) * 1000
        LOGGER.debug("passthrough_completed", method=method, url=url, status=status, elapsed_ms=round(elapsed_ms, 3))
        return status, response_headers, payload, elapsed_ms


def _decode_body(payload: bytes, headers: dict[str, str]) -> Any:
    text = payload.decode("utf-8", errors="replace")
    content_type = next((value for key, value in headers.items() if key.lower() == "content-type"), "")
    if "json" in content_type:
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
    return text
