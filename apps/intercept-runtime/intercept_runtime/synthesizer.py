"""Builds canned responses for matched rules."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable

from .models import ResponseSpec, SyntheticResponse

Sleeper = Callable[[float], Awaitable[Any]]


class ResponseSynthesizer:
    """Turns a ResponseSpec into a wire response, honouring ``delay_ms``."""

    def __init__(self, sleep: Sleeper = asyncio.sleep) -> None:
        self._sleep = sleep

    async def synthesize(self, spec: ResponseSpec) -> SyntheticResponse:
        if spec.delay_ms:
            await self._sleep(spec.delay_ms / 1000)
        return render_response(spec)


def render_response(spec: ResponseSpec) -> SyntheticResponse:
    """Pure rendering step: same spec, same status, headers and bytes."""

    payload, content_type = _render_body(spec.body)
    headers = {"Content-Type": content_type}
    for key, value in spec.headers.items():
        if key.lower() == "content-type":
            headers.pop("Content-Type", None)
        headers[key] = value
    headers["Content-Length"] = str(len(payload))
    return SyntheticResponse(status_code=spec.status_code, headers=headers, body=payload)


def _render_body(body: Any) -> tuple[bytes, str]:
    if isinstance(body, bytes):
        return body, "application/octet-stream"
    if isinstance(body, str):
        return body.encode("utf-8"), "text/plain; charset=utf-8"
    if body is None:
        return b"", "application/json"
    return json.dumps(body, sort_keys=True).encode("utf-8"), "application/json"
