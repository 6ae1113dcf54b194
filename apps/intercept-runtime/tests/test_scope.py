from __future__ import annotations

import asyncio

import pytest

from intercept_runtime.config import RunConfig
from intercept_runtime.errors import InvalidRuleError, WaitTimeoutError
from intercept_runtime.models import PASSTHROUGH, ExchangeState
from intercept_runtime.scope import TestCaseScope


def _scope(base_url: str, request_timeout_ms: int = 1000) -> TestCaseScope:
    return TestCaseScope("spec::case", config=RunConfig(base_url=base_url, request_timeout_ms=request_timeout_ms))


@pytest.mark.asyncio
async def test_create_batch_scenario_returns_registered_body() -> None:
    scope = _scope("https://certs.example.com")
    body = {"success": True, "data": {"batch_id": "test-batch-123"}}
    scope.intercept("POST", "**/api/batches", {"statusCode": 201, "body": body}, alias="createBatch")

    response = await scope.request("POST", "/api/batches", body={"name": "Batch A", "template_id": "tpl-1"})
    exchange = await scope.wait_for("@createBatch")

    assert response.intercepted
    assert response.status_code == 201
    assert response.json() == body
    assert exchange.response.status_code == 201
    assert exchange.response.body == body
    assert exchange.request.body == {"name": "Batch A", "template_id": "tpl-1"}
    assert exchange.request.url == "https://certs.example.com/api/batches"


@pytest.mark.asyncio
async def test_unmocked_auth_check_passes_through_to_backend(backend_url: str) -> None:
    scope = _scope(backend_url, request_timeout_ms=50)
    scope.intercept("POST", "**/api/batches", {"statusCode": 201}, alias="createBatch")

    response = await scope.request("GET", "/api/auth/me")

    assert response.status_code == 401
    assert not response.intercepted
    assert response.json() == {"error": "Unauthorized"}
    unaliased = scope.waits.unaliased()
    assert len(unaliased) == 1
    assert unaliased[0].request.url == f"{backend_url}/api/auth/me"
    assert unaliased[0].state is ExchangeState.RESOLVED


@pytest.mark.asyncio
async def test_spied_login_resolves_with_real_response(backend_url: str) -> None:
    scope = _scope(backend_url)
    scope.intercept("POST", "**/api/login", alias="loginRequest")

    waiter = asyncio.create_task(scope.wait_for("loginRequest"))
    response = await scope.request("POST", "/api/login", body={"email": "test@example.com", "password": "x"})
    exchange = await waiter

    assert response.status_code == 401
    assert exchange.response.status_code == 401
    assert exchange.response.body == {"error": "Unauthorized"}


@pytest.mark.asyncio
async def test_passthrough_marker_acts_as_spy(backend_url: str) -> None:
    scope = _scope(backend_url)
    scope.intercept("GET", "/home", PASSTHROUGH, alias="home")

    response = await scope.request("GET", "/home")
    exchange = await scope.wait_for("home")

    assert response.status_code == 200
    assert exchange.response.body == {"ok": True, "path": "/home"}


@pytest.mark.asyncio
async def test_network_failure_resolves_spy_with_error() -> None:
    scope = _scope("http://127.0.0.1:9")
    scope.intercept("GET", "**/api/events", alias="events")

    with pytest.raises(RuntimeError):
        await scope.request("GET", "/api/events")
    exchange = await scope.wait_for("events", timeout_ms=0)

    assert exchange.response is None
    assert exchange.error


@pytest.mark.asyncio
async def test_dropped_connection_resolves_spy_and_unblocks_alias(dropping_backend_url: str) -> None:
    scope = _scope(dropping_backend_url)
    scope.intercept("GET", "**/api/auth/me", alias="authCheck")

    with pytest.raises(RuntimeError):
        await scope.request("GET", "/api/auth/me")
    first = await scope.wait_for("authCheck", timeout_ms=0)

    assert first.state is ExchangeState.RESOLVED
    assert first.response is None
    assert first.error

    scope.intercept("GET", "**/api/auth/me", {"statusCode": 200, "body": {"id": "test-user-123"}}, alias="authCheck")
    response = await asyncio.wait_for(scope.request("GET", "/api/auth/me"), timeout=1)
    second = await scope.wait_for("authCheck", timeout_ms=500)

    assert response.status_code == 200
    assert second.sequence_number == 1
    assert second.response.body == {"id": "test-user-123"}


@pytest.mark.asyncio
async def test_delayed_mock_observes_delay() -> None:
    scope = _scope("https://certs.example.com")
    scope.intercept("GET", "**/api/templates", {"statusCode": 200, "body": [], "delayMs": 80}, alias="templates")

    response = await scope.request("GET", "/api/templates")

    assert response.elapsed_ms >= 75


@pytest.mark.parametrize(
    "response",
    [
        {"statusCode": 99},
        {"statusCode": 600},
        {"statusCode": 200, "delayMs": -5},
    ],
)
def test_invalid_static_responses_raise_invalid_rule(response: dict) -> None:
    scope = _scope("https://certs.example.com")

    with pytest.raises(InvalidRuleError):
        scope.intercept("GET", "**/api/x", response)


@pytest.mark.asyncio
async def test_close_discards_rules_and_history() -> None:
    scope = _scope("https://certs.example.com", request_timeout_ms=20)
    handle = scope.intercept("GET", "**/api/events", {"statusCode": 200}, alias="events")
    await scope.request("GET", "/api/events")

    scope.close()

    assert len(scope.registry) == 0
    assert scope.waits.exchanges() == []
    with pytest.raises(WaitTimeoutError):
        await scope.wait_for("events")
    scope.unintercept(handle)
