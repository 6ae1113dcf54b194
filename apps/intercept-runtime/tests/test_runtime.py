from __future__ import annotations

import json
import textwrap
import xml.etree.ElementTree as ET
from pathlib import Path

import pytest
import structlog
import yaml
from typer.testing import CliRunner

from intercept_runtime.cases import TestCase
from intercept_runtime.config import RunConfig
from intercept_runtime.main import app
from intercept_runtime.models import RunSummary
from intercept_runtime.output_config import OutputFormat
from intercept_runtime.reporter import AFTER_RUN, RunReporter
from intercept_runtime.runner import SuiteRunner
from intercept_runtime.scope import TestCaseScope

runner = CliRunner()

SPEC_MODULE = textwrap.dedent(
    '''
    from intercept_runtime.cases import case, pending, skip


    @case("Should create a certificate batch with mocked API")
    async def create_batch(scope):
        body = {"success": True, "data": {"batch_id": "test-batch-123"}}
        scope.intercept("POST", "**/api/batches", {"statusCode": 201, "body": body}, alias="createBatch")
        response = await scope.request("POST", "/api/batches", body={"name": "Batch A"})
        exchange = await scope.wait_for("@createBatch")
        assert response.status_code == 201
        assert exchange.response.body == body


    @case("Should return 401 for GET /api/auth/me without authentication")
    async def auth_me_unauthenticated(scope):
        response = await scope.request("GET", "/api/auth/me")
        assert response.status_code == 401


    @case("Should wait for a dashboard call that never happens")
    async def never_called(scope):
        scope.intercept("GET", "**/api/credits/balance", {"statusCode": 200}, alias="credits")
        await scope.wait_for("credits", timeout_ms=20)


    @skip("Should be responsive on mobile viewport")
    async def mobile(scope):
        raise AssertionError("skipped cases never run")


    signup = pending("Should verify signup page is accessible")
    '''
)


def _write_spec(tmp_path: Path) -> Path:
    spec = tmp_path / "test_certificates_spec.py"
    spec.write_text(SPEC_MODULE, encoding="utf-8")
    return spec


def _write_config(tmp_path: Path, base_url: str) -> Path:
    config = tmp_path / "run.yaml"
    config.write_text(
        yaml.safe_dump({"e2e": {"baseUrl": base_url, "retries": {"runMode": 1, "openMode": 0}}}),
        encoding="utf-8",
    )
    return config


def test_run_produces_summary_events_and_junit(tmp_path: Path, backend_url: str) -> None:
    spec = _write_spec(tmp_path)
    config = _write_config(tmp_path, backend_url)
    output_dir = tmp_path / "runs"

    result = runner.invoke(
        app,
        [
            "--spec",
            str(spec),
            "--config",
            str(config),
            "--output-dir",
            str(output_dir),
            "--run-id",
            "test-run",
            "--output-format",
            "plain",
        ],
        env={"INTERCEPT_RUNTIME_BASE_URL": ""},
    )

    assert result.exit_code == 1, result.output
    assert "SOME TESTS FAILED" in result.output

    run_dir = output_dir / "test-run"
    summary = json.loads((run_dir / "summary.json").read_text(encoding="utf-8"))
    assert summary["total_tests"] == 5
    assert summary["total_passed"] == 2
    assert summary["total_failed"] == 1
    assert summary["total_pending"] == 1
    assert summary["total_skipped"] == 1
    assert summary["total_attempts"] == 6
    assert summary["mode"] == "headless"
    assert len(summary["failures"]) == 1
    assert summary["failures"][0]["error_kind"] == "WaitTimeoutError"
    assert summary["failures"][0]["attempt"] == 2

    events = [json.loads(line) for line in (run_dir / "events.jsonl").read_text(encoding="utf-8").splitlines()]
    assert len(events) == 6
    retried = [event for event in events if event["title"].startswith("Should wait for")]
    assert [event["state"] for event in retried] == ["failed_retryable", "failed_final"]

    suite = ET.parse(run_dir / "results.junit.xml").getroot()
    assert suite.attrib["tests"] == "5"
    assert suite.attrib["failures"] == "1"
    assert suite.attrib["skipped"] == "2"


def test_interactive_mode_does_not_retry(tmp_path: Path, backend_url: str) -> None:
    spec = _write_spec(tmp_path)
    config = _write_config(tmp_path, backend_url)
    output_dir = tmp_path / "runs"

    result = runner.invoke(
        app,
        [
            "--spec",
            str(spec),
            "--config",
            str(config),
            "--mode",
            "interactive",
            "--output-dir",
            str(output_dir),
            "--run-id",
            "open-run",
            "--output-format",
            "json",
        ],
        env={"INTERCEPT_RUNTIME_BASE_URL": ""},
    )

    assert result.exit_code == 1, result.output
    summary = json.loads((output_dir / "open-run" / "summary.json").read_text(encoding="utf-8"))
    assert summary["total_attempts"] == 5
    assert summary["mode"] == "interactive"


def test_passing_run_exits_zero(tmp_path: Path) -> None:
    spec = tmp_path / "passing_spec.py"
    spec.write_text(
        textwrap.dedent(
            '''
            from intercept_runtime.cases import case


            @case("Should navigate to create event page with mocked auth")
            async def create_page(scope):
                scope.intercept("GET", "**/api/auth/me", {"statusCode": 200, "body": {"id": "test-user-123"}}, alias="authCheck")
                response = await scope.request("GET", "/api/auth/me")
                exchange = await scope.wait_for("authCheck")
                assert response.json()["id"] == "test-user-123"
                assert exchange.sequence_number == 0
            '''
        ),
        encoding="utf-8",
    )

    result = runner.invoke(
        app,
        ["--spec", str(spec), "--output-dir", str(tmp_path / "runs"), "--run-id", "green", "--output-format", "plain"],
    )

    assert result.exit_code == 0, result.output
    assert "ALL TESTS PASSED" in result.output


def test_spec_without_cases_is_rejected(tmp_path: Path) -> None:
    spec = tmp_path / "empty_spec.py"
    spec.write_text("VALUE = 1\n", encoding="utf-8")

    result = runner.invoke(app, ["--spec", str(spec), "--output-dir", str(tmp_path / "runs")])

    assert result.exit_code != 0


@pytest.mark.asyncio
async def test_run_context_is_cleared_when_an_after_run_listener_fails(tmp_path: Path) -> None:
    async def homepage(scope: TestCaseScope) -> None:
        scope.intercept("GET", "**/api/events", {"statusCode": 200, "body": []}, alias="events")
        await scope.request("GET", "/api/events")
        await scope.wait_for("events")

    def broken_listener(summary: RunSummary) -> None:
        raise RuntimeError("dashboard upload failed")

    reporter = RunReporter()
    reporter.on(AFTER_RUN, broken_listener)
    suite = SuiteRunner(
        cases=[TestCase(test_id="spec::homepage", title="Should load the homepage", body=homepage)],
        config=RunConfig(base_url="https://events.example.com"),
        output_root=tmp_path / "runs",
        run_id="broken-listener",
        output_format=OutputFormat.JSON,
        reporter=reporter,
    )

    with pytest.raises(RuntimeError, match="dashboard upload failed"):
        await suite.run_async()

    assert "run_id" not in structlog.contextvars.get_contextvars()
