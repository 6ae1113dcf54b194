from __future__ import annotations

from pathlib import Path

import pytest
import structlog
import yaml

from intercept_runtime.config import BASE_URL_ENV, REQUEST_TIMEOUT_ENV, RunConfig, RunMode, load_config
from intercept_runtime.logging_utils import RichConsoleRenderer, bind_run_context, clear_run_context
from intercept_runtime.output_config import ENV_VAR_NAME, OutputFormat, get_output_format, log_format_for


def test_defaults_without_file(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(BASE_URL_ENV, raising=False)
    monkeypatch.delenv(REQUEST_TIMEOUT_ENV, raising=False)

    config = load_config(None)

    assert config == RunConfig()
    assert config.default_command_timeout_ms == 10_000
    assert config.page_load_timeout_ms == 30_000
    assert config.request_timeout_ms == 10_000
    assert config.retries_for(RunMode.HEADLESS) == 1
    assert config.retries_for(RunMode.INTERACTIVE) == 0
    assert (config.viewport.width, config.viewport.height) == (1280, 720)


def test_loads_cypress_style_keys(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(BASE_URL_ENV, raising=False)
    monkeypatch.delenv(REQUEST_TIMEOUT_ENV, raising=False)
    payload = {
        "e2e": {
            "baseUrl": "https://events.example.com",
            "defaultCommandTimeout": 4000,
            "requestTimeout": 8000,
            "retries": {"runMode": 2, "openMode": 0},
            "viewport": {"width": 375, "height": 812},
            "video": True,
        },
        "env": {"apiUrl": "https://events.example.com/api"},
    }
    path = tmp_path / "run.yaml"
    path.write_text(yaml.safe_dump(payload), encoding="utf-8")

    config = load_config(path)

    assert config.base_url == "https://events.example.com"
    assert config.default_command_timeout_ms == 4000
    assert config.request_timeout_ms == 8000
    assert config.retries_for(RunMode.HEADLESS) == 2
    assert config.viewport.width == 375
    assert config.env == {"apiUrl": "https://events.example.com/api"}


def test_environment_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "run.yaml"
    path.write_text(yaml.safe_dump({"base_url": "https://file.example.com", "request_timeout_ms": 100}), encoding="utf-8")
    monkeypatch.setenv(BASE_URL_ENV, "http://127.0.0.1:9999")
    monkeypatch.setenv(REQUEST_TIMEOUT_ENV, "2500")

    config = load_config(path)

    assert config.base_url == "http://127.0.0.1:9999"
    assert config.request_timeout_ms == 2500


def test_config_is_immutable() -> None:
    config = RunConfig()
    with pytest.raises(Exception):
        config.base_url = "http://elsewhere"  # type: ignore[misc]


def test_rejects_non_mapping_and_negative_retries(tmp_path: Path) -> None:
    listing = tmp_path / "list.yaml"
    listing.write_text("- a\n- b\n", encoding="utf-8")
    negative = tmp_path / "negative.yaml"
    negative.write_text(yaml.safe_dump({"retries": {"run_mode": -1}}), encoding="utf-8")

    with pytest.raises(ValueError):
        load_config(listing)
    with pytest.raises(ValueError):
        load_config(negative)


def test_output_format_priority(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(ENV_VAR_NAME, "plain")

    assert get_output_format("json") is OutputFormat.JSON
    assert get_output_format(None) is OutputFormat.PLAIN
    assert get_output_format("bogus") is OutputFormat.PLAIN

    monkeypatch.delenv(ENV_VAR_NAME)
    assert get_output_format(None) is OutputFormat.AUTO
    assert log_format_for(OutputFormat.AUTO) == "console"
    assert log_format_for(OutputFormat.JSON) == "json"


def test_console_renderer_prefixes_context_and_marks_aliases() -> None:
    renderer = RichConsoleRenderer()

    line = renderer(
        None,
        "info",
        {
            "timestamp": "2024-01-01T00:00:00Z",
            "level": "info",
            "event": "request_intercepted",
            "test_id": "spec::create_batch",
            "alias": "createBatch",
            "status": 201,
        },
    )

    assert "spec::create_batch" in line
    assert "request_intercepted" in line
    assert "@createBatch" in line
    assert "201" in line


def test_run_context_is_bound_and_cleared() -> None:
    bind_run_context("run-1", "headless")
    try:
        assert structlog.contextvars.get_contextvars() == {"run_id": "run-1", "mode": "headless"}
    finally:
        clear_run_context()
    assert structlog.contextvars.get_contextvars() == {}
