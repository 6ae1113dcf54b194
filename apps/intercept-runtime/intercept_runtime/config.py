"""Run configuration loading."""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

DEFAULT_BASE_URL = "http://127.0.0.1:9101"
BASE_URL_ENV = "INTERCEPT_RUNTIME_BASE_URL"
REQUEST_TIMEOUT_ENV = "INTERCEPT_RUNTIME_REQUEST_TIMEOUT_MS"


class RunMode(str, Enum):
    """Headless runs retry failures; interactive runs leave that to a human."""

    HEADLESS = "headless"
    INTERACTIVE = "interactive"


class RetryConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    run_mode: int = Field(1, ge=0, validation_alias=AliasChoices("run_mode", "runMode"))
    open_mode: int = Field(0, ge=0, validation_alias=AliasChoices("open_mode", "openMode"))


class ViewportConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int = Field(1280, gt=0)
    height: int = Field(720, gt=0)


class RunConfig(BaseModel):
    """Immutable inputs for retry and wait defaults."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    base_url: str = Field(DEFAULT_BASE_URL, validation_alias=AliasChoices("base_url", "baseUrl"))
    browser: str = "chromium"
    default_command_timeout_ms: int = Field(
        10_000,
        gt=0,
        validation_alias=AliasChoices("default_command_timeout_ms", "defaultCommandTimeout"),
    )
    page_load_timeout_ms: int = Field(
        30_000,
        gt=0,
        validation_alias=AliasChoices("page_load_timeout_ms", "pageLoadTimeout"),
    )
    request_timeout_ms: int = Field(
        10_000,
        gt=0,
        validation_alias=AliasChoices("request_timeout_ms", "requestTimeout"),
    )
    retries: RetryConfig = Field(default_factory=RetryConfig)
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)
    env: dict[str, Any] = Field(default_factory=dict)

    def retries_for(self, mode: RunMode) -> int:
        if mode is RunMode.INTERACTIVE:
            return self.retries.open_mode
        return self.retries.run_mode


def load_config(path: Path | None = None) -> RunConfig:
    """Load a YAML run configuration and apply environment overrides."""

    data: dict[str, Any] = {}
    if path is not None:
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        # Cypress-style files nest run settings under "e2e" and keep "env" at the top.
        section = raw.get("e2e")
        data = dict(section) if isinstance(section, dict) else dict(raw)
        if isinstance(section, dict) and "env" in raw:
            data.setdefault("env", raw["env"])

    base_url = os.environ.get(BASE_URL_ENV)
    if base_url:
        data["base_url"] = base_url
        data.pop("baseUrl", None)
    request_timeout = os.environ.get(REQUEST_TIMEOUT_ENV)
    if request_timeout:
        data["request_timeout_ms"] = int(request_timeout)
        data.pop("requestTimeout", None)
    return RunConfig.model_validate(data)
