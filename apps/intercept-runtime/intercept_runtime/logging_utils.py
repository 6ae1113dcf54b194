"""Structured logging helpers for intercept-runtime."""

from __future__ import annotations

import logging
import sys
from io import StringIO
from typing import Any

import structlog
from rich.console import Console
from rich.text import Text

from .output_config import LogFormat

LEVEL_STYLES = {
    "debug": "dim cyan",
    "info": "cyan",
    "warning": "yellow",
    "error": "bold red",
    "critical": "bold white on red",
}

# rendered ahead of the event name instead of among the key=value pairs
_PREFIX_KEYS = ("run_id", "test_id")
_HIDDEN_KEYS = ("stack", "exception", "color_message")


class RichConsoleRenderer:
    """Render runtime events as one coloured line: time, level, context, event, fields.

    Aliases are printed the way tests reference them (``@createBatch``).
    """

    def __init__(self, width: int = 200) -> None:
        self.width = width

    def __call__(self, logger: Any, name: str, event_dict: dict[str, Any]) -> str:
        timestamp = event_dict.pop("timestamp", "")
        level = event_dict.pop("level", "info")
        event = event_dict.pop("event", "")
        exception = event_dict.pop("exception", None)

        line = Text()
        line.append(timestamp, style="dim white")
        line.append(f" [{level:<8}] ", style=LEVEL_STYLES.get(level, "white"))
        for key in _PREFIX_KEYS:
            if key in event_dict:
                line.append(f"{event_dict.pop(key)} ", style="green")
        line.append(f"{event:<32}", style="bold white")

        fields = []
        for key, value in sorted(event_dict.items()):
            if key in _HIDDEN_KEYS:
                continue
            if key == "alias" and value:
                value = f"@{value}"
            fields.append((key, value))
        for key, value in fields:
            line.append(f" {key}=", style="dim white")
            line.append(str(value), style="bright_cyan")

        buffer = StringIO()
        Console(file=buffer, force_terminal=True, width=self.width, legacy_windows=False).print(line, end="")
        if exception:
            buffer.write(f"\n{exception}")
        return buffer.getvalue()


def configure_logging(log_level: str, log_format: LogFormat = "console") -> structlog.stdlib.BoundLogger:
    """Route runtime events through stdlib logging on stderr; stdout stays for the run report."""

    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, stream=sys.stderr, format="%(message)s", force=True)

    if log_format == "console":
        renderer: Any = RichConsoleRenderer()
    elif log_format == "plain":
        renderer = structlog.dev.ConsoleRenderer(colors=False)
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return structlog.get_logger("intercept_runtime")


def bind_run_context(run_id: str, mode: str) -> None:
    """Attach the run id and mode to every event logged until the run ends."""

    structlog.contextvars.bind_contextvars(run_id=run_id, mode=mode)


def clear_run_context() -> None:
    structlog.contextvars.unbind_contextvars("run_id", "mode")
