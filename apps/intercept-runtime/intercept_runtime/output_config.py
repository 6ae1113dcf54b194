"""Console output format selection for run reports and log rendering."""

import os
from enum import Enum
from typing import Literal


class OutputFormat(str, Enum):
    """How the run report is printed."""
    AUTO = "auto"
    RICH = "rich"
    PLAIN = "plain"
    JSON = "json"


LogFormat = Literal["json", "console", "plain"]

ENV_VAR_NAME = "CONSOLE_OUTPUT_FORMAT"

_LOG_FORMATS: dict[OutputFormat, LogFormat] = {
    OutputFormat.JSON: "json",
    OutputFormat.PLAIN: "plain",
}


def _parse(value: str | None) -> OutputFormat | None:
    if not value:
        return None
    try:
        return OutputFormat(value.strip().lower())
    except ValueError:
        return None


def get_output_format(cli_override: str | None = None) -> OutputFormat:
    """Resolve the report format: ``--output-format``, then ``CONSOLE_OUTPUT_FORMAT``, then auto.

    Unknown values fall through to the next source instead of failing the run.
    """
    return _parse(cli_override) or _parse(os.environ.get(ENV_VAR_NAME)) or OutputFormat.AUTO


def log_format_for(output_format: OutputFormat) -> LogFormat:
    """Structured logs follow the report: JSON reports get JSON logs, plain gets plain."""
    return _LOG_FORMATS.get(output_format, "console")
