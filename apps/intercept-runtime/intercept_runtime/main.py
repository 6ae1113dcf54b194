"""CLI entrypoint for intercept-runtime."""

from __future__ import annotations

import sys
import uuid
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import ValidationError

if __package__ in {None, ""}:
    sys.path.append(str(Path(__file__).resolve().parents[1]))
    __package__ = "intercept_runtime"

from .config import RunMode, load_config
from .loader import SpecLoader
from .logging_utils import configure_logging
from .output_config import get_output_format, log_format_for
from .runner import SuiteRunner

app = typer.Typer(help="Run end-to-end spec modules with HTTP interception, alias waits and retries.")

DEFAULT_OUTPUT_DIR = Path("artifacts/runs")


@app.command()
def run(
    spec: List[Path] = typer.Option(
        ...,
        exists=True,
        readable=True,
        help="Spec module(s) declaring test cases.",
    ),
    config: Optional[Path] = typer.Option(
        None,
        exists=True,
        readable=True,
        help="Optional YAML run configuration (base URL, timeouts, retries).",
    ),
    mode: RunMode = typer.Option(
        RunMode.HEADLESS,
        help="headless runs retry failures; interactive runs never do by default.",
    ),
    output_dir: Path = typer.Option(
        DEFAULT_OUTPUT_DIR,
        help="Root directory for run artifacts.",
    ),
    run_id: Optional[str] = typer.Option(
        None,
        help="Identifier of this run (defaults to a random id).",
    ),
    browser: Optional[str] = typer.Option(
        None,
        help="Browser name recorded in run metadata; overrides the config file.",
    ),
    output_format: Optional[str] = typer.Option(
        None,
        "--output-format",
        "-o",
        help="Console output: auto, rich, plain or json.",
    ),
    log_level: str = typer.Option(
        "WARNING",
        help="Minimum structured log level.",
    ),
) -> None:
    """Run every test case from the given spec modules and exit non-zero on failures."""

    fmt = get_output_format(output_format)
    configure_logging(log_level, log_format_for(fmt))

    try:
        run_config = load_config(config)
    except (ValueError, ValidationError) as exc:
        raise typer.BadParameter(f"Invalid run configuration: {exc}") from exc
    if browser:
        run_config = run_config.model_copy(update={"browser": browser})

    try:
        cases = SpecLoader().load_all(spec)
    except (ImportError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc

    runner = SuiteRunner(
        cases=cases,
        config=run_config,
        output_root=output_dir,
        run_id=run_id or f"run-{uuid.uuid4().hex[:12]}",
        mode=mode,
        specs=[str(path) for path in spec],
        output_format=fmt,
    )
    result = runner.run()
    raise typer.Exit(code=result.exit_code)


def run_cli() -> None:
    """Console_scripts hook."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run_cli()
