"""Console reporter with intelligent environment detection for run output."""

import os
import sys
from typing import Optional

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TextColumn, TimeRemainingColumn
from rich.table import Table
from rich.text import Text

from .models import AttemptState, RunSummary, TestOutcome, TestStatus
from .output_config import OutputFormat

_CI_ENV_VARS = ("CI", "GITHUB_ACTIONS", "JENKINS_HOME", "GITLAB_CI", "TRAVIS")

_STATUS_LABELS = {
    TestStatus.PASSED: ("✓ PASS", "green"),
    TestStatus.FAILED: ("✗ FAIL", "red"),
    TestStatus.PENDING: ("… PENDING", "yellow"),
    TestStatus.SKIPPED: ("- SKIP", "dim"),
}


class ConsoleReporter:
    """
    Smart console reporter that adapts to environment.

    Automatically detects:
    - Interactive terminals (use rich with progress bars)
    - CI/CD environments (use plain text)
    - Pipe/redirect scenarios (use plain text)
    JSON output prints nothing; the structured logs are the report.
    """

    def __init__(self, output_format: OutputFormat = OutputFormat.AUTO):
        self.output_format = output_format
        self.silent = output_format == OutputFormat.JSON
        self._detect_environment()

        if self.use_rich:
            self.console = Console()
            self._setup_rich_components()
        else:
            self.console = None

    def _detect_environment(self) -> None:
        """Rich output only for an interactive terminal outside CI, unless forced."""
        if self.output_format == OutputFormat.RICH:
            self.use_rich = True
        elif self.output_format in (OutputFormat.PLAIN, OutputFormat.JSON):
            self.use_rich = False
        else:
            in_ci = any(name in os.environ for name in _CI_ENV_VARS)
            self.use_rich = sys.stdout.isatty() and not in_ci

    def _setup_rich_components(self) -> None:
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeRemainingColumn(),
            console=self.console,
        )
        self.progress_task: Optional[TaskID] = None
        self.live: Optional[Live] = None
        self.results_table: Optional[Table] = None

    def start_run(self, total_tests: int, run_name: str, browser: str) -> None:
        """Initialize run display."""
        if self.silent:
            return
        if self.use_rich:
            self.results_table = Table(show_header=True, header_style="bold cyan")
            self.results_table.add_column("Test", width=60)
            self.results_table.add_column("Attempt", justify="right", width=8)
            self.results_table.add_column("Status", width=12)
            self.results_table.add_column("Duration", justify="right", width=12)

            self.progress_task = self.progress.add_task(f"[cyan]Running {run_name}", total=total_tests)
            self.live = Live(
                Group(self.progress, self.results_table),
                console=self.console,
                refresh_per_second=4,
            )
            self.live.start()
        else:
            print(f"Starting test run: {run_name}")
            print(f"Browser: {browser}")
            print(f"Tests: {total_tests}")
            print("-" * 80)

    def report_outcome(self, outcome: TestOutcome) -> None:
        """Report one attempt of one test."""
        if self.silent:
            return
        label, color = _STATUS_LABELS[outcome.status]
        if outcome.state == AttemptState.FAILED_RETRYABLE:
            label, color = "↻ RETRY", "yellow"
        finished = outcome.state != AttemptState.FAILED_RETRYABLE

        if self.use_rich:
            self.results_table.add_row(
                outcome.title,
                str(outcome.attempt),
                Text(label, style=color),
                f"{outcome.duration_ms:.0f}ms",
            )
            if outcome.failure_detail:
                self.results_table.add_row(Text(f"{outcome.error_kind}: {outcome.failure_detail}", style="red"), "", "", "")
            if finished:
                self.progress.update(self.progress_task, advance=1)
        else:
            print(f"[{outcome.attempt}] {outcome.title} ... {label} ({outcome.duration_ms:.0f}ms)")
            if outcome.failure_detail:
                print(f"  {outcome.error_kind}: {outcome.failure_detail}")

    def finish_run(self, summary: RunSummary) -> None:
        """Display final run summary."""
        if self.silent:
            return
        failed = summary.total_failed
        if self.use_rich:
            if self.live:
                self.live.stop()

            summary_text = Text()
            summary_text.append(f"Total: {summary.total_tests}  ", style="bold")
            summary_text.append(f"Passed: {summary.total_passed}  ", style="bold green")
            summary_text.append(f"Failed: {failed}  ", style="bold red" if failed > 0 else "bold green")
            summary_text.append(f"Pending: {summary.total_pending}  ", style="bold yellow")
            summary_text.append(f"Skipped: {summary.total_skipped}  ", style="dim")
            summary_text.append(f"Duration: {summary.total_duration_ms:.0f}ms", style="bold cyan")

            status = "✓ ALL TESTS PASSED" if failed == 0 else "✗ SOME TESTS FAILED"
            self.console.print()
            self.console.print(Panel(
                summary_text,
                title=Text(status, style="bold green" if failed == 0 else "bold red"),
                border_style="green" if failed == 0 else "red",
            ))
        else:
            print("-" * 80)
            print(
                f"Total: {summary.total_tests} | Passed: {summary.total_passed} | Failed: {failed} | "
                f"Pending: {summary.total_pending} | Skipped: {summary.total_skipped} | "
                f"Duration: {summary.total_duration_ms:.0f}ms"
            )
            print("✓ ALL TESTS PASSED" if failed == 0 else "✗ SOME TESTS FAILED")

    def print_error(self, message: str) -> None:
        if self.use_rich:
            if self.live:
                self.live.stop()
            self.console.print(f"[bold red]Error:[/] {message}")
        else:
            print(f"Error: {message}", file=sys.stderr)
