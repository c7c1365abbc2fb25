"""Command-line interface for Portal Autopilot."""

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from portal_autopilot.config import settings
from portal_autopilot.core.errors import ConfigurationError
from portal_autopilot.core.jobs import load_queue, validate_jobs
from portal_autopilot.core.models import Job, RunReport
from portal_autopilot.core.orchestrator import run_batch
from portal_autopilot.utils.logging import configure_logging

EXIT_OK = 0
EXIT_JOB_FAILURES = 1
EXIT_ABORTED = 2

app = typer.Typer(
    name="portal-autopilot",
    help="Portal Autopilot - resilient batch form submission for authenticated web portals",
    add_completion=False,
)
console = Console()


def _field_summary(job: Job) -> str:
    parts = []
    for name, value in job.fields.items():
        shown = ", ".join(value) if isinstance(value, list) else value
        parts.append(f"{name}={shown}")
    return "; ".join(parts) or "-"


def render_report(report: RunReport) -> Table:
    table = Table(title="Run Report")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Job", style="cyan")
    table.add_column("Status")
    table.add_column("Kind")
    table.add_column("Warnings", justify="right")
    table.add_column("Error")

    for outcome in report.outcomes:
        status = "[green]success[/green]" if outcome.succeeded else "[red]failure[/red]"
        table.add_row(
            str(outcome.ordinal),
            outcome.job_id,
            status,
            outcome.failure_kind.value if outcome.failure_kind else "",
            str(len(outcome.warnings)),
            outcome.error_summary or "",
        )
    return table


def exit_code_for(report: RunReport) -> int:
    if report.aborted:
        return EXIT_ABORTED
    return EXIT_OK if report.success else EXIT_JOB_FAILURES


@app.command()
def run(
    jobs: Optional[Path] = typer.Option(None, "--jobs", "-j", help="JSON jobs file (defaults to JOBS_FILE or PROJECT_URL)"),
    report_path: Optional[Path] = typer.Option(None, "--report", "-r", help="Write the run report as JSON"),
    headed: bool = typer.Option(False, "--headed", help="Show the browser window"),
) -> None:
    """Log in once and submit the form for every job in the queue."""
    configure_logging(settings)
    if headed:
        settings.browser_headless = False

    try:
        settings.require_login()
        queue, form = load_queue(settings, jobs)
        report = asyncio.run(run_batch(settings, queue, form))
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=EXIT_ABORTED)

    console.print(render_report(report))
    console.print(
        f"Succeeded: [green]{report.succeeded}[/green]  Failed: [red]{report.failed}[/red]"
        + (f"  Aborted: [red]{report.aborted}[/red]" if report.aborted else "")
    )
    if report_path:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(json.dumps(report.to_dict(), indent=2), encoding="utf-8")
        console.print(f"Report written to {report_path}")

    raise typer.Exit(code=exit_code_for(report))


@app.command()
def validate(
    jobs: Optional[Path] = typer.Option(None, "--jobs", "-j", help="JSON jobs file (defaults to JOBS_FILE or PROJECT_URL)"),
) -> None:
    """Parse and check the job queue without opening a browser."""
    try:
        queue, form = load_queue(settings, jobs)
        validate_jobs(queue, form)
    except ConfigurationError as e:
        console.print(f"[red]Invalid job input:[/red] {e}")
        raise typer.Exit(code=EXIT_ABORTED)

    table = Table(title=f"Job Queue ({len(queue)} jobs)")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Job", style="cyan")
    table.add_column("Path token", style="green")
    table.add_column("Fields")
    for ordinal, job in enumerate(queue, start=1):
        table.add_row(str(ordinal), job.id, job.path_token, _field_summary(job))
    console.print(table)


@app.command()
def config() -> None:
    """Show current configuration."""
    table = Table(title="Portal Autopilot Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    # Show non-sensitive settings
    rows: List[tuple] = [
        ("Login URL", settings.login_url),
        ("Username", settings.login_username),
        ("Password", "set" if settings.login_password else None),
        ("Project URL", settings.project_url),
        ("Jobs File", settings.jobs_file),
        ("Listing Link", settings.listing_link_selector or settings.listing_link_name),
        ("CSRF Cookies", ", ".join(settings.csrf_cookie_names)),
        ("CSRF Required", settings.csrf_required),
        ("Artifacts Dir", settings.artifacts_dir),
        ("Headless", settings.headless),
        ("Debug Mode", settings.debug),
        ("Log Level", settings.log_level),
    ]
    for name, value in rows:
        table.add_row(name, "-" if value is None else str(value))

    console.print(table)


@app.command()
def version() -> None:
    """Show version information."""
    from portal_autopilot import __version__
    console.print(f"Portal Autopilot v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
