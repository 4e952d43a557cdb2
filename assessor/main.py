"""
Brief Assessor CLI Application.

Operator commands for checking extraction readiness, inspecting the
modality requirements of a brief, grading a submission bundle and running
the HTTP service.

A bundle is one JSON file holding ``unit``, ``brief``, ``submission`` and
optionally ``extractionRun`` (camelCase keys).
"""

import asyncio
import json
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
import uvicorn
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from assessor.config import GradingOverrides, Settings, get_settings
from assessor.errors import GradingError
from assessor.evidence import ModalityRequirementExtractor
from assessor.grading import GradingEngine, GradingOutcome, ReadinessThresholds, evaluate_readiness
from assessor.models import AssignmentBrief, ExtractionRun, Submission, Unit
from assessor.storage import InMemorySubmissionStore

# Create Typer app
app = typer.Typer(
    name="brief-assessor",
    help="Evidence-linked assignment grading against locked briefs",
    add_completion=False,
)

console = Console()


class BundleError(Exception):
    """Raised when a bundle file cannot be read."""


def _read_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise BundleError(f"File not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise BundleError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise BundleError(f"Expected a JSON object in {path}")
    return data


def load_bundle(path: Path) -> tuple[InMemorySubmissionStore, Submission, ExtractionRun | None]:
    """
    Load a grading bundle into a fresh in-memory store.

    Args:
        path: Bundle JSON file.

    Returns:
        Tuple of (seeded store, submission, latest extraction run).

    Raises:
        BundleError: If the file is missing or malformed.
    """
    data = _read_json(path)
    try:
        unit = Unit.model_validate(data.get("unit") or {})
        brief = AssignmentBrief.model_validate(data.get("brief") or {})
        submission = Submission.model_validate(data.get("submission") or {})
        run_data = data.get("extractionRun")
        run = ExtractionRun.model_validate(run_data) if run_data else None
    except ValidationError as e:
        raise BundleError(f"Invalid bundle {path}: {e}") from e

    if brief.unit_id is None:
        brief = brief.model_copy(update={"unit_id": unit.id})
    if submission.assignment_brief_id is None:
        submission = submission.model_copy(update={"assignment_brief_id": brief.id})

    store = InMemorySubmissionStore()
    store.add_unit(unit)
    store.add_brief(brief)
    store.add_submission(submission, run)
    return store, submission, run


def _thresholds(settings: Settings) -> ReadinessThresholds:
    return ReadinessThresholds(
        min_chars=settings.min_extracted_chars,
        min_confidence=settings.min_extraction_confidence,
        min_pages=settings.min_page_count,
        max_warnings_before_block=settings.max_warnings_before_block,
    )


@app.command()
def readiness(
    bundle_file: Annotated[Path, typer.Argument(help="Path to the submission bundle JSON")],
) -> None:
    """
    Run the extraction readiness gate for a submission bundle.

    Exits non-zero when grading would be blocked.
    """
    try:
        _, submission, run = load_bundle(bundle_file)
    except BundleError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    result = evaluate_readiness(
        submission.status, submission.extracted_text, run, _thresholds(get_settings())
    )
    metrics = result.metrics
    console.print(
        Panel(
            f"Extracted chars: {metrics.extracted_chars}\n"
            f"Pages: {metrics.page_count}\n"
            f"Confidence: {metrics.overall_confidence:.2f}\n"
            f"Run status: {metrics.run_status or '-'}\n"
            f"Mode: {metrics.extraction_mode}",
            title="Extraction Readiness",
        )
    )
    for blocker in result.blockers:
        console.print(f"[red]✗ {blocker}[/red]")
    for warning in result.warnings:
        console.print(f"[yellow]⚠ {warning}[/yellow]")

    if result.ok:
        console.print("\n[green]✓ Ready for grading[/green]")
    else:
        raise typer.Exit(1)


@app.command()
def requirements(
    brief_file: Annotated[Path, typer.Argument(help="Path to the assignment brief JSON")],
) -> None:
    """
    Show the chart/table/equation/image requirements detected in a brief.
    """
    try:
        brief = AssignmentBrief.model_validate(_read_json(brief_file))
    except (BundleError, ValidationError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    rows = ModalityRequirementExtractor().extract(brief.tasks)
    if not rows:
        console.print("[dim]No chart/table/equation/image requirements detected.[/dim]")
        return

    table = Table(title=f"Modality Requirements: {brief.assignment_code or brief.id}")
    table.add_column("Task", style="cyan")
    table.add_column("Section")
    table.add_column("Charts")
    table.add_column("Table", justify="center")
    table.add_column("%", justify="center")
    table.add_column("Equation", justify="center")
    table.add_column("Image", justify="center")

    def mark(flag: bool) -> str:
        return "✓" if flag else ""

    for row in rows:
        table.add_row(
            row.task,
            row.section,
            ", ".join(row.charts),
            mark(row.table),
            mark(row.percentage),
            mark(row.equation),
            mark(row.image),
        )
    console.print(table)


@app.command()
def grade(
    bundle_file: Annotated[Path, typer.Argument(help="Path to the submission bundle JSON")],
    tone: Annotated[
        Optional[str],
        typer.Option("--tone", "-t", help="Feedback tone (supportive/professional/strict)"),
    ] = None,
    strictness: Annotated[
        Optional[str],
        typer.Option("--strictness", "-s", help="Strictness (lenient/balanced/strict)"),
    ] = None,
    no_rubric: Annotated[
        bool,
        typer.Option("--no-rubric", help="Ignore rubric guidance on the brief"),
    ] = False,
    actor: Annotated[
        Optional[str],
        typer.Option("--actor", "-a", help="Assessor name recorded on the assessment"),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Preview the grade without saving"),
    ] = False,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write the audit record JSON to this path"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show criterion decisions"),
    ] = False,
) -> None:
    """
    Grade a submission bundle.

    The bundle is loaded into an in-memory store and graded with the
    configured model. Results are printed, and optionally saved.
    """
    try:
        store, submission, _ = load_bundle(bundle_file)
    except BundleError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    overrides = GradingOverrides(
        tone=tone,
        strictness=strictness,
        use_rubric_if_available=False if no_rubric else None,
        actor=actor,
        dry_run=dry_run,
    )
    engine = GradingEngine(get_settings(), store)

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            progress.add_task("Grading... (this may take a moment)", total=None)
            outcome = asyncio.run(engine.grade(submission.id, overrides, "cli"))
    except GradingError as e:
        console.print(f"[red]{e.code}:[/red] {e.message}")
        for blocker in e.public_details.get("blockers", []):
            console.print(f"  • {blocker}")
        raise typer.Exit(1)

    _display_outcome(outcome, verbose)

    if output:
        output.write_text(
            json.dumps(outcome.audit.to_json_dict(), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        console.print(f"\n[green]Audit saved to:[/green] {output}")


@app.command()
def health() -> None:
    """
    Check if the grading system is operational.

    Verifies configuration and model API connectivity.
    """
    settings = get_settings()
    console.print("[bold]Brief Assessor Health Check[/bold]\n")

    console.print("[dim]Checking configuration...[/dim]")
    console.print(f"  API Base URL: {settings.openai_base_url}")
    console.print(f"  Model: {settings.grading_model}")
    console.print(f"  API key: {'set' if settings.openai_api_key else '[red]missing[/red]'}")
    console.print(f"  Schema retries: {settings.schema_retries}")

    console.print("\n[dim]Checking API connectivity...[/dim]")
    engine = GradingEngine(settings, InMemorySubmissionStore())
    if asyncio.run(engine.health_check()):
        console.print("[green]✓ API is reachable[/green]")
    else:
        console.print("[red]✗ API is not reachable[/red]")
        raise typer.Exit(1)

    console.print("\n[green]All systems operational[/green]")


@app.command()
def serve(
    host: Annotated[str, typer.Option("--host", help="Bind address")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Port")] = 8000,
    reload: Annotated[bool, typer.Option("--reload", help="Reload on code changes")] = False,
) -> None:
    """Run the grading HTTP service."""
    from assessor.api import configure_logging

    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        "assessor.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


def _display_outcome(outcome: GradingOutcome, verbose: bool = False) -> None:
    """Display a grading outcome."""
    audit = outcome.audit
    grade_color = {
        "DISTINCTION": "green",
        "MERIT": "green",
        "PASS": "yellow",
        "PASS_ON_RESUBMISSION": "yellow",
    }.get(outcome.overall_grade.value, "red")
    confidence = audit.confidence_policy

    console.print(
        Panel(
            f"[{grade_color}][bold]{outcome.overall_grade.value}[/bold][/{grade_color}]"
            f"  confidence {confidence.final_confidence:.2f}",
            title="Preview" if outcome.dry_run else "Final Grade",
        )
    )
    for note in audit.system_notes:
        console.print(f"[yellow]⚠ {note}[/yellow]")

    if verbose:
        table = Table(title="Criterion Decisions")
        table.add_column("Code", style="cyan")
        table.add_column("Decision")
        table.add_column("Confidence", justify="right")
        table.add_column("Pages")

        for check in audit.decision.criterion_checks:
            pages = sorted({e.page for e in check.evidence})
            table.add_row(
                check.code,
                check.decision.value,
                f"{check.confidence:.2f}",
                ", ".join(str(p) for p in pages),
            )
        console.print(table)

    console.print(Panel(outcome.feedback_text, title="Feedback"))


if __name__ == "__main__":
    app()
