"""CLI interface for the ancestor engine."""

import asyncio
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import EngineSettings, load_settings
from .logging import configure_logging
from .store import RecordStore, SQLiteRecordStore

app = typer.Typer(
    name="ancestor-engine",
    help="Multi-source ancestor tree resolution and review consensus",
    add_completion=False,
)
console = Console()


def get_settings() -> EngineSettings:
    """Load configuration from .env and the environment."""
    return load_settings()


def get_store(settings: EngineSettings) -> RecordStore:
    return SQLiteRecordStore(settings.db_path)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON lines"),
):
    configure_logging("DEBUG" if verbose else "WARNING", json_output=json_logs)


@app.command()
def research(
    intake_file: Path = typer.Argument(..., help="Intake JSON file"),
    output: Path = typer.Option(None, "--output", "-o", help="Write the resulting tree as JSON"),
):
    """Run a traversal pass for one intake."""
    from .models.job import IntakeRequest
    from .resolution.confidence import ConfidenceResolver
    from .resolution.scorer import CandidateScorer
    from .sources.registry import SourceRegistry
    from .traversal.controller import NoUsableSourcesError, TraversalController

    if not intake_file.exists():
        console.print(f"[red]Error: File not found: {intake_file}[/red]")
        raise typer.Exit(1)

    intake = IntakeRequest.model_validate_json(intake_file.read_text())
    settings = get_settings()
    store = get_store(settings)

    console.print(
        Panel(
            f"[bold]Subject:[/bold] {intake.subject.full_name or 'Unknown'}\n"
            f"[bold]Generations:[/bold] {intake.generations}",
            title=f"Research job {intake.job_id}",
        )
    )

    async def run():
        async with SourceRegistry.for_job(settings) as registry:
            controller = TraversalController(
                store,
                registry,
                scorer=CandidateScorer(settings.scoring),
                resolver=ConfidenceResolver(settings.resolver),
                config=settings.traversal,
            )
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
            ) as progress:
                task = progress.add_task("Researching...", total=None)
                summary = await controller.run(intake)
                progress.update(task, completed=True)
            return summary, registry.report_status()

    try:
        summary, status = asyncio.run(run())
    except NoUsableSourcesError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title="Traversal Summary")
    table.add_column("Metric")
    table.add_column("Value")
    table.add_row("Positions processed", str(summary.positions_processed))
    table.add_row("Accepted", str(summary.accepted))
    table.add_row("Not found", str(summary.not_found))
    table.add_row("Customer Data", str(summary.protected))
    table.add_row("Enriched", str(summary.enriched))
    console.print(table)

    disabled = {name: s["disabled_reason"] for name, s in status.items() if s.get("disabled_reason")}
    for name, reason in disabled.items():
        console.print(f"[yellow]Source {name} disabled: {reason}[/yellow]")

    _show_tree(store, intake.job_id)
    if output:
        _save_tree(store, intake.job_id, output)
        console.print(f"[green]Tree saved to {output}[/green]")


@app.command()
def review(
    job_id: str = typer.Argument(..., help="Research job id"),
    force: bool = typer.Option(False, "--force", help="Replace a review still marked running"),
):
    """Cross-reference the tree and reconcile two AI reviews."""
    from .review.consensus import ConsensusEngine, ConsensusInProgressError
    from .review.llm import AnthropicReviewer, OpenAIReviewer, ReviewerError
    from .sources.freebmd import FreeBMDSource

    settings = get_settings()
    if not settings.anthropic_api_key and not settings.openai_api_key:
        console.print("[red]Error: No API keys configured. Set ANTHROPIC_API_KEY or OPENAI_API_KEY.[/red]")
        raise typer.Exit(1)

    store = get_store(settings)
    if store.get_job(job_id) is None:
        console.print(f"[red]Error: Unknown job {job_id}[/red]")
        raise typer.Exit(1)

    async def run():
        async with FreeBMDSource() as confirmer:
            engine = ConsensusEngine(
                store,
                [OpenAIReviewer(settings.openai_api_key), AnthropicReviewer(settings.anthropic_api_key)],
                confirmer=confirmer,
                config=settings.consensus,
            )
            return await engine.run(job_id, force=force)

    try:
        outcome = asyncio.run(run())
    except (ReviewerError, ConsensusInProgressError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    for name, error in outcome.reviewer_errors.items():
        console.print(f"[yellow]Reviewer {name} failed: {error}[/yellow]")

    if outcome.corrections:
        table = Table(title="Applied Corrections")
        table.add_column("Asc")
        table.add_column("Name")
        table.add_column("Field")
        table.add_column("Old")
        table.add_column("New")
        table.add_column("Id", style="dim")
        for c in outcome.corrections:
            table.add_row(str(c.asc), c.name, c.field, str(c.old_value), str(c.new_value), c.correction_id)
        console.print(table)

    if outcome.suggestions:
        table = Table(title="Suggestions")
        table.add_column("Asc")
        table.add_column("Name")
        table.add_column("Field")
        table.add_column("Current")
        table.add_column("Suggested")
        table.add_column("Reviewers")
        for s in outcome.suggestions:
            reviewers = ", ".join(sorted(set(s.deltas) | set(s.messages)))
            table.add_row(str(s.asc), s.name, s.field, str(s.current_value), str(s.suggested_value), reviewers)
        console.print(table)

    console.print(
        f"[green]Review complete: {len(outcome.corrections)} corrections, "
        f"{len(outcome.suggestions)} suggestions[/green]"
    )


@app.command()
def show(
    job_id: str = typer.Argument(..., help="Research job id"),
    candidates: int = typer.Option(None, "--candidates", "-c", help="List search candidates for a position"),
):
    """Show a job's tree."""
    store = get_store(get_settings())
    job = store.get_job(job_id)
    if job is None:
        console.print(f"[red]Error: Unknown job {job_id}[/red]")
        raise typer.Exit(1)

    console.print(f"[bold]{job.id}[/bold] {job.customer_name} - {job.status.value} (review: {job.review_status.value})")
    if job.error_message:
        console.print(f"[red]{job.error_message}[/red]")
    _show_tree(store, job_id)

    if candidates is not None:
        table = Table(title=f"Candidates for position {candidates}")
        table.add_column("Id", style="dim")
        table.add_column("Provider")
        table.add_column("Name")
        table.add_column("Born")
        table.add_column("Score")
        table.add_column("Pass")
        table.add_column("Note")
        for record in store.list_search_candidates(job_id, candidates):
            c = record.candidate
            note = "selected" if record.selected else (record.rejection_reason or "")
            table.add_row(c.id, c.provider, c.name, c.birth_date, str(record.computed_score), record.pass_name, note)
        console.print(table)


@app.command()
def reject(
    job_id: str = typer.Argument(..., help="Research job id"),
    asc: int = typer.Argument(..., help="Position to reject"),
):
    """Blacklist a position's match and delete it with its ancestors."""
    from .admin import AdminActionError, AdminActions

    store = get_store(get_settings())
    try:
        deleted = AdminActions(store).reject_position(job_id, asc)
    except AdminActionError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Rejected position {asc}; deleted positions {', '.join(map(str, deleted))}[/green]")


@app.command()
def undo(
    job_id: str = typer.Argument(..., help="Research job id"),
    asc: int = typer.Argument(..., help="Position holding the correction"),
    correction_id: str = typer.Argument(..., help="Correction id from the corrections log"),
):
    """Undo a logged correction."""
    from .admin import AdminActionError, AdminActions

    store = get_store(get_settings())
    try:
        entry = AdminActions(store).undo_correction(job_id, asc, correction_id)
    except AdminActionError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Restored {entry.field} of position {asc} to {entry.old_value}[/green]")


def _show_tree(store: RecordStore, job_id: str):
    """Display a job's positions."""
    from .models.ancestor import role_label

    table = Table(title="Ancestors")
    table.add_column("Asc")
    table.add_column("Role")
    table.add_column("Name")
    table.add_column("Born")
    table.add_column("Died")
    table.add_column("Score")
    table.add_column("Level")
    table.add_column("Source", style="dim")

    for a in store.list_ancestors(job_id):
        style = "dim" if a.is_placeholder else None
        table.add_row(
            str(a.ascendancy_number),
            role_label(a.ascendancy_number),
            a.name,
            " ".join(p for p in (a.birth_date, a.birth_place) if p),
            " ".join(p for p in (a.death_date, a.death_place) if p),
            str(a.confidence_score),
            a.confidence_level.value,
            f"{a.source_provider}:{a.source_person_id}" if a.source_person_id else "",
            style=style,
        )

    console.print(table)


def _save_tree(store: RecordStore, job_id: str, output: Path):
    """Save a job's positions to file."""
    data = {
        "job": store.get_job(job_id).model_dump(mode="json"),
        "ancestors": [a.model_dump(mode="json") for a in store.list_ancestors(job_id)],
    }
    with open(output, "w") as f:
        json.dump(data, f, indent=2, default=str)


if __name__ == "__main__":
    app()
