"""Command-line interface for phaseclean."""

import json
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from phaseclean.config.settings import UserConfig, get_settings
from phaseclean.logging_config import configure_logging
from phaseclean.models.checkpoint import CheckpointOutcome
from phaseclean.models.enums import ChapterMarkerStyle, ContentType
from phaseclean.models.hints import StructureHints
from phaseclean.models.result import PipelineResult
from phaseclean.pipeline.errors import CleaningPipelineError
from phaseclean.pipeline.orchestrator import PipelineOrchestrator
from phaseclean.pipeline.persistence import JsonRunStore

app = typer.Typer(
    name="phaseclean",
    help="Phase-checkpointed cleaning of extracted book and article text",
    add_completion=False,
)
console = Console()

LEVEL_STYLES = {
    "high": "green",
    "good": "green",
    "moderate": "yellow",
    "low": "red",
    "very_low": "red",
}


def _build_service(heuristic_only: bool):
    if heuristic_only:
        return None
    from phaseclean.llm.service import OllamaCleaningService

    return OllamaCleaningService()


def _prompt_decision(assume_yes: bool):
    def decide(hints: StructureHints, outcome: CheckpointOutcome) -> bool:
        _display_reconnaissance(hints, outcome)
        if assume_yes:
            return True
        return typer.confirm("Proceed with cleaning?", default=not outcome.is_failure)

    return decide


@app.command()
def clean(
    file: Path = typer.Argument(
        ...,
        help="Path to the extracted text file",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    content_type: ContentType = typer.Option(
        ContentType.AUTO,
        "--content-type",
        "-t",
        help="Content type of the document",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Cleaned text path (default: <file>_cleaned.txt)",
    ),
    audit: Optional[Path] = typer.Option(
        None,
        "--audit",
        help="Write the accumulated context (audit trail) as JSON",
    ),
    store: Optional[Path] = typer.Option(
        None,
        "--store",
        help="Directory for resumable run state",
    ),
    markers: ChapterMarkerStyle = typer.Option(
        ChapterMarkerStyle.HTML_COMMENTS,
        "--markers",
        help="How chapter starts are marked",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Proceed after reconnaissance without asking",
    ),
    heuristic_only: bool = typer.Option(
        False,
        "--heuristic-only",
        help="Never call the AI service",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """Clean a document through the checkpointed phases."""
    configure_logging("DEBUG" if verbose else "WARNING")

    console.print(
        Panel.fit(
            "[bold blue]phaseclean[/bold blue]\n"
            "Cleaning document through checkpointed phases...",
            border_style="blue",
        )
    )
    console.print(f"\n[dim]Input:[/dim] {file}")
    if output is None:
        output = file.with_name(f"{file.stem}_cleaned.txt")
    console.print(f"[dim]Output:[/dim] {output}\n")

    user_config = UserConfig(
        document_id=file.stem,
        content_type=content_type,
        heuristic_only=heuristic_only,
        chapter_marker_style=markers,
    )
    orchestrator = PipelineOrchestrator(
        service=_build_service(heuristic_only),
        decision_provider=_prompt_decision(yes),
        store=JsonRunStore(store) if store else None,
    )

    try:
        text = file.read_text(encoding="utf-8")
        result = orchestrator.run(text, user_config)
    except CleaningPipelineError as e:
        console.print(f"\n[red]Error:[/red] {e}")
        if verbose:
            console.print_exception()
        sys.exit(1)

    _write_outputs(result, output, audit)
    _display_result(result)
    if not result.succeeded:
        sys.exit(2)


@app.command()
def resume(
    run_id: str = typer.Argument(..., help="Run id to continue"),
    store: Path = typer.Option(
        ...,
        "--store",
        help="Directory holding the saved run",
        exists=True,
        file_okay=False,
        dir_okay=True,
    ),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Cleaned text path"),
    audit: Optional[Path] = typer.Option(None, "--audit", help="Audit trail JSON path"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Proceed without asking"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Continue a saved run after its last completed phase."""
    configure_logging("DEBUG" if verbose else "WARNING")

    run_store = JsonRunStore(store)
    try:
        state = run_store.load_run(run_id)
        orchestrator = PipelineOrchestrator(
            service=_build_service(state.user_config.heuristic_only),
            decision_provider=_prompt_decision(yes),
            store=run_store,
        )
        result = orchestrator.resume_from_state(state)
    except CleaningPipelineError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    _write_outputs(result, output or Path(f"{result.document_id}_cleaned.txt"), audit)
    _display_result(result)
    if not result.succeeded:
        sys.exit(2)


@app.command()
def info() -> None:
    """Display system information and configuration."""
    from phaseclean import __version__
    from phaseclean.llm.client import get_llm_settings

    settings = get_settings()
    llm_settings = get_llm_settings()

    console.print(Panel.fit("[bold blue]phaseclean[/bold blue]", border_style="blue"))

    table = Table(show_header=False, box=None)
    table.add_column("Setting", style="dim")
    table.add_column("Value")

    table.add_row("Version", __version__)
    table.add_row("LLM Model", llm_settings.model_name)
    table.add_row("Ollama URL", llm_settings.ollama_base_url)
    table.add_row("Temperature", str(llm_settings.temperature))
    table.add_row("Context Window", str(llm_settings.num_ctx))
    table.add_row("AI Timeout", f"{settings.ai_timeout_seconds:.0f}s (retry x{settings.timeout_retry_multiplier})")
    table.add_row("Excerpt Budget", f"{settings.excerpt_token_budget} tokens")
    table.add_row("Reflow Chunk", f"{settings.reflow_chunk_tokens} tokens")
    table.add_row("Concurrent Documents", str(settings.max_concurrent_documents))
    table.add_row("Recon Minimum", f"{settings.thresholds.recon_min_confidence:.0%}")

    console.print(table)


# =============================================================================
# Display
# =============================================================================

def _write_outputs(result: PipelineResult, output: Path, audit: Optional[Path]) -> None:
    output.write_text(result.cleaned_text, encoding="utf-8")
    console.print(f"\n[green]Cleaned text saved to:[/green] {output}")
    if audit is not None:
        with open(audit, "w", encoding="utf-8") as f:
            json.dump(result.context.model_dump(mode="json"), f, indent=2, ensure_ascii=False)
        console.print(f"[green]Audit trail saved to:[/green] {audit}")


def _display_reconnaissance(hints: StructureHints, outcome: CheckpointOutcome) -> None:
    console.print("\n[bold]Reconnaissance[/bold]")
    console.print("-" * 40)

    table = Table(show_header=False, box=None)
    table.add_column("Item", style="dim")
    table.add_column("Value")
    table.add_row("Content type", f"{hints.detected_content_type.value} ({hints.content_type_confidence:.0%})")
    table.add_row("Confidence", f"{hints.overall_confidence:.0%}")
    table.add_row("Core content", str(hints.core_range() or "not found"))
    table.add_row("Regions", str(len(hints.regions)))
    table.add_row("Patterns", str(len(hints.patterns)))
    table.add_row("Method", hints.analysis_method.value)
    table.add_row("Checkpoint", outcome.result.value)
    console.print(table)

    for criterion in outcome.unmet:
        console.print(f"  [yellow]![/yellow] {criterion.name}: {criterion.actual} (expected {criterion.expected})")


def _display_result(result: PipelineResult) -> None:
    display = result.confidence_display
    style = LEVEL_STYLES.get(display.level.value, "white")

    console.print("\n[bold]Cleaning Summary[/bold]")
    console.print("-" * 40)

    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="dim")
    table.add_column("Value", justify="right")
    table.add_row("Status", result.status.value)
    table.add_row("Confidence", f"[{style}]{display.percentage}% ({display.level.value})[/{style}]")
    table.add_row("Words", f"{result.original_word_count} -> {result.final_word_count}")
    table.add_row("Preserved", f"{result.word_preservation:.1%}")
    table.add_row("Phases completed", str(len(result.context.completed_phases)))
    table.add_row("Phases skipped", str(len(result.context.skipped_phases)))
    console.print(table)
    console.print(f"\n[dim]{display.recommendation}[/dim]")

    if result.halt_reason:
        console.print(f"\n[yellow]Stopped:[/yellow] {result.halt_reason}")

    if result.context.checkpoint_outcomes:
        checkpoints = Table(title="Checkpoints")
        checkpoints.add_column("Checkpoint")
        checkpoints.add_column("Result")
        checkpoints.add_column("Confidence", justify="right")
        for outcome in result.context.checkpoint_outcomes:
            checkpoints.add_row(outcome.checkpoint_type.value, outcome.result.value, f"{outcome.confidence:.2f}")
        console.print(checkpoints)

    if result.context.recovery_events:
        console.print(f"\n[yellow]Recovery events:[/yellow] {len(result.context.recovery_events)}")
        for event in result.context.recovery_events:
            console.print(
                f"  - {event.phase.value}/{event.step}: {event.failure_kind.value} -> {event.action.kind.value}"
            )

    warnings = [w for w in result.context.warnings if w.severity.value != "info"]
    if warnings:
        console.print(f"\n[yellow]Warnings:[/yellow] {len(warnings)}")
        for warning in warnings[:20]:
            console.print(f"  - [{warning.severity.value}] {warning.message}")


if __name__ == "__main__":
    app()
