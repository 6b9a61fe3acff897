"""
plainsub.cli - Typer CLI entry point.

Provides the transcribe, models, check and init-config subcommands.
"""

from __future__ import annotations

import signal
import time
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from plainsub import __version__
from plainsub.config import (
    CONFIG_FILENAME,
    DEFAULT_MODELS,
    create_default_config,
    options_from_dict,
    read_config,
    write_config,
)
from plainsub.exceptions import PlainsubError
from plainsub.logging import configure_logging
from plainsub.models import FileStatus
from plainsub.utils import format_duration, format_size

app = typer.Typer(
    name="plainsub",
    help="Offline subtitle generator.\n\n"
    "Turns audio and video files into .srt subtitles with Whisper, "
    "Silero VAD and optional local LLM cleanup.",
    add_completion=False,
)
console = Console()

STATUS_STYLES = {
    FileStatus.DONE: "[green]✓ Done[/green]",
    FileStatus.FAILED: "[red]✗ Failed[/red]",
    FileStatus.CANCELLED: "[yellow]— Cancelled[/yellow]",
}


def version_callback(value: bool) -> None:
    if value:
        console.print(f"plainsub {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """plainsub - offline speech to subtitles."""
    pass


def build_options(config_path: Path | None, overrides: dict[str, Any]):
    """Merge a config file (if any) with command-line overrides."""
    raw: dict[str, Any] = read_config(config_path) if config_path else {}
    llm_model = overrides.pop("llm_model", None)
    if llm_model:
        refinement = dict(raw.get("refinement") or {})
        refinement["model"] = llm_model
        raw["refinement"] = refinement
    raw.update({k: v for k, v in overrides.items() if v is not None})
    return options_from_dict(raw)


@app.command("transcribe")
def transcribe(
    files: list[Path] = typer.Argument(..., help="Audio or video file(s) to subtitle"),
    model: str | None = typer.Option(None, "--model", "-m", help="Whisper model id"),
    language: str | None = typer.Option(
        None, "--language", "-l", help="Language code, or 'auto' to detect"
    ),
    no_vad: bool = typer.Option(
        False, "--no-vad", help="Transcribe whole files without speech detection"
    ),
    refine: bool = typer.Option(False, "--refine", help="Clean up subtitles with a local LLM"),
    llm_model: str | None = typer.Option(None, "--llm-model", help="Ollama model for --refine"),
    beam_size: int | None = typer.Option(None, "--beam-size", help="Whisper beam size"),
    output_dir: Path | None = typer.Option(
        None, "--output-dir", "-o", help="Write .srt files here instead of beside the sources"
    ),
    app_root: Path | None = typer.Option(
        None, "--app-root", help="Directory holding downloaded models"
    ),
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to plainsub.yaml"),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging"),
) -> None:
    """Generate .srt subtitles for one or more media files."""
    configure_logging(verbose)

    from plainsub.pipeline import CancellationToken, TranscriptionPipeline

    overrides: dict[str, Any] = {
        "model": model,
        "language": language,
        "beam_size": beam_size,
        "app_root": app_root,
        "llm_model": llm_model,
    }
    if no_vad:
        overrides["use_vad"] = False
    if refine:
        overrides["use_refinement"] = True

    try:
        options = build_options(config, overrides)
    except (PlainsubError, FileNotFoundError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    cancel = CancellationToken()

    def on_interrupt(signum: int, frame: Any) -> None:
        console.print("\n[yellow]Cancelling...[/yellow]")
        cancel.cancel()

    console.print(
        f"[cyan]Transcribing {len(files)} file(s) with {options.model.display_name}...[/cyan]\n"
    )

    started = time.monotonic()
    previous = signal.signal(signal.SIGINT, on_interrupt)
    try:
        with TranscriptionPipeline(
            options, status=lambda msg: console.print(f"[dim]{msg}[/dim]")
        ) as pipeline:
            report = pipeline.process_batch(files, output_dir=output_dir, cancel=cancel)
    except PlainsubError as e:
        console.print(f"[red]Error: {e}[/red]")
        hint = getattr(e, "install_hint", None)
        if hint:
            console.print(f"[dim]{hint}[/dim]")
        raise typer.Exit(1)
    finally:
        signal.signal(signal.SIGINT, previous)

    table = Table(title="Results")
    table.add_column("File", style="cyan")
    table.add_column("Status")
    table.add_column("Subtitles", justify="right")
    table.add_column("Details")

    for outcome in report.outcomes:
        table.add_row(
            outcome.source.name,
            STATUS_STYLES[outcome.status],
            str(outcome.result_count) if outcome.status is FileStatus.DONE else "—",
            str(outcome.output) if outcome.output else (outcome.error or ""),
        )

    console.print()
    console.print(table)
    console.print(
        f"\n[green]✓[/green] Done {report.succeeded}, "
        f"failed {report.failed}, cancelled {report.cancelled} "
        f"in {format_duration(time.monotonic() - started)}"
    )

    if report.status is not FileStatus.DONE:
        raise typer.Exit(1)


@app.command("models")
def list_models(
    app_root: Path | None = typer.Option(
        None, "--app-root", help="Directory holding downloaded models"
    ),
) -> None:
    """List the available Whisper models and whether they are downloaded."""
    from plainsub.validation import check_model_artifact, model_artifact_path

    options = build_options(None, {"app_root": app_root})

    table = Table(title="Whisper Models")
    table.add_column("Id", style="cyan")
    table.add_column("Name")
    table.add_column("Status", style="green")
    table.add_column("Size", justify="right")

    for descriptor in DEFAULT_MODELS:
        path = model_artifact_path(options.app_root, descriptor)
        if check_model_artifact(path, descriptor.expected_size_bytes):
            table.add_row(descriptor.id, descriptor.display_name, "✓ Downloaded", format_size(path))
        else:
            table.add_row(descriptor.id, descriptor.display_name, "—", "")

    console.print(table)


@app.command("check")
def run_check(
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to plainsub.yaml"),
    refine: bool = typer.Option(False, "--refine", help="Also check the LLM backend"),
) -> None:
    """Check dependencies and model availability."""
    console.print("[cyan]Running preflight checks...[/cyan]\n")

    from plainsub.validation import run_preflight_checks

    try:
        options = build_options(config, {"use_refinement": True if refine else None})
    except (PlainsubError, FileNotFoundError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    results = run_preflight_checks(options)
    checks = results["checks"]

    table = Table(title="Dependency Status")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Details")

    ffmpeg = checks["ffmpeg"]
    if "error" in ffmpeg:
        table.add_row("FFmpeg", "✗ Missing", ffmpeg.get("install_hint") or ffmpeg["error"])
    else:
        table.add_row("FFmpeg", "✓ Installed", ffmpeg.get("ffmpeg_version", "unknown"))

    for key, label in (("whisper_model", "Whisper model"), ("vad_model", "VAD model")):
        if key in checks:
            status = "✓ Present" if checks[key]["present"] else "— Will download"
            table.add_row(label, status, checks[key]["path"])

    if "ollama" in checks:
        ollama = checks["ollama"]
        if ollama["running"]:
            model_status = "✓ Running"
            if not ollama.get("model_available"):
                model_status += f" (model '{options.refinement.model}' will be pulled)"
            table.add_row("Ollama", model_status, ", ".join(ollama.get("models", [])))
        else:
            table.add_row("Ollama", "✗ Not running", ollama.get("error", ""))

    console.print(table)

    if results["passed"]:
        console.print("\n[green]✓ All checks passed[/green]")
    else:
        console.print("\n[yellow]⚠ Some checks failed[/yellow]")
        raise typer.Exit(1)


@app.command("init-config")
def init_config(
    path: Path = typer.Option(Path("."), "--path", "-d", help="Directory to write the config in"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing config"),
) -> None:
    """Write a default plainsub.yaml."""
    config_path = path / CONFIG_FILENAME
    if config_path.exists() and not force:
        console.print(f"[red]Error: '{config_path}' already exists[/red]")
        raise typer.Exit(1)

    write_config(create_default_config(), config_path)
    console.print(f"[green]✓[/green] Wrote {config_path}")


if __name__ == "__main__":
    app()
