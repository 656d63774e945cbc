#!/usr/bin/env python3
"""Bulk-process a folder of documents through a model provider."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table
from typing_extensions import Annotated

from src.config_utils import load_config, resolve_settings
from src.errors import DocExtractError
from src.logging_utils import configure_logging
from src.pipeline import RunOptions, run_pipeline
from src.schema import RunSummary

LOGGER_NAME = "doc_extract.cli"
SUMMARY_RULE = "=" * 60

app = typer.Typer(add_completion=False)
console = Console()
cli_logger = logging.getLogger(LOGGER_NAME)


def _format_validation_error(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "options"
        messages.append(f"--{location.replace('_', '-')}: {error.get('msg')}")
    return "; ".join(messages)


def _render_summary(summary: RunSummary) -> None:
    typer.echo("")
    typer.echo(SUMMARY_RULE)
    typer.echo("PROCESSING SUMMARY")
    typer.echo(SUMMARY_RULE)

    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Successfully processed", str(summary.succeeded))
    table.add_row("Failed", str(summary.failed))
    table.add_row("Total time", f"{summary.elapsed_seconds:.2f}s")
    if summary.output_path is not None:
        table.add_row("Output saved to", str(summary.output_path))
    console.print(table)

    if summary.cancelled:
        typer.echo("Run was cancelled before all files were processed.")

    if summary.failed_files:
        typer.echo("")
        typer.echo("Failed files:")
        for name in summary.failed_files:
            typer.echo(f"  - {name}")
        typer.echo("")
        typer.echo(
            "Completed files are skipped on the next run; "
            "rerun with --retry-failed to retry only the failed files."
        )
    elif summary.progress_cleared:
        typer.echo("All files succeeded; progress file removed.")


@app.command()
def main(
    model: Annotated[
        str,
        typer.Option(help="Model to use (e.g. gpt-4.1, gemini-2.5-pro, llama3.1)."),
    ],
    folder: Annotated[
        Path, typer.Option(help="Folder containing the documents to process.")
    ] = Path("documents"),
    output: Annotated[
        Optional[Path],
        typer.Option(
            help="Output CSV path (defaults to a timestamped file).",
            rich_help_panel="Output",
        ),
    ] = None,
    concurrency: Annotated[
        int,
        typer.Option(help="Number of concurrent requests (1-20).", rich_help_panel="Processing"),
    ] = 3,
    provider: Annotated[
        str,
        typer.Option(help="Model provider: openai, gemini or ollama."),
    ] = "openai",
    reasoning_effort: Annotated[
        Optional[str],
        typer.Option(
            "--reasoning-effort",
            help="Reasoning effort for o3 models: low, medium or high.",
        ),
    ] = None,
    temperature: Annotated[
        Optional[float],
        typer.Option(help="Sampling temperature (0.0-2.0)."),
    ] = None,
    retries: Annotated[
        int,
        typer.Option(
            help="Retries per file after the first attempt (0-10).",
            rich_help_panel="Processing",
        ),
    ] = 3,
    progress_file: Annotated[
        Optional[Path],
        typer.Option(
            "--progress-file",
            help="Progress file path (defaults to one derived from the model name).",
            rich_help_panel="Output",
        ),
    ] = None,
    retry_failed: Annotated[
        bool,
        typer.Option(
            "--retry-failed",
            help="Retry files recorded as failed by a previous run.",
            rich_help_panel="Processing",
        ),
    ] = False,
    config: Annotated[
        Path, typer.Option(help="Optional YAML configuration file.")
    ] = Path("config.yaml"),
    log_file: Annotated[
        Optional[str],
        typer.Option(help="Log file path (empty string disables file logging)."),
    ] = None,
    debug: Annotated[bool, typer.Option(help="Enable debug logging.")] = False,
) -> None:
    """Extract a summary and topics from every document in a folder."""
    configure_logging(
        level=logging.DEBUG if debug else None,
        log_file=log_file,
        force=True,
    )

    try:
        options = RunOptions(
            folder=folder,
            output=output,
            concurrency=concurrency,
            model=model,
            provider=provider,
            reasoning_effort=reasoning_effort,
            temperature=temperature,
            retries=retries,
            progress_file=progress_file,
            retry_failed=retry_failed,
        )
    except ValidationError as exc:
        typer.secho(
            f"Error: invalid options: {_format_validation_error(exc)}",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1) from exc

    typer.echo("Starting bulk processing")
    typer.echo(f"Folder: {options.folder}")
    typer.echo(f"Concurrency: {options.concurrency}")
    typer.echo(f"Model: {options.model} ({options.provider.value})")
    typer.echo(f"Max retries: {options.retries}")

    try:
        settings = resolve_settings(load_config(config))
        summary = run_pipeline(options, settings=settings)
    except DocExtractError as exc:
        cli_logger.error("%s", exc)
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    except Exception as exc:
        cli_logger.exception("Bulk processing failed")
        typer.secho(f"Bulk processing failed: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(f"Found {summary.discovered} matching files")
    if summary.succeeded + summary.failed == 0 and not summary.cancelled:
        typer.echo(
            f"Nothing to process ({summary.skipped} already completed or failed)."
        )
        return

    _render_summary(summary)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
