"""SourceSailor CLI - LLM-powered analysis of a codebase.

Usage:
    sourcesailor setup --provider openai --api-key sk-...
    sourcesailor analyse <path> [-v] [-s] [-m MODEL]
    sourcesailor prepare-report <path>
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterator
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .analysis import AnalysisOrchestrator, AnalysisResult
from .config import (
    ANALYSIS_DIR_KEY,
    API_KEY_NAMES,
    DEFAULT_MODEL_KEY,
    PROVIDER_MODEL_KEYS,
    SECRET_KEYS,
    USER_EXPERTISE_KEY,
    config_path,
    mask_secret,
    read_config,
    update_config,
)
from .model import ModelError
from .registry import default_registry
from .tree import get_dir_structure
from .writer import AnalysisWriter

console = Console()
err_console = Console(stderr=True)

PROVIDERS = sorted(API_KEY_NAMES)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=verbose, rich_tracebacks=True)],
        force=True,
    )
    # SDK transports are chatty at DEBUG
    for name in ("httpx", "httpcore", "openai", "anthropic"):
        logging.getLogger(name).setLevel(logging.WARNING)


@contextlib.contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except (ModelError, ValueError, FileNotFoundError) as e:
        raise click.ClickException(str(e))


def _print_chunk(chunk: str) -> None:
    console.print(chunk, end="", markup=False, highlight=False, soft_wrap=True)


@click.group()
@click.version_option(version=__version__)
def cli():
    """SourceSailor - understand a codebase with the help of an LLM.

    Walks a project, classifies it, and writes dependency and code
    analyses under .SourceSailor/.
    """
    pass


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.option("--streaming", "-s", is_flag=True, help="Stream model output as it arrives")
@click.option("--model", "-m", default=None, help="Model name (defaults to DEFAULT_MODEL from config)")
@click.option("--ignore", "-i", multiple=True, help="Extra ignore pattern; repeatable")
def analyse(path: str, verbose: bool, streaming: bool, model: str | None, ignore: tuple[str, ...]):
    """Analyse the project at PATH: structure, dependencies and code.

    Examples:

        sourcesailor analyse .

        sourcesailor analyse ../api -m sonnet-3.5 -s -i "*.snap"
    """
    _configure_logging(verbose)
    config = read_config()
    writer = AnalysisWriter(config.get(ANALYSIS_DIR_KEY))

    console.print()
    console.print(Panel.fit(
        f"[bold cyan]SourceSailor v{__version__}[/] - Codebase Analysis",
        border_style="cyan",
    ))

    with _cli_errors(), Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Loading models...", total=None)

        def on_progress(message: str) -> None:
            progress.update(task, description=message)
            if verbose:
                console.print(f"[dim]{message}[/]")

        orchestrator = AnalysisOrchestrator(
            default_registry(config),
            writer,
            stream_callback=_print_chunk,
            progress_callback=on_progress,
        )
        result = orchestrator.analyse(
            path,
            verbose=verbose,
            allow_streaming=streaming,
            model_name=model,
            user_expertise=config.get(USER_EXPERTISE_KEY),
            ignore=ignore,
        )

    _print_analysis_result(result, writer.root_for(path))


@cli.command("dir-structure")
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.option("--verbose", "-v", is_flag=True, help="Log ignore decisions")
@click.option("--with-content/--no-content", default=False, help="Include file contents")
@click.option("--ignore", "-i", multiple=True, help="Extra ignore pattern; repeatable")
def dir_structure(path: str, verbose: bool, with_content: bool, ignore: tuple[str, ...]):
    """Print the filtered directory tree of PATH as JSON."""
    _configure_logging(verbose)
    with _cli_errors():
        tree = get_dir_structure(path, ignore=ignore, verbose=verbose)
    click.echo(tree.to_json(with_content=with_content, indent=2))


@cli.command("list-models")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
def list_models(verbose: bool):
    """List the models every configured provider offers."""
    _configure_logging(verbose)
    config = read_config()
    registry = default_registry(config)
    with _cli_errors():
        registry.initialize(verbose)
        catalog = registry.catalog

    if not catalog:
        console.print("[yellow]No models available. Run: sourcesailor setup --api-key <key>[/]")
        return

    default = config.get(DEFAULT_MODEL_KEY)
    table = Table(title="Available Models", show_header=True)
    table.add_column("Model", style="bold")
    table.add_column("Provider")
    table.add_column("Token limit", justify="right")
    for name, entry in catalog.items():
        table.add_row(
            name, entry.provider_id, f"{entry.token_limit:,}",
            style="green" if name == default else None,
        )
    console.print(table)


@cli.command()
@click.option("--provider", "-p", type=click.Choice(PROVIDERS), default="openai", show_default=True)
@click.option("--api-key", "-k", required=True, help="API key for the provider")
@click.option("--model", "-m", default=None, help="Default model to use")
def setup(provider: str, api_key: str, model: str | None):
    """Store an API key (and optionally a default model) in the config file."""
    updates = {API_KEY_NAMES[provider]: api_key}
    if model:
        updates[DEFAULT_MODEL_KEY] = model
        updates[PROVIDER_MODEL_KEYS[provider]] = model
    update_config(updates)
    console.print(f"[green]Saved {provider} settings to {config_path()}[/]")


@cli.command("update-config")
@click.option("--provider", "-p", type=click.Choice(PROVIDERS), default="openai", show_default=True)
@click.option("--api-key", "-k", default=None, help="API key for the provider")
@click.option("--model", "-m", default=None, help="Default model to use")
@click.option("--analysis-dir", "-d", default=None, help="Where to write analyses ('p' = inside the project)")
@click.option("--expertise", "-e", default=None, help="Your expertise, used to tailor answers")
def update_config_command(
    provider: str,
    api_key: str | None,
    model: str | None,
    analysis_dir: str | None,
    expertise: str | None,
):
    """Change individual config values."""
    updates: dict[str, str | None] = {
        ANALYSIS_DIR_KEY: analysis_dir,
        USER_EXPERTISE_KEY: expertise,
    }
    if api_key:
        updates[API_KEY_NAMES[provider]] = api_key
    if model:
        updates[DEFAULT_MODEL_KEY] = model
        updates[PROVIDER_MODEL_KEYS[provider]] = model
    if not any(updates.values()):
        raise click.UsageError("Nothing to update.")
    update_config(updates)
    console.print(f"[green]Config updated: {config_path()}[/]")


@cli.command("list-config")
def list_config():
    """Show the stored config with API keys masked."""
    config = read_config()
    if not config:
        console.print(f"[yellow]No config found at {config_path()}. Run: sourcesailor setup[/]")
        return
    table = Table(title=str(config_path()), show_header=True)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in sorted(config.items()):
        shown = mask_secret(str(value)) if key in SECRET_KEYS else str(value)
        table.add_row(key, shown)
    console.print(table)


@cli.command("prepare-report")
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.option("--streaming", "-s", is_flag=True, help="Stream model output as it arrives")
@click.option("--model", "-m", default=None, help="Model name (defaults to DEFAULT_MODEL from config)")
def prepare_report(path: str, verbose: bool, streaming: bool, model: str | None):
    """Write a README-style report from a previous analysis of PATH."""
    _configure_logging(verbose)
    config = read_config()
    writer = AnalysisWriter(config.get(ANALYSIS_DIR_KEY))
    orchestrator = AnalysisOrchestrator(default_registry(config), writer, stream_callback=_print_chunk)
    with _cli_errors():
        orchestrator.prepare_report(
            path,
            verbose=verbose,
            allow_streaming=streaming,
            model_name=model,
            user_expertise=config.get(USER_EXPERTISE_KEY),
        )
    console.print(f"\n[green]Report written to {writer.root_for(path) / 'report.md'}[/]")


def _print_analysis_result(result: AnalysisResult, root: Path) -> None:
    console.print()
    kind = "monorepo" if result.is_monorepo else "single codebase"
    lines = [f"[bold green]Analysed {result.project_name}[/] ({kind})"]
    if result.inference and not result.is_monorepo:
        inference = result.inference
        stack = " / ".join(x for x in (inference.programming_language, inference.framework) if x)
        if stack:
            lines.append(f"Stack: {stack}")
    lines.append(f"Artifacts: {len(result.artifacts)} | Output: {root}")
    console.print(Panel.fit("\n".join(lines), border_style="green"))

    for artifact in result.artifacts:
        console.print(f"  [cyan]{artifact}[/]")

    if result.errors:
        console.print()
        console.print("[bold red]Errors:[/]")
        for e in result.errors:
            console.print(f"  [red]{e}[/]")


if __name__ == "__main__":
    cli()
