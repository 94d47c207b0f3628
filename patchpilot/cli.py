"""
patchpilot CLI — The Interface

  patchpilot run --repo-url <url> --task "<description>"   (one task, synchronously)
  patchpilot batch --tasks-file tasks.yaml                (many tasks on the queue)
  patchpilot serve                                        (HTTP API)
  patchpilot status                                       (config + credentials)
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from loguru import logger
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from patchpilot.config_loader import (
    PatchPilotConfig,
    credential_report,
    load_config,
    validate_generation_credentials,
)
from patchpilot.errors import ConfigError
from patchpilot.identity import BANNER, __codename__, __tagline__, __version__
from patchpilot.state import Task, load_tasks

# Load .env from current directory or home
load_dotenv()
load_dotenv(Path.home() / ".patchpilot" / ".env")

app = typer.Typer(
    name="patchpilot",
    help=f"{__codename__} — {__tagline__}\nTurns task descriptions into branches and pull requests.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__codename__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
):
    pass


# ---------------------------------------------------------------------------
# Banner
# ---------------------------------------------------------------------------


def _print_banner():
    console.print(f"[bright_green]{BANNER}[/]")
    console.print(f"  [dim]v{__version__} — {__tagline__}[/]\n")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def run(
    repo_url: str = typer.Option(..., "--repo-url", "-r", help="Repository to change (URL or local path)"),
    task_description: str = typer.Option(..., "--task", "-d", help="What to change"),
    task_id: Optional[str] = typer.Option(None, "--id", help="Task id (default: task-<ms>)"),
    target_file: Optional[str] = typer.Option(None, "--target-file", "-f", help="Restrict the change to one file"),
    mode: Optional[str] = typer.Option(None, "--mode", "-m", help="local | remote"),
    backend: Optional[str] = typer.Option(None, "--backend", "-b", help="llm | rules"),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help="Directory holding .patchpilot/config.yaml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Run one task through the pipeline and wait for it."""
    from patchpilot.controller import Controller

    _print_banner()
    _configure_logging(verbose)
    config = _load_checked_config(config_dir, mode=mode, backend=backend)

    extra = {"targetFile": target_file} if target_file else {}
    task = Task.from_request(repo_url, task_description, task_id=task_id, **extra)

    console.print(Panel(
        f"[bold green]Task:[/] {task.description[:120]}\n"
        f"[bold]ID:[/] {task.task_id}  |  [bold]Mode:[/] {config.workflow.mode}  |  "
        f"[bold]Backend:[/] {config.generation.backend}",
        title=f"⚡ {__codename__}",
        border_style="bright_green",
    ))

    result = Controller(config).run(task)
    _print_result(result)

    if result.get("status") != "completed":
        raise typer.Exit(1)


@app.command()
def batch(
    tasks_file: Path = typer.Option(..., "--tasks-file", "-t", help="YAML list of tasks"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Max concurrent tasks"),
    mode: Optional[str] = typer.Option(None, "--mode", "-m"),
    backend: Optional[str] = typer.Option(None, "--backend", "-b"),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Run many tasks concurrently."""
    from patchpilot.controller import Controller
    from patchpilot.parallel import run_batch

    _print_banner()
    _configure_logging(verbose)

    if not tasks_file.exists():
        console.print(f"[red]Tasks file not found: {tasks_file}[/]")
        raise typer.Exit(1)

    config = _load_checked_config(config_dir, mode=mode, backend=backend)
    tasks = load_tasks(tasks_file)
    if not tasks:
        console.print(f"[red]No tasks in {tasks_file}[/]")
        raise typer.Exit(1)

    results = run_batch(Controller(config), tasks, max_workers=workers or config.queue.max_workers)
    if any(r.get("status") != "completed" for r in results):
        raise typer.Exit(1)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(5000, "--port", "-p"),
    mode: Optional[str] = typer.Option(None, "--mode", "-m"),
    backend: Optional[str] = typer.Option(None, "--backend", "-b"),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Serve the task API."""
    import uvicorn

    from patchpilot.api import create_app
    from patchpilot.controller import Controller
    from patchpilot.parallel import TaskQueue

    _print_banner()
    _configure_logging(verbose)
    config = _load_checked_config(config_dir, mode=mode, backend=backend)

    queue = TaskQueue(Controller(config), max_workers=config.queue.max_workers)
    console.print(f"[cyan]Listening on http://{host}:{port} ({config.workflow.mode} mode)[/]")
    uvicorn.run(create_app(queue), host=host, port=port, log_level="debug" if verbose else "info")


@app.command()
def status(
    config_dir: Optional[Path] = typer.Option(None, "--config-dir"),
):
    """Check patchpilot configuration and readiness."""
    _print_banner()

    config = load_config(config_dir.resolve() if config_dir else None)

    key_table = Table(title="Credentials", border_style="cyan")
    key_table.add_column("Key")
    key_table.add_column("Status")
    for key, available in credential_report(config).items():
        status_str = "[green]✓ Available[/]" if available else "[red]✗ Missing[/]"
        key_table.add_row(key, status_str)
    console.print(key_table)

    console.print("\n[bold]Generation:[/]")
    console.print(f"  Backend: {config.generation.backend}")
    console.print(f"  Model:   {config.generation.model}")

    console.print("\n[bold]Workflow:[/]")
    console.print(f"  Mode:        {config.workflow.mode}")
    console.print(f"  Base branch: {config.workflow.base_branch}")
    console.print(f"  Repos dir:   {config.workspace.repos_dir}")
    console.print(f"  Apply:       {config.apply.mode} / {config.apply.matcher} matcher")

    tools_table = Table(title="System Tools", border_style="cyan")
    tools_table.add_column("Tool")
    tools_table.add_column("Status")
    found = shutil.which("git")
    tools_table.add_row("git", f"[green]✓ {found}[/]" if found else "[red]✗ Not found[/]")
    console.print(tools_table)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _load_checked_config(
    config_dir: Path | None,
    mode: str | None = None,
    backend: str | None = None,
) -> PatchPilotConfig:
    config = load_config(config_dir.resolve() if config_dir else None)
    updates = {}
    if mode:
        updates["workflow"] = config.workflow.model_copy(update={"mode": mode})
    if backend:
        updates["generation"] = config.generation.model_copy(update={"backend": backend})
    if updates:
        try:
            config = PatchPilotConfig.model_validate(config.model_copy(update=updates).model_dump())
        except ValidationError as e:
            console.print(f"[red]Invalid option: {escape(str(e))}[/]")
            raise typer.Exit(1)

    try:
        validate_generation_credentials(config)
    except ConfigError as e:
        console.print(f"[red]{escape(str(e))}[/]")
        raise typer.Exit(1)
    return config


def _print_result(result: dict) -> None:
    status = result.get("status", "unknown")
    color = "green" if status == "completed" else "red"

    table = Table(border_style=color, show_header=False)
    table.add_column("Field", style="dim")
    table.add_column("Value")
    for key in ("branch", "commit_sha", "pull_request_url", "message", "error", "stage"):
        if result.get(key):
            table.add_row(key, escape(str(result[key])))
    if result.get("files_changed"):
        table.add_row("files_changed", "\n".join(result["files_changed"]))
    for conflict in result.get("conflicts", []):
        table.add_row("conflict", f"{conflict['path']} (hunk #{conflict['hunk']}): {escape(conflict['reason'])}")
    for warning in result.get("warnings", []):
        table.add_row("warning", f"[yellow]{escape(warning)}[/]")

    console.print(table)
    console.print(f"\n[bold {color}]Status: {status}[/]")


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    if verbose:
        logger.add(
            lambda msg: console.print(f"{msg}", highlight=False, markup=False, style="dim"),
            level="DEBUG",
            format="{time:HH:mm:ss} | {level:<7} | {message}",
        )
    else:
        logger.add(
            lambda msg: console.print(f"{msg}", highlight=False, markup=False, style="dim"),
            level="WARNING",
            format="{message}",
        )


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app()
