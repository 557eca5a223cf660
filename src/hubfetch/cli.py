"""CLI for hubfetch."""

import logging
from pathlib import Path
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import BarColumn, Progress, TaskID, TextColumn

from .config import HubSettings, get_settings, set_settings
from .download import hub_download
from .errors import HubError
from .local_cache import HubCache
from .snapshot import snapshot_download


app = typer.Typer(help="""\
Download files from a model registry into a local, deduplicated cache,
and optionally place them into a working directory.""")

console = Console()


def _progress() -> Progress:
    return Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        console=console,
        transient=True,
    )


class _GroupedBars:
    """One progress bar per file of a snapshot download."""

    def __init__(self, progress: Progress):
        self.progress = progress
        self.tasks: Dict[str, TaskID] = {}

    def report(self, filename: str, percent: int) -> None:
        task = self.tasks.get(filename)
        if task is None:
            task = self.tasks[filename] = self.progress.add_task(filename, total=100)
        self.progress.update(task, completed=percent)


def _symlink_option(value: str):
    """Map the CLI spelling onto local_dir_use_symlinks."""
    return {"auto": "auto", "always": True, "never": False}[value]


def _fail(e: HubError) -> None:
    console.print(f"[red]✗[/red] {escape(str(e))}")
    raise typer.Exit(1)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
    config: Optional[Path] = typer.Option(None, "--config", help="YAML settings file"),
):
    """Configure logging and settings for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    if config is not None:
        try:
            set_settings(HubSettings.load(config))
        except HubError as e:
            _fail(e)


@app.command()
def download(
    repo_id: str = typer.Argument(..., help="Repository id, e.g. openai/clip-vit-base-patch16"),
    filename: str = typer.Argument(..., help="File inside the repository"),
    revision: Optional[str] = typer.Option(None, "--revision", "-r", help="Branch, tag or commit (default: main)"),
    subfolder: Optional[str] = typer.Option(None, "--subfolder", help="Folder inside the repository"),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Cache root"),
    local_dir: Optional[Path] = typer.Option(None, "--local-dir", help="Also place the file in this directory"),
    symlinks: str = typer.Option("auto", "--symlinks", help="auto, always or never (with --local-dir)"),
    force: bool = typer.Option(False, "--force", help="Download even if cached"),
    offline: bool = typer.Option(False, "--offline", help="Only use the local cache"),
    endpoint: Optional[str] = typer.Option(None, "--endpoint", help="Registry base URL"),
    token: Optional[str] = typer.Option(None, "--token", envvar="HUBFETCH_TOKEN", help="Access token"),
):
    """Download one file and print its local path."""
    if symlinks not in ("auto", "always", "never"):
        console.print(f"[red]✗[/red] Invalid --symlinks value: {symlinks}")
        raise typer.Exit(2)

    try:
        with _progress() as progress:
            task = progress.add_task(filename, total=100)
            path = hub_download(
                repo_id,
                filename,
                subfolder=subfolder,
                revision=revision,
                cache_dir=cache_dir,
                local_dir=local_dir,
                local_dir_use_symlinks=_symlink_option(symlinks),
                force_download=force,
                local_files_only=offline,
                endpoint=endpoint,
                token=token,
                progress=lambda fraction: progress.update(task, completed=fraction * 100),
            )
    except HubError as e:
        _fail(e)

    console.print(str(path), soft_wrap=True, markup=False, highlight=False)


@app.command()
def snapshot(
    repo_id: str = typer.Argument(..., help="Repository id, e.g. openai/clip-vit-base-patch16"),
    revision: Optional[str] = typer.Option(None, "--revision", "-r", help="Branch, tag or commit (default: main)"),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Cache root"),
    local_dir: Optional[Path] = typer.Option(None, "--local-dir", help="Also place the files in this directory"),
    symlinks: str = typer.Option("auto", "--symlinks", help="auto, always or never (with --local-dir)"),
    include: Optional[List[str]] = typer.Option(None, "--include", help="Only files matching this glob"),
    exclude: Optional[List[str]] = typer.Option(None, "--exclude", help="Skip files matching this glob"),
    max_workers: int = typer.Option(8, "--max-workers", "-j", help="Concurrent downloads"),
    force: bool = typer.Option(False, "--force", help="Download even if cached"),
    offline: bool = typer.Option(False, "--offline", help="Only use the local cache"),
    endpoint: Optional[str] = typer.Option(None, "--endpoint", help="Registry base URL"),
    token: Optional[str] = typer.Option(None, "--token", envvar="HUBFETCH_TOKEN", help="Access token"),
):
    """Download every file of a revision and print the snapshot folder."""
    if symlinks not in ("auto", "always", "never"):
        console.print(f"[red]✗[/red] Invalid --symlinks value: {symlinks}")
        raise typer.Exit(2)

    try:
        with _progress() as progress:
            path = snapshot_download(
                repo_id,
                revision=revision,
                cache_dir=cache_dir,
                local_dir=local_dir,
                local_dir_use_symlinks=_symlink_option(symlinks),
                max_workers=max_workers,
                allow_patterns=list(include) if include else None,
                ignore_patterns=list(exclude) if exclude else None,
                force_download=force,
                local_files_only=offline,
                endpoint=endpoint,
                token=token,
                progress=_GroupedBars(progress),
            )
    except HubError as e:
        _fail(e)

    console.print(str(path), soft_wrap=True, markup=False, highlight=False)


@app.command()
def clean(
    repo_id: str = typer.Argument(..., help="Repository id, e.g. openai/clip-vit-base-patch16"),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Cache root"),
):
    """Remove temp files left by interrupted downloads.

    Run it only while no download of this repository is in progress.
    """
    try:
        cache = HubCache(cache_dir or get_settings().cache_dir, repo_id)
        removed = cache.clean_incomplete()
    except HubError as e:
        _fail(e)

    console.print(f"[green]✓[/green] Removed {removed} incomplete file(s) from {escape(str(cache.blobs_dir))}")


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
