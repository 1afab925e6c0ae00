"""Thin CLI wrapper for embroot.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated, Any, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from embroot import __version__
from embroot.config import get_settings, print_settings_json

app = typer.Typer(
    name="embroot",
    help="embroot - build embedded root filesystems from source packages",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

ProjectOption = Annotated[
    Path,
    typer.Option("--project", "-p", help="Project directory or manifest file"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"embroot version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _print_json(data: Any) -> None:
    console.print(
        json.dumps(data, indent=2), markup=False, highlight=False, soft_wrap=True
    )


def _fail(error: Exception) -> NoReturn:
    code = getattr(error, "code", "error")
    err_console.print(f"[red]Error ({code}): {error}[/red]", soft_wrap=True)
    raise typer.Exit(code=1) from None


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """embroot - build embedded root filesystems from source packages."""
    configure_logging("DEBUG" if verbose else get_settings().log_level)


@app.command()
def config(json_output: JsonOption = False) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), markup=False, soft_wrap=True)
        return

    remote = settings.remote_cache_url or "(none)"
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Cache directory:     {settings.cache_dir}")
    console.print(f"  Downloads directory: {settings.downloads_dir}")
    console.print(f"  Toolchains:          {settings.toolchains_dir}")
    console.print(f"  Build directory:     {settings.build_dir}")
    console.print(f"  Database URL:        {settings.db_url}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Offline mode:        {settings.offline}")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Remote cache:        {remote}")
    console.print(
        f"  Default compiler:    {settings.default_compiler} {settings.compiler_version}"
    )
    console.print()
    console.print("[bold]Concurrency:[/bold]")
    console.print(f"  Parallel jobs:       {settings.jobs}")
    console.print(f"  Max downloads:       {settings.max_concurrent_downloads}")
    console.print(f"  Download retries:    {settings.download_retries}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Download timeout:    {settings.download_timeout}")
    console.print(f"  Build timeout:       {settings.build_timeout}")


@app.command()
def resolve(
    project: ProjectOption = Path("."),
    json_output: JsonOption = False,
) -> None:
    """Resolve requested packages and print the build plan."""
    from embroot.builds.service import load_project, resolve_project
    from embroot.packages.schema import ConfigurationError
    from embroot.resolver.errors import ResolutionError

    try:
        plan = resolve_project(load_project(project))
    except (ConfigurationError, ResolutionError) as e:
        _fail(e)

    if json_output:
        _print_json(
            [
                {
                    "name": p.name,
                    "version": str(p.version),
                    "source": p.spec.locator,
                    "depends": list(p.build_dependencies),
                    "requires": list(p.runtime_requirements),
                }
                for p in plan.packages
            ]
        )
        return

    if not plan.packages:
        console.print("[yellow]No packages requested[/yellow]")
        return

    table = Table(title=f"Build plan ({len(plan)} packages)")
    table.add_column("#", justify="right")
    table.add_column("Package")
    table.add_column("Version")
    table.add_column("Depends on")
    for index, p in enumerate(plan.packages, start=1):
        table.add_row(
            str(index), p.name, str(p.version), ", ".join(p.build_dependencies) or "-"
        )
    console.print(table)


@app.command()
def fetch(project: ProjectOption = Path(".")) -> None:
    """Download the sources of every package in the plan."""
    from embroot.builds.service import fetch_project, load_project
    from embroot.fetch.download import DownloadError
    from embroot.fetch.git import GitError
    from embroot.packages.schema import ConfigurationError
    from embroot.resolver.errors import ResolutionError

    settings = get_settings()
    try:
        fetched = fetch_project(load_project(project), settings)
    except (ConfigurationError, ResolutionError, DownloadError, GitError) as e:
        _fail(e)

    total = sum(len(paths) for paths in fetched.values())
    console.print(f"[green]Fetched {total} source(s) for {len(fetched)} package(s)[/green]")
    for name, paths in fetched.items():
        for path in paths:
            console.print(f"  {name}: {path}")


@app.command()
def build(
    project: ProjectOption = Path("."),
    locked: Annotated[
        bool,
        typer.Option("--locked", help="Fail if resolution differs from the lock file"),
    ] = False,
    jobs: Annotated[
        int | None,
        typer.Option("--jobs", "-j", min=1, help="Packages built in parallel"),
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """Resolve, fetch and build every package of the project."""
    from embroot.builds.service import build_project, load_project
    from embroot.lockfile.model import LockFileError
    from embroot.lockfile.verify import LockMismatchError
    from embroot.packages.schema import ConfigurationError
    from embroot.resolver.errors import ResolutionError

    settings = get_settings()
    try:
        _, report = build_project(load_project(project), settings, locked=locked, jobs=jobs)
    except (ConfigurationError, ResolutionError, LockFileError, LockMismatchError) as e:
        _fail(e)

    if json_output:
        _print_json(report.to_dict())
    else:
        colors = {"installed": "green", "cached": "cyan", "failed": "red"}
        for p in report.packages:
            color = colors.get(p.state.value, "white")
            line = f"  [{color}]{p.state.value:>9}[/{color}] {p.name} {p.version}"
            if p.reason:
                line += f" - {p.reason}"
            console.print(line, soft_wrap=True)
        console.print()
        status = "[green]succeeded[/green]" if report.ok else "[red]failed[/red]"
        console.print(
            f"Build {status} in {report.elapsed_seconds:.1f}s, "
            f"{report.bytes_produced} bytes installed"
        )
        if report.lock_path:
            console.print(f"Lock file: {report.lock_path}")

    if not report.ok:
        raise typer.Exit(code=1)


cache_app = typer.Typer(help="Manage the build cache")
app.add_typer(cache_app, name="cache")


@cache_app.command("info")
def cache_info(json_output: JsonOption = False) -> None:
    """Show build cache location and size."""
    from embroot.builds.service import create_build_cache

    info = create_build_cache(get_settings()).info()
    if json_output:
        _print_json(
            {
                "path": str(info.path),
                "entries": info.entries,
                "total_bytes": info.total_bytes,
                "human_size": info.human_size,
            }
        )
        return
    console.print("[bold]Build cache:[/bold]")
    console.print(f"  Path:    {info.path}")
    console.print(f"  Entries: {info.entries}")
    console.print(f"  Size:    {info.human_size}")


@cache_app.command("clean")
def cache_clean(
    older_than: Annotated[
        int | None,
        typer.Option("--older-than", help="Only remove entries older than N days"),
    ] = None,
) -> None:
    """Remove cached artifacts."""
    from datetime import timedelta

    from embroot.builds.service import create_build_cache
    from embroot.cache.store import CacheError

    cache = create_build_cache(get_settings())
    age = timedelta(days=older_than) if older_than is not None else None
    try:
        freed = cache.clean(older_than=age)
    except CacheError as e:
        _fail(e)
    console.print(f"[green]Freed {freed} bytes[/green]")


@cache_app.command("export")
def cache_export(
    dest: Annotated[Path, typer.Argument(help="Archive to write")],
) -> None:
    """Export the whole cache to an archive."""
    from embroot.builds.service import create_build_cache
    from embroot.cache.store import CacheError

    try:
        count = create_build_cache(get_settings()).export(dest)
    except CacheError as e:
        _fail(e)
    console.print(f"[green]Exported {count} entries to {dest}[/green]")


@cache_app.command("import")
def cache_import(
    src: Annotated[Path, typer.Argument(help="Archive created by 'cache export'")],
) -> None:
    """Import cache entries from an archive."""
    from embroot.builds.service import create_build_cache
    from embroot.cache.store import CacheError

    if not src.exists():
        console.print(f"[red]Path not found: {src}[/red]")
        raise typer.Exit(code=1)
    try:
        count = create_build_cache(get_settings()).import_archive(src)
    except CacheError as e:
        _fail(e)
    console.print(f"[green]Imported {count} entries from {src}[/green]")


if __name__ == "__main__":
    app()
