from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich import box
from rich.markup import escape
from rich.table import Table

from wtpod.containers.runtime import ContainerRuntime
from wtpod.core.console import console
from wtpod.core.decorators import handle_exceptions
from wtpod.core.result import ContainerRuntimeError
from wtpod.git.registry import WorktreeRegistry
from wtpod.session.cleanup import CleanupEngine, CleanupItem, CleanupMode, VolumeSweepResult
from wtpod.session.controller import SessionController


def _plan_table(items: list[CleanupItem]) -> Table:
    table = Table(title=f"Containers to remove ({len(items)})", box=box.SIMPLE_HEAVY, expand=True)
    table.add_column("Container", style="cyan", no_wrap=True)
    table.add_column("Identity", style="white", no_wrap=True)
    table.add_column("State", style="white", no_wrap=True)
    table.add_column("Reason", style="white", no_wrap=True)
    for item in items:
        reason_style = "yellow" if item.reason.value == "orphaned" else "red"
        table.add_row(
            f"{item.container.name} ({item.container.id[:12]})",
            item.identity or "-",
            item.container.state,
            f"[{reason_style}]{item.reason.value}[/]",
        )
    return table


async def _build_engine(ctx: typer.Context, start_dir: Path) -> CleanupEngine:
    config = ctx.obj.config
    controller = SessionController(config)
    repository, git = await controller.open_repository(start_dir)
    layout = repository.layout(config.container.workspace_root)
    registry = WorktreeRegistry(repository, git, layout)
    return CleanupEngine(ContainerRuntime(config.container), repository, registry)


@handle_exceptions
def cleanup(
    ctx: typer.Context,
    total: bool = typer.Option(
        False, "--all", "-a", help="Remove every container of this repository, not just orphans."
    ),
    volumes: bool = typer.Option(
        False, "--volumes", help="Also remove volumes whose name contains the project name."
    ),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Show the plan and change nothing."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Run without asking for confirmation."),
    start: Path | None = typer.Option(
        None, "--repo", "-r", help="Directory inside the repository (default: current directory)."
    ),
) -> None:
    """Remove orphaned containers (or all of them with --all)."""
    dry_run = dry_run or ctx.obj.config.user.dry_run
    mode = CleanupMode.TOTAL if total else CleanupMode.SCOPED

    async def _plan() -> tuple[CleanupEngine, list[CleanupItem], list[str]]:
        engine = await _build_engine(ctx, (start or Path.cwd()).expanduser())
        items = await engine.plan(mode)
        volume_names = await engine.plan_volumes() if volumes else []
        return engine, items, volume_names

    engine, items, volume_names = asyncio.run(_plan())

    if not items and not volume_names:
        console.print(f"[green]Nothing to clean up ({mode.value}).[/green]")
        return

    if items:
        console.print(_plan_table(items))
    if volume_names:
        console.print("[cyan]Volumes:[/cyan] " + ", ".join(volume_names))

    if dry_run:
        console.print("[yellow]Dry run: nothing was removed.[/yellow]")
        return

    if not yes and not typer.confirm(
        f"Remove {len(items)} container(s) and {len(volume_names)} volume(s)?", default=False
    ):
        console.print("[yellow]Aborted.[/yellow]")
        return

    async def _apply() -> tuple[int, str | None, VolumeSweepResult]:
        error: str | None = None
        removed = 0
        try:
            removed = await engine.apply(items)
        except ContainerRuntimeError as exc:
            error = exc.message
            removed = int(exc.context.get("removed", 0))
        return removed, error, await engine.sweep_volumes(volume_names)

    removed, error, sweep = asyncio.run(_apply())

    console.print(f"[green]Removed {removed} container(s).[/green]")
    if error:
        console.print(f"[red]{escape(error)}[/red]")
    if sweep.removed:
        console.print(f"[green]Removed volumes:[/green] {', '.join(sweep.removed)}")
    if sweep.in_use:
        console.print(f"[yellow]Skipped volumes in use:[/yellow] {', '.join(sweep.in_use)}")
    for name, message in sweep.failed:
        console.print(f"[red]Volume {name}: {escape(message)}[/red]")
    if error or sweep.failed:
        raise typer.Exit(code=1)
