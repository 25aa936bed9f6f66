from __future__ import annotations

import asyncio
import shlex
from pathlib import Path

import typer
from rich import box
from rich.markup import escape
from rich.table import Table

from wtpod.core.console import console
from wtpod.core.decorators import handle_exceptions
from wtpod.session.controller import SessionController, SessionOutcome, SessionRequest


def build_controller(ctx: typer.Context) -> SessionController:
    return SessionController(ctx.obj.config)


def _start_dir(start: Path | None) -> Path:
    return (start or Path.cwd()).expanduser()


def _render_outcome(outcome: SessionOutcome) -> None:
    route = outcome.route.value if outcome.route else "none"
    summary = f"[cyan]{outcome.identity}[/cyan] via {route}"
    if outcome.container_id:
        summary += f" (container {outcome.container_id[:12]})"
    if outcome.created:
        summary += " [green]new worktree[/green]"
    if outcome.synced:
        summary += f" [dim]synced {', '.join(outcome.synced)}[/dim]"
    console.print(summary)


@handle_exceptions
def up(
    ctx: typer.Context,
    name: str | None = typer.Argument(
        None, help="Worktree identity, usually the branch name (feature/x -> feature-x)."
    ),
    base: str | None = typer.Option(
        None, "--base", "-b", help="Reference a new branch starts from (default: session.base_ref)."
    ),
    command: str | None = typer.Option(
        None, "--command", "-x", help='Command to run in the container, e.g. "zsh -l".'
    ),
    start: Path | None = typer.Option(
        None, "--repo", "-r", help="Directory inside the repository (default: current directory)."
    ),
) -> None:
    """Start or reconnect to a worktree's container session."""
    if not name or not name.strip():
        typer.echo(ctx.get_help())
        raise typer.Exit(code=0)

    request = SessionRequest(
        name=name,
        start_dir=_start_dir(start),
        base_ref=base,
        command=shlex.split(command) if command else None,
    )
    outcome = asyncio.run(build_controller(ctx).run(request))
    _render_outcome(outcome)
    if outcome.exit_code:
        raise typer.Exit(code=outcome.exit_code)


@handle_exceptions
def stop(
    ctx: typer.Context,
    name: str | None = typer.Argument(None, help="Worktree identity."),
    start: Path | None = typer.Option(
        None, "--repo", "-r", help="Directory inside the repository (default: current directory)."
    ),
) -> None:
    """Stop the container of a worktree. The worktree is kept."""
    if not name or not name.strip():
        typer.echo(ctx.get_help())
        raise typer.Exit(code=0)

    stopped = asyncio.run(build_controller(ctx).stop(name, _start_dir(start)))
    if not stopped:
        console.print(f"[yellow]No running container for {name}.[/yellow]")
        return
    for container_id in stopped:
        console.print(f"[green]Stopped[/green] {container_id[:12]}")


@handle_exceptions
def remove(
    ctx: typer.Context,
    name: str | None = typer.Argument(None, help="Worktree identity."),
    delete_branch: bool = typer.Option(
        False, "--delete-branch", "-d", help="Also delete the branch created for this identity."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Remove a dirty worktree and an unmerged branch."
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    start: Path | None = typer.Option(
        None, "--repo", "-r", help="Directory inside the repository (default: current directory)."
    ),
) -> None:
    """Remove a worktree together with its containers."""
    if not name or not name.strip():
        typer.echo(ctx.get_help())
        raise typer.Exit(code=0)

    controller = build_controller(ctx)
    if not yes and not controller.dry_run:
        if not typer.confirm(f"Remove worktree and containers for {name}?", default=False):
            console.print("[yellow]Aborted.[/yellow]")
            return

    outcome = asyncio.run(
        controller.remove(name, _start_dir(start), delete_branch=delete_branch, force=force)
    )

    table = Table(title=f"Removed {outcome.identity}", box=box.SIMPLE)
    table.add_column("What", style="cyan", no_wrap=True)
    table.add_column("Result", style="white")
    table.add_row("Containers", ", ".join(c[:12] for c in outcome.containers) or "none")
    table.add_row("Worktree", "removed" if outcome.worktree_removed else "kept")
    table.add_row("Branch", outcome.branch_deleted or "kept")
    console.print(table)
    for note in outcome.notes:
        console.print(f"[dim]{escape(note)}[/dim]")
