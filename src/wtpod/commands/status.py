from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich import box
from rich.markup import escape
from rich.table import Table

from wtpod.containers.correlator import ContainerStatus
from wtpod.core.console import console
from wtpod.core.decorators import handle_exceptions
from wtpod.session.controller import SessionController, WorktreeStatus, branch_note
from wtpod.session.paths import SessionState

_CONTAINER_STYLE = {
    ContainerStatus.RUNNING: "green",
    ContainerStatus.STOPPED: "yellow",
    ContainerStatus.NO_CONTAINER: "dim",
}

_STATE_STYLE = {
    SessionState.VALID_HOST: "green",
    SessionState.VALID_CONTAINER: "cyan",
    SessionState.CORRUPTED_METADATA: "red",
    SessionState.MISSING: "red",
}


def render_status_table(rows: list[WorktreeStatus], title: str) -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAVY, expand=True)
    table.add_column("Identity", style="cyan", no_wrap=True)
    table.add_column("Branch", style="white", no_wrap=True)
    table.add_column("Links", style="white", no_wrap=True)
    table.add_column("Container", style="white", no_wrap=True)
    table.add_column("Path", style="white")

    for row in rows:
        record = row.record
        identity = escape(record.identity)
        if record.is_primary:
            identity += " [dim](primary)[/dim]"
        if record.prunable:
            identity += " [red](prunable)[/red]"
        state_style = _STATE_STYLE[row.state]
        container_style = _CONTAINER_STYLE[row.container_status]
        container = row.container_status.value
        if row.container is not None:
            container += f" {row.container.id[:12]}"
        table.add_row(
            identity,
            escape(record.branch_display),
            f"[{state_style}]{row.state.value}[/]",
            f"[{container_style}]{container}[/]",
            escape(str(record.path)),
        )
    return table


@handle_exceptions
def status(
    ctx: typer.Context,
    start: Path | None = typer.Option(
        None, "--repo", "-r", help="Directory inside the repository (default: current directory)."
    ),
) -> None:
    """Show every worktree with its link state and container status."""
    controller = SessionController(ctx.obj.config)
    rows = asyncio.run(controller.status((start or Path.cwd()).expanduser()))
    if not rows:
        console.print("[yellow]No worktrees found.[/yellow]")
        return

    console.print(render_status_table(rows, title=f"Worktrees ({len(rows)})"))
    for row in rows:
        if row.record.is_primary:
            continue
        note = branch_note(row.record)
        if note:
            console.print(f"[dim]{escape(note)}[/dim]")
