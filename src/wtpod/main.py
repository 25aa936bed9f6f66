from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass, field
from pathlib import Path
from time import perf_counter
from types import FrameType

import typer
from rich import box
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from . import __version__
from .core.config import AppConfig, ConfigLoadResult, load_config
from .core.console import console, setup_logging
from .core.diagnostics import run_diagnostics_suite
from .core.registry import discover_commands

app = typer.Typer(help="wtpod: one dev container per git worktree, keyed by identity.")
logger = logging.getLogger(__name__)


class ApplicationLifecycle:
    """Signal handling for the CLI process.

    SIGINT/SIGTERM are turned into ``SystemExit`` so that the running
    session unwinds through its ``finally`` blocks and restores host-form git
    links before the process exits.
    """

    def __init__(self) -> None:
        self._shutdown_requested: bool = False

    def handle_shutdown(self, signum: int, frame: FrameType | None) -> None:
        """Handle SIGINT/SIGTERM for graceful shutdown.

        First signal prints a notice and exits through normal unwinding.
        Second signal exits again with a manual recovery hint.
        """
        if self._shutdown_requested:
            console.print("\n[red]Force exit - if git reports broken worktrees, run:[/red]")
            console.print("  wtpod up <name>   (repairs link records)")
            raise SystemExit(128 + signum)

        self._shutdown_requested = True
        console.print("\n[yellow]Shutting down, restoring git links...[/yellow]")
        raise SystemExit(128 + signum)

    def register_signal_handlers(self) -> None:
        """Register signal handlers for graceful shutdown."""
        signal.signal(signal.SIGINT, self.handle_shutdown)
        signal.signal(signal.SIGTERM, self.handle_shutdown)


@dataclass
class AppState:
    config: AppConfig
    config_meta: ConfigLoadResult
    logger: logging.Logger
    lifecycle: ApplicationLifecycle = field(default=None)  # type: ignore[assignment]


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to a wtpod config file (TOML or JSON)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report mutations without making them."),
) -> None:
    # load_config never raises; a bad file yields defaults plus meta.error
    loaded_config, meta = load_config(config_path=config)
    if dry_run:
        loaded_config = loaded_config.model_copy(
            update={"user": loaded_config.user.model_copy(update={"dry_run": True})}
        )

    logger = setup_logging(level=loaded_config.user.log_level, verbose=verbose)

    lifecycle = ApplicationLifecycle()
    lifecycle.register_signal_handlers()

    ctx.obj = AppState(
        config=loaded_config,
        config_meta=meta,
        logger=logger,
        lifecycle=lifecycle,
    )

    if meta.error:
        console.print(
            Panel(
                f"[bold red]Configuration Error - Safe Mode Active[/bold red]\n\n"
                f"Failed to load {meta.path}:\n{meta.error}\n\n"
                f"[yellow]Using default settings. Fix the file and rerun.[/yellow]",
                border_style="red",
            )
        )
    else:
        logger.debug(
            "Loaded configuration from %s (env overrides: %s)",
            meta.path,
            sorted(meta.env_overrides),
        )


@app.command("doctor")
def doctor(
    ctx: typer.Context,
    tool: list[str] | None = typer.Option(
        None, "--tool", "-t", help="Check only specific tools (name or binary)."
    ),
) -> None:
    """Check git, the container runtime and the devcontainer CLI."""
    state: AppState = ctx.obj
    state.logger.debug("Running doctor for tools: %s", tool or "all")

    diag_results, tool_results = asyncio.run(
        run_diagnostics_suite(
            config=state.config,
            config_path=state.config_meta.path,
            tool_names=tool,
        )
    )

    tree = Tree("System Health")
    style_map = {"ok": "green", "warn": "yellow", "error": "red", "missing": "red"}
    diag_branch = tree.add("Deep Checks")
    for name, status, message in diag_results:
        style = style_map.get(status, "white")
        diag_branch.add(f"[{style}]{status}[/{style}] {name}: {message}")

    tools_branch = tree.add("Binaries")
    for result in tool_results:
        style = style_map.get(result.status, "white")
        message = result.version or result.message or result.tool.install_hint or ""
        tools_branch.add(
            f"[{style}]{result.status}[/{style}] {result.tool.name} ({result.tool.binary}) {message}".strip()
        )

    console.print(tree)

    failed = any(r.status in {"error", "missing"} and r.tool.required for r in tool_results)
    if failed or any(status == "error" for _, status, _ in diag_results):
        raise typer.Exit(code=1)


@app.command("config")
def show_config(ctx: typer.Context) -> None:
    """Show the active configuration and where it came from."""
    state: AppState = ctx.obj
    config = state.config
    meta = state.config_meta

    table = Table(title="Config", box=box.SIMPLE, expand=True)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")

    # SecretStr renders masked
    for section, values in config.model_dump().items():
        for key, value in values.items():
            table.add_row(f"{section}.{key}", str(value))

    console.print(table)

    meta_lines = [
        f"Path: {meta.path}",
        "File loaded: yes" if meta.file_loaded else "File loaded: no (using defaults + env)",
    ]

    if meta.env_overrides:
        meta_lines.append("Env overrides: " + ", ".join(sorted(meta.env_overrides)))

    console.print(Panel("\n".join(meta_lines), title="Config source", box=box.SIMPLE))


@app.command("version")
def show_version() -> None:
    """Print the wtpod version."""
    console.print(__version__)


_REGISTERED = False


def _register_commands() -> None:
    global _REGISTERED
    if _REGISTERED:
        return
    commands_path = Path(__file__).resolve().parent / "commands"
    typer_modules, function_commands = discover_commands(commands_path)

    for name, module in typer_modules:
        app.add_typer(module.app, name=name)

    for spec in function_commands:
        app.command(spec.name)(spec.handler)
    _REGISTERED = True


def _register_commands_with_timing() -> None:
    start = perf_counter()
    _register_commands()
    elapsed = perf_counter() - start
    logger.debug("Command registry initialized in %.3f seconds", elapsed)


_register_commands_with_timing()


def cli() -> None:
    app()


if __name__ == "__main__":
    cli()
