"""Thin CLI wrapper for sprout.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from sprout import __version__
from sprout.config import get_settings, print_settings_json
from sprout.errors import BuildError, SproutError

app = typer.Typer(
    name="sprout",
    help="Sprout - grow bootable NixOS images for Raspberry Pi",
    no_args_is_help=True,
)
console = Console()

DEFAULT_CONFIG_FILE = Path("sprout.yaml")

ConfigOption = Annotated[
    Path,
    typer.Option("--config", "-c", help="Path to sprout.yaml"),
]


def configure_logging(level: str) -> None:
    """Route log records through rich at the given level."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def report_error(e: SproutError) -> None:
    console.print(f"[red]Error ({e.phase.value}): {escape(e.message)}[/red]", soft_wrap=True)
    if isinstance(e, BuildError) and e.diagnostics:
        console.print("[dim]Last build output:[/dim]")
        for line in e.diagnostics:
            console.print(f"  {line}", markup=False, highlight=False)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"sprout version {__version__}")
        raise typer.Exit()


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
) -> None:
    """Sprout - grow bootable NixOS images for Raspberry Pi."""


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True)
        return

    agent_display = str(settings.agent_binary) if settings.agent_binary else "(none)"
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Config directory:    {settings.config_dir}")
    console.print(f"  Nix cache:           {settings.nix_cache_dir}")
    console.print(f"  Nix store:           {settings.nix_store_dir}")
    console.print(f"  Image staging:       {settings.staging_dir}")
    console.print(f"  Build workspaces:    {settings.workspace_root}")
    console.print(f"  Agent binary:        {agent_display}")
    console.print()
    console.print("[bold]Toolchain:[/bold]")
    console.print(f"  nix-build:           {settings.nix_build_binary}")
    console.print(f"  Container image:     {settings.toolchain_image}")
    console.print(f"  Compose command:     {' '.join(settings.compose_command)}")
    console.print(f"  Substituters:        {' '.join(settings.substituters)}")
    console.print()
    console.print("[bold]Container resources:[/bold]")
    console.print(f"  Memory (bytes):      {settings.container_memory_bytes}")
    console.print(f"  CPU shares:          {settings.container_cpu_shares}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Build timeout:       {settings.build_timeout}")
    console.print(f"  Lock timeout:        {settings.lock_timeout}")
    console.print()
    console.print(f"Log level: {settings.log_level}")


@app.command()
def output(
    config_path: ConfigOption = DEFAULT_CONFIG_FILE,
) -> None:
    """Print where grow will write the image.

    Only reads sprout.yaml itself; the compose file is never processed.
    """
    from sprout.sproutfile import load_config_metadata, resolve_output_path

    try:
        sprout_config = load_config_metadata(config_path)
    except SproutError as e:
        report_error(e)
        raise typer.Exit(code=1) from None
    console.print(
        str(resolve_output_path(sprout_config)), markup=False, highlight=False, soft_wrap=True
    )


@app.command()
def grow(
    config_path: ConfigOption = DEFAULT_CONFIG_FILE,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Build the system image described by sprout.yaml."""
    from sprout.pipeline import grow as grow_image

    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level)

    def on_progress(copied: int, total: int) -> None:
        percent = (copied / total * 100) if total else 100.0
        console.print(
            f"  Copied {copied // (1024 * 1024)} / {total // (1024 * 1024)} MiB ({percent:.0f}%)"
        )

    try:
        result = grow_image(
            config_path,
            settings=settings,
            console=console,
            on_progress=on_progress,
        )
    except SproutError as e:
        report_error(e)
        raise typer.Exit(code=1) from None

    console.print(f"[green]Image written to {escape(str(result.output_path))}[/green]", soft_wrap=True)
    console.print(f"  Backend:  {result.backend.value}")
    console.print(f"  Size:     {result.bytes_copied} bytes")
    timings = ", ".join(f"{phase.value} {secs:.1f}s" for phase, secs in result.durations.items())
    console.print(f"  Timings:  {timings}")


if __name__ == "__main__":
    app()
