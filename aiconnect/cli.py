"""CLI entry point for aic."""

import asyncio
from typing import Optional

import typer

from aiconnect import __version__
from aiconnect.app import main as run_session
from aiconnect.preferences import PreferenceStore
from aiconnect.tools import AVAILABLE_TOOLS, is_installed, tool_names

app = typer.Typer(
    name="aic",
    help="Run several interactive AI coding tools side by side and forward answers between them.",
    invoke_without_command=True,
    add_completion=False,
)
config_app = typer.Typer(help="Show or change saved preferences.", no_args_is_help=True)
app.add_typer(config_app, name="config")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"aic {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    tool: Optional[str] = typer.Option(
        None, "--tool", "-t", help="Tool to start with (overrides the saved default)."
    ),
    cwd: Optional[str] = typer.Option(
        None, "--cwd", help="Working directory for the tools."
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Start the interactive session (default action)."""
    if ctx.invoked_subcommand is not None:
        return
    if tool is not None and tool.lower() not in AVAILABLE_TOOLS:
        typer.echo(f"Error: Unknown tool '{tool}'. Valid options: {', '.join(tool_names())}", err=True)
        raise typer.Exit(1)
    asyncio.run(run_session(tool=tool, working_dir=cwd))


@app.command()
def tools() -> None:
    """List the supported tools and whether they are installed."""
    default = PreferenceStore().get_default_tool(tool_names())
    for spec in AVAILABLE_TOOLS.values():
        installed = "installed" if is_installed(spec) else "not found"
        marker = "*" if spec.name == default else " "
        typer.echo(f"{marker} {spec.name:<8} {spec.display_name:<14} ({spec.command}: {installed})")


@config_app.command("default")
def config_default(
    tool: Optional[str] = typer.Argument(None, help="Tool to use by default."),
) -> None:
    """Show or set the default tool."""
    store = PreferenceStore()
    names = tool_names()
    if tool is None:
        typer.echo(f"Default tool: {store.get_default_tool(names)}")
        return
    ok, message = store.set_default_tool(tool, names)
    if not ok:
        typer.echo(f"Error: {message}", err=True)
        raise typer.Exit(1)
    typer.echo(message)
