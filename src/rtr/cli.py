"""Main CLI entry point using Typer.

This module defines the root CLI application. Command groups are
registered from the rtr.commands submodules.
"""

from typing import Annotated

import typer
from rich.console import Console

from rtr import __version__
from rtr.commands.common import (
    ConfigOption,
    NoColorOption,
    VerboseOption,
    get_context,
    handle_error,
)
from rtr.core.config import get_example_config, init_config
from rtr.core.exceptions import RtrError


app = typer.Typer(
    name="rtr",
    help="Router configuration core - firewall, routes and policy rules.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

config_app = typer.Typer(
    name="config",
    help="Configuration management.",
    no_args_is_help=True,
)

# Import sub-commands
from rtr.commands.firewall import app as firewall_app
from rtr.commands.route import app as route_app
from rtr.commands.rule import app as rule_app
from rtr.commands import store

# Register command groups
app.add_typer(firewall_app, name="firewall")
app.add_typer(route_app, name="route")
app.add_typer(rule_app, name="rule")
app.add_typer(config_app, name="config")

app.command("save")(store.save)
app.command("restore")(store.restore)
app.command("export")(store.export)
app.command("import")(store.import_)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console = Console()
        console.print(f"rtr version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Router configuration core.

    Manages iptables chains and rules, kernel routing tables and policy
    routing rules, and keeps a snapshot that can be restored at boot.

    [bold]Examples:[/bold]
        rtr firewall list
        rtr firewall move INPUT 3 1
        rtr route add 10.8.0.0/16 --via 10.0.0.2 -t 100
        rtr rule add --from 10.0.0.0/24 -t 100 --priority 1000
        rtr save
        rtr restore
    """
    pass


# ============================================================================
# Config commands
# ============================================================================

@config_app.command("show")
def config_show(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Show the effective configuration."""
    ctx = get_context(verbose=verbose, no_color=no_color, config=config)

    try:
        app_config = ctx.config

        ctx.console.print()
        ctx.console.print(f"[bold]Configuration file:[/bold] {ctx.config_path}")
        ctx.console.print(f"[bold]File exists:[/bold] {ctx.config_path.exists()}")
        ctx.console.print()

        ctx.console.yaml(app_config.config.to_yaml(), title="Configuration")

        ctx.console.summary("Effective values", {
            "Store directory": app_config.store_dir,
            "Command timeout": app_config.command_timeout or "none",
            "Audit log": app_config.audit.log_path if app_config.audit.enabled else "disabled",
        })

    except RtrError as e:
        handle_error(e)


@config_app.command("init")
def config_init(
    config: ConfigOption = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite an existing file"),
    ] = False,
    no_color: NoColorOption = False,
) -> None:
    """Write a configuration file with defaults and comments."""
    ctx = get_context(no_color=no_color, config=config)

    try:
        init_config(ctx.config_path, force=force)
        ctx.console.success(f"Configuration file created: {ctx.config_path}")
        ctx.console.hint("RTR_STORE_DIR overrides the store directory")

    except RtrError as e:
        handle_error(e)


@config_app.command("example")
def config_example(no_color: NoColorOption = False) -> None:
    """Print an example configuration file."""
    ctx = get_context(no_color=no_color)
    ctx.console.print(get_example_config(), markup=False)


if __name__ == "__main__":
    app()
