"""Shared pieces of the command-line shell.

Option aliases, error rendering, root check and service wiring used by
every command group.
"""

import os
from pathlib import Path
from typing import Annotated, NoReturn, Optional

import typer
from rich.markup import escape

from rtr.core import (
    CommandExecutor,
    ExecutionContext,
    RtrError,
    console,
    create_context,
    get_default_locks,
)
from rtr.core.audit import AuditLogger, configure_audit_logger
from rtr.core.config import DEFAULT_CONFIG_PATH


DryRunOption = Annotated[
    bool,
    typer.Option("--dry-run", help="Preview changes without executing"),
]

VerboseOption = Annotated[
    int,
    typer.Option("--verbose", "-v", count=True, help="Increase verbosity (-v, -vv)"),
]

NoColorOption = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output"),
]

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help=f"Path to configuration file. Default: {DEFAULT_CONFIG_PATH}",
        dir_okay=False,
    ),
]

TableOption = Annotated[
    str,
    typer.Option("--table", "-t", help="Iptables table (filter, nat, mangle, raw)"),
]


def get_context(
    dry_run: bool = False,
    verbose: int = 0,
    no_color: bool = False,
    config: Optional[Path] = None,
) -> ExecutionContext:
    """Create execution context from CLI options."""
    return create_context(
        dry_run=dry_run,
        verbose=verbose,
        no_color=no_color,
        config=config,
    )


def get_audit(ctx: ExecutionContext) -> AuditLogger:
    """Point the process-wide audit logger at the configured file."""
    audit_config = ctx.config.audit
    return configure_audit_logger(
        log_path=audit_config.log_path,
        enabled=audit_config.enabled and not ctx.dry_run,
    )


def get_services(ctx: ExecutionContext, service_cls, *args, **kwargs):
    """Build a service with the shared executor, audit sink and locks."""
    executor = CommandExecutor(ctx)
    return service_cls(
        ctx,
        executor,
        *args,
        audit=get_audit(ctx),
        locks=get_default_locks(),
        **kwargs,
    )


def check_root(ctx: ExecutionContext) -> None:
    """Kernel state changes need root."""
    if os.geteuid() != 0 and not ctx.dry_run:
        ctx.console.error("This operation requires root privileges")
        ctx.console.hint("Run with sudo, or preview with --dry-run")
        raise typer.Exit(6)


def handle_error(error: RtrError) -> NoReturn:
    """Print a formatted error and exit with its code."""
    console.error(escape(error.message))

    if error.details:
        for detail in error.details:
            console.print(f"  [dim]{escape(detail)}[/dim]")

    if error.hint:
        console.hint(error.hint)

    raise typer.Exit(error.exit_code)
