"""Firewall commands: chains, rules and policies."""

from typing import Annotated, Optional

import typer
from rich.markup import escape
from rich.table import Table

from rtr.commands.common import (
    ConfigOption,
    DryRunOption,
    NoColorOption,
    TableOption,
    VerboseOption,
    check_root,
    get_context,
    get_services,
    handle_error,
)
from rtr.core import RtrError
from rtr.models.firewall import ChainInfo, FirewallRuleInput
from rtr.services.iptables import IptablesService


app = typer.Typer(
    name="firewall",
    help="Manage iptables chains, rules and policies.",
    no_args_is_help=True,
)


def _render_chain(ctx, table: str, info: ChainInfo) -> None:
    if info.is_builtin:
        caption = f"policy {info.policy}, {info.packets} packets, {info.bytes} bytes"
    else:
        caption = f"{info.references} references"

    grid = Table(title=f"{table}/{info.name}", caption=caption)
    grid.add_column("#", style="dim", justify="right")
    grid.add_column("Pkts", justify="right")
    grid.add_column("Bytes", justify="right")
    grid.add_column("Target")
    grid.add_column("Prot")
    grid.add_column("In")
    grid.add_column("Out")
    grid.add_column("Source")
    grid.add_column("Destination")
    grid.add_column("Match")

    for rule in info.rules:
        target = rule.target
        if target == "ACCEPT":
            target = "[green]ACCEPT[/green]"
        elif target in ("DROP", "REJECT"):
            target = f"[red]{target}[/red]"
        grid.add_row(
            str(rule.num),
            str(rule.packets),
            str(rule.bytes),
            target,
            rule.protocol,
            rule.in_interface,
            rule.out_interface,
            rule.source,
            rule.destination,
            escape(rule.extra),
        )

    ctx.console.print(grid)


@app.command("list")
def firewall_list(
    table: TableOption = "filter",
    chain: Annotated[
        Optional[str],
        typer.Argument(help="Chain to show (all chains if omitted)"),
    ] = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """List chains and their rules.

    [bold]Examples:[/bold]

        rtr firewall list
        rtr firewall list INPUT
        rtr firewall list -t nat
    """
    ctx = get_context(verbose=verbose, no_color=no_color, config=config)
    check_root(ctx)

    try:
        iptables = get_services(ctx, IptablesService)
        if chain:
            chains = [iptables.get_chain(table, chain)]
        else:
            chains = iptables.list_chains(table)

        for info in chains:
            _render_chain(ctx, table, info)

    except RtrError as e:
        handle_error(e)


@app.command("add")
def firewall_add(
    chain: Annotated[str, typer.Argument(help="Chain to add the rule to")],
    target: Annotated[str, typer.Option("--jump", "-j", help="Target (ACCEPT, DROP, chain name...)")],
    table: TableOption = "filter",
    position: Annotated[
        Optional[int],
        typer.Option("--position", "-n", help="Insert at this position (append if omitted)"),
    ] = None,
    protocol: Annotated[str, typer.Option("--protocol", "-p")] = "",
    source: Annotated[str, typer.Option("--source", "-s")] = "",
    destination: Annotated[str, typer.Option("--destination", "-d")] = "",
    in_interface: Annotated[str, typer.Option("--in-interface", "-i")] = "",
    out_interface: Annotated[str, typer.Option("--out-interface", "-o")] = "",
    dport: Annotated[str, typer.Option("--dport")] = "",
    sport: Annotated[str, typer.Option("--sport")] = "",
    state: Annotated[str, typer.Option("--state", help="e.g. ESTABLISHED,RELATED")] = "",
    comment: Annotated[str, typer.Option("--comment")] = "",
    to_destination: Annotated[str, typer.Option("--to-destination", help="DNAT target")] = "",
    to_source: Annotated[str, typer.Option("--to-source", help="SNAT source")] = "",
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Add a rule to a chain.

    [bold]Examples:[/bold]

        rtr firewall add INPUT -j ACCEPT -p tcp --dport 22
        rtr firewall add FORWARD -j DROP -s 10.9.0.0/16 --position 1
        rtr firewall add PREROUTING -t nat -j DNAT -p tcp --dport 80 --to-destination 10.0.0.5:8080
    """
    ctx = get_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    check_root(ctx)

    try:
        iptables = get_services(ctx, IptablesService)
        iptables.add_rule(FirewallRuleInput(
            chain=chain,
            target=target,
            table=table,
            position=position,
            protocol=protocol,
            source=source,
            destination=destination,
            in_interface=in_interface,
            out_interface=out_interface,
            dport=dport,
            sport=sport,
            state=state,
            comment=comment,
            to_destination=to_destination,
            to_source=to_source,
        ))
        ctx.console.success(f"Rule added to {table}/{chain}")

    except RtrError as e:
        handle_error(e)


@app.command("delete")
def firewall_delete(
    chain: Annotated[str, typer.Argument(help="Chain name")],
    num: Annotated[int, typer.Argument(help="Rule number from 'rtr firewall list'")],
    table: TableOption = "filter",
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Delete a rule by its position."""
    ctx = get_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    check_root(ctx)

    try:
        iptables = get_services(ctx, IptablesService)
        iptables.delete_rule(table, chain, num)
        ctx.console.success(f"Rule {num} deleted from {table}/{chain}")

    except RtrError as e:
        handle_error(e)


@app.command("move")
def firewall_move(
    chain: Annotated[str, typer.Argument(help="Chain name")],
    from_pos: Annotated[int, typer.Argument(help="Current position")],
    to_pos: Annotated[int, typer.Argument(help="New position")],
    table: TableOption = "filter",
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Move a rule to another position in its chain.

    [bold]Examples:[/bold]

        rtr firewall move INPUT 3 1
    """
    ctx = get_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    check_root(ctx)

    try:
        iptables = get_services(ctx, IptablesService)
        iptables.move_rule(table, chain, from_pos, to_pos)
        ctx.console.success(f"Rule {from_pos} moved to {to_pos} in {table}/{chain}")

    except RtrError as e:
        handle_error(e)


@app.command("chain-create")
def firewall_chain_create(
    chain: Annotated[str, typer.Argument(help="New chain name")],
    table: TableOption = "filter",
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Create a user-defined chain."""
    ctx = get_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    check_root(ctx)

    try:
        iptables = get_services(ctx, IptablesService)
        iptables.create_chain(table, chain)
        ctx.console.success(f"Chain {table}/{chain} created")

    except RtrError as e:
        handle_error(e)


@app.command("chain-delete")
def firewall_chain_delete(
    chain: Annotated[str, typer.Argument(help="Chain name")],
    table: TableOption = "filter",
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Delete an empty, unreferenced user-defined chain."""
    ctx = get_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    check_root(ctx)

    try:
        iptables = get_services(ctx, IptablesService)
        iptables.delete_chain(table, chain)
        ctx.console.success(f"Chain {table}/{chain} deleted")

    except RtrError as e:
        handle_error(e)


@app.command("flush")
def firewall_flush(
    chain: Annotated[
        Optional[str],
        typer.Argument(help="Chain to flush (every chain of the table if omitted)"),
    ] = None,
    table: TableOption = "filter",
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")] = False,
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Remove all rules from a chain or a whole table."""
    ctx = get_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    check_root(ctx)

    target = f"{table}/{chain}" if chain else f"every chain of {table}"
    if not dry_run and not ctx.console.confirm(f"Remove all rules from {target}?", skip_confirm=yes):
        ctx.console.info("Aborted")
        raise typer.Exit(0)

    try:
        iptables = get_services(ctx, IptablesService)
        iptables.flush(table, chain)
        ctx.console.success(f"Flushed {target}")

    except RtrError as e:
        handle_error(e)


@app.command("policy")
def firewall_policy(
    chain: Annotated[str, typer.Argument(help="Built-in chain")],
    policy: Annotated[str, typer.Argument(help="ACCEPT or DROP")],
    table: TableOption = "filter",
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Set the default policy of a built-in chain."""
    ctx = get_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    check_root(ctx)

    try:
        iptables = get_services(ctx, IptablesService)
        iptables.set_policy(table, chain, policy)
        ctx.console.success(f"{table}/{chain} policy set to {policy.upper()}")

    except RtrError as e:
        handle_error(e)
