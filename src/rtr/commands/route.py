"""Routing table commands."""

from typing import Annotated

import typer
from rich.table import Table

from rtr.commands.common import (
    ConfigOption,
    DryRunOption,
    NoColorOption,
    VerboseOption,
    check_root,
    get_context,
    get_services,
    handle_error,
)
from rtr.core import RtrError
from rtr.models.route import MAIN_TABLE, RouteInput
from rtr.services.iproute import IPRouteService


app = typer.Typer(
    name="route",
    help="Manage kernel routing tables.",
    no_args_is_help=True,
)

RouteTableOption = Annotated[
    str,
    typer.Option("--table", "-t", help="Routing table name or id ('all' for every table)"),
]


@app.command("list")
def route_list(
    table: RouteTableOption = MAIN_TABLE,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """List routes of a table.

    [bold]Examples:[/bold]

        rtr route list
        rtr route list -t 100
        rtr route list -t all
    """
    ctx = get_context(verbose=verbose, no_color=no_color, config=config)

    try:
        routes_svc = get_services(ctx, IPRouteService)
        if table == "all":
            routes = routes_svc.list_all_routes()
        else:
            routes = routes_svc.list_routes(table)

        grid = Table(title=f"Routes ({table})")
        grid.add_column("Destination")
        grid.add_column("Gateway")
        grid.add_column("Dev")
        grid.add_column("Metric", justify="right")
        grid.add_column("Proto")
        grid.add_column("Scope")
        grid.add_column("Src")
        grid.add_column("Table")
        for route in routes:
            destination = f"{route.type} {route.destination}" if route.type else route.destination
            grid.add_row(
                destination,
                route.gateway or "-",
                route.interface or "-",
                str(route.metric) if route.metric else "-",
                route.protocol or "-",
                route.scope or "-",
                route.source or "-",
                route.table,
            )
        ctx.console.print(grid)

    except RtrError as e:
        handle_error(e)


@app.command("add")
def route_add(
    destination: Annotated[str, typer.Argument(help="CIDR or 'default'")],
    gateway: Annotated[str, typer.Option("--via", help="Next-hop gateway")] = "",
    interface: Annotated[str, typer.Option("--dev", help="Output interface")] = "",
    metric: Annotated[int, typer.Option("--metric", min=0)] = 0,
    route_type: Annotated[
        str,
        typer.Option("--type", help="Route type (unreachable, blackhole, prohibit, throw...)"),
    ] = "",
    table: RouteTableOption = MAIN_TABLE,
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Add a route.

    [bold]Examples:[/bold]

        rtr route add default --via 192.168.1.1
        rtr route add 10.8.0.0/16 --dev wg0 -t 100
        rtr route add 10.66.0.0/16 --type blackhole
    """
    ctx = get_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    check_root(ctx)

    try:
        routes_svc = get_services(ctx, IPRouteService)
        routes_svc.add_route(RouteInput(
            destination=destination,
            gateway=gateway,
            interface=interface,
            metric=metric,
            table=table,
            type=route_type,
        ))
        ctx.console.success(f"Route {destination} added to table {table}")

    except RtrError as e:
        handle_error(e)


@app.command("delete")
def route_delete(
    destination: Annotated[str, typer.Argument(help="CIDR or 'default'")],
    gateway: Annotated[str, typer.Option("--via")] = "",
    interface: Annotated[str, typer.Option("--dev")] = "",
    table: RouteTableOption = MAIN_TABLE,
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Delete a route."""
    ctx = get_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    check_root(ctx)

    try:
        routes_svc = get_services(ctx, IPRouteService)
        routes_svc.delete_route(destination, gateway, interface, table)
        ctx.console.success(f"Route {destination} deleted from table {table}")

    except RtrError as e:
        handle_error(e)


@app.command("flush")
def route_flush(
    table: Annotated[str, typer.Argument(help="Routing table to empty")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")] = False,
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Remove every route of a table."""
    ctx = get_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    check_root(ctx)

    if not dry_run and not ctx.console.confirm(f"Remove every route of table {table}?", skip_confirm=yes):
        ctx.console.info("Aborted")
        raise typer.Exit(0)

    try:
        routes_svc = get_services(ctx, IPRouteService)
        routes_svc.flush_table(table)
        ctx.console.success(f"Table {table} flushed")

    except RtrError as e:
        handle_error(e)


@app.command("tables")
def route_tables(
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """List the routing tables known to iproute2."""
    ctx = get_context(verbose=verbose, no_color=no_color, config=config)

    try:
        routes_svc = get_services(ctx, IPRouteService)
        ctx.console.table(
            "Routing tables",
            ["ID", "Name"],
            [[str(t.id), t.name] for t in routes_svc.get_routing_tables()],
        )

    except RtrError as e:
        handle_error(e)
