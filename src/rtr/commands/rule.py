"""Policy routing rule commands."""

from typing import Annotated

import typer

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
from rtr.models.rule import IPRuleInput
from rtr.services.iprule import IPRuleService


app = typer.Typer(
    name="rule",
    help="Manage policy routing rules.",
    no_args_is_help=True,
)


@app.command("list")
def rule_list(
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """List policy routing rules in priority order."""
    ctx = get_context(verbose=verbose, no_color=no_color, config=config)

    try:
        rules_svc = get_services(ctx, IPRuleService)
        rows = []
        for rule in rules_svc.list_rules():
            rows.append([
                str(rule.priority),
                ("not " if rule.not_ else "") + rule.from_,
                rule.to or "-",
                rule.fwmark or "-",
                rule.iif or "-",
                rule.oif or "-",
                rule.action or "-",
                rule.table or "-",
            ])
        ctx.console.table(
            "Policy rules",
            ["Priority", "From", "To", "Fwmark", "Iif", "Oif", "Action", "Table"],
            rows,
        )

    except RtrError as e:
        handle_error(e)


@app.command("add")
def rule_add(
    table: Annotated[str, typer.Option("--table", "-t", help="Table to look up")] = "",
    priority: Annotated[int, typer.Option("--priority", min=0, help="0 lets the kernel choose")] = 0,
    from_: Annotated[str, typer.Option("--from", help="Source prefix")] = "",
    to: Annotated[str, typer.Option("--to", help="Destination prefix")] = "",
    fwmark: Annotated[str, typer.Option("--fwmark")] = "",
    iif: Annotated[str, typer.Option("--iif")] = "",
    oif: Annotated[str, typer.Option("--oif")] = "",
    action: Annotated[
        str,
        typer.Option("--action", help="unreachable, blackhole or prohibit instead of a lookup"),
    ] = "",
    not_: Annotated[bool, typer.Option("--not", help="Negate the selector")] = False,
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Add a policy routing rule.

    [bold]Examples:[/bold]

        rtr rule add --from 10.0.0.0/24 -t 100 --priority 1000
        rtr rule add --fwmark 0x1 -t vpn
        rtr rule add --from 10.66.0.0/16 --action prohibit
    """
    ctx = get_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    check_root(ctx)

    try:
        rules_svc = get_services(ctx, IPRuleService)
        rules_svc.add_rule(IPRuleInput(
            priority=priority,
            from_=from_,
            to=to,
            fwmark=fwmark,
            iif=iif,
            oif=oif,
            table=table,
            action=action,
            not_=not_,
        ))
        ctx.console.success("Policy rule added")

    except RtrError as e:
        handle_error(e)


@app.command("delete")
def rule_delete(
    priority: Annotated[int, typer.Argument(help="Priority from 'rtr rule list'")],
    dry_run: DryRunOption = False,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Delete the policy rule at a priority."""
    ctx = get_context(dry_run=dry_run, verbose=verbose, no_color=no_color, config=config)
    check_root(ctx)

    try:
        rules_svc = get_services(ctx, IPRuleService)
        rules_svc.delete_rule(priority)
        ctx.console.success(f"Policy rule {priority} deleted")

    except RtrError as e:
        handle_error(e)
