"""Command builders: structured mutation intents to canonical argv.

Builders are deterministic and do no cross-field validation; inputs are
expected to have passed their own ``validate()`` first. A selector equal
to its domain's match-everything value is left out, so the same intent
always produces the same command whether the caller spelled the default
out or not.
"""

from typing import Optional, Union

from rtr.models.firewall import ANY_ADDRESS, FirewallRuleInput
from rtr.models.route import MAIN_TABLE, Route, RouteInput
from rtr.models.rule import IPRule, IPRuleInput, MATCH_ALL, TERMINAL_ACTIONS


IPTABLES = "iptables"
IPTABLES_SAVE = "iptables-save"
IPTABLES_RESTORE = "iptables-restore"
IP = "ip"

_ANY_INTERFACE = frozenset({"*", "any"})


def _address(value: str) -> str:
    return "" if value in ("", ANY_ADDRESS) else value


def _interface(value: str) -> str:
    return "" if value in _ANY_INTERFACE else value


def _route_table(value: Optional[str]) -> str:
    return "" if not value or value == MAIN_TABLE else value


def _selector(value: str) -> str:
    return "" if value in ("", MATCH_ALL) else value


def firewall_rule_args(rule: FirewallRuleInput) -> list[str]:
    """Build the match/target part of an iptables rule."""
    args: list[str] = []

    protocol = "" if rule.protocol == MATCH_ALL else rule.protocol
    if protocol:
        args.extend(["-p", protocol])
    if _address(rule.source):
        args.extend(["-s", rule.source])
    if _address(rule.destination):
        args.extend(["-d", rule.destination])
    if _interface(rule.in_interface):
        args.extend(["-i", rule.in_interface])
    if _interface(rule.out_interface):
        args.extend(["-o", rule.out_interface])
    if rule.dport:
        args.extend(["--dport", rule.dport])
    if rule.sport:
        args.extend(["--sport", rule.sport])
    if rule.state:
        args.extend(["-m", "state", "--state", rule.state])
    if rule.comment:
        args.extend(["-m", "comment", "--comment", rule.comment])

    args.extend(["-j", rule.target])

    if rule.to_destination:
        args.extend(["--to-destination", rule.to_destination])
    if rule.to_source:
        args.extend(["--to-source", rule.to_source])

    return args


def iptables_command(table: str, *args: str, wait: bool = True) -> list[str]:
    """``iptables [-w] -t TABLE ARGS...``

    ``-w`` makes iptables wait for the xtables lock instead of failing
    when another process holds it.
    """
    command = [IPTABLES]
    if wait:
        command.append("-w")
    command.extend(["-t", table])
    command.extend(args)
    return command


def insert_command(
    table: str,
    chain: str,
    spec: list[str],
    position: Optional[int] = None,
    *,
    wait: bool = True,
) -> list[str]:
    """Insert ``spec`` at ``position`` (1-based), or append when None."""
    if position is None:
        return iptables_command(table, "-A", chain, *spec, wait=wait)
    return iptables_command(table, "-I", chain, str(position), *spec, wait=wait)


def route_command(verb: str, route: RouteInput) -> list[str]:
    """``ip route VERB [TYPE] DEST [via G] [dev I] [metric M] [table T]``"""
    command = [IP, "route", verb]
    if route.type:
        command.append(route.type)
    command.append(route.destination)
    if route.gateway:
        command.extend(["via", route.gateway])
    if _interface(route.interface):
        command.extend(["dev", route.interface])
    if route.metric > 0:
        command.extend(["metric", str(route.metric)])
    table = _route_table(route.table)
    if table:
        command.extend(["table", table])
    return command


def _rule_selectors(rule: Union[IPRule, IPRuleInput]) -> list[str]:
    args: list[str] = []
    if rule.priority > 0:
        args.extend(["priority", str(rule.priority)])
    if rule.not_:
        args.append("not")
    if _selector(rule.from_):
        args.extend(["from", rule.from_])
    if _selector(rule.to):
        args.extend(["to", rule.to])
    if rule.fwmark:
        args.extend(["fwmark", rule.fwmark])
    if _interface(rule.iif):
        args.extend(["iif", rule.iif])
    if _interface(rule.oif):
        args.extend(["oif", rule.oif])
    if rule.action in TERMINAL_ACTIONS:
        args.append(rule.action)
    elif rule.table:
        args.extend(["lookup", rule.table])
    return args


def ip_rule_command(verb: str, rule: Union[IPRule, IPRuleInput]) -> list[str]:
    """``ip rule VERB [priority N] [not] [from] [to] [fwmark] [iif] [oif] (lookup T | ACTION)``"""
    return [IP, "rule", verb] + _rule_selectors(rule)


def route_line(route: Route) -> str:
    """Canonical persisted form of a route: ``[type ]dest [via g] [dev i] [metric m]``."""
    parts = []
    if route.type and route.type != "unicast":
        parts.append(route.type)
    parts.append(route.destination)
    if route.gateway:
        parts.extend(["via", route.gateway])
    if route.interface:
        parts.extend(["dev", route.interface])
    if route.metric > 0:
        parts.extend(["metric", str(route.metric)])
    return " ".join(parts)


def ip_rule_line(rule: IPRule) -> str:
    """Canonical persisted form of a policy rule, replayable after ``ip rule add``."""
    return " ".join(_rule_selectors(rule))
