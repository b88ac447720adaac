"""Structured domain model for firewall, routes and policy rules."""

from rtr.models.firewall import (
    ChainInfo,
    FirewallRule,
    FirewallRuleInput,
    Policy,
    Table,
    NO_POLICY,
)
from rtr.models.route import Route, RouteInput, RoutingTable
from rtr.models.rule import IPRule, IPRuleInput, RESERVED_PRIORITIES

__all__ = [
    "ChainInfo",
    "FirewallRule",
    "FirewallRuleInput",
    "Policy",
    "Table",
    "NO_POLICY",
    "Route",
    "RouteInput",
    "RoutingTable",
    "IPRule",
    "IPRuleInput",
    "RESERVED_PRIORITIES",
]
