"""Output parsers: command output text to structured entities.

All functions are pure and keep no state between calls.
"""

from rtr.parsers.iptables import parse_chain_listing, parse_rule_specs, parse_suffixed_number
from rtr.parsers.iproute import parse_route_line, parse_route_listing
from rtr.parsers.iprule import parse_rule_line, parse_rule_listing
from rtr.parsers.rt_tables import parse_rt_tables, DEFAULT_TABLES

__all__ = [
    "parse_chain_listing",
    "parse_rule_specs",
    "parse_suffixed_number",
    "parse_route_line",
    "parse_route_listing",
    "parse_rule_line",
    "parse_rule_listing",
    "parse_rt_tables",
    "DEFAULT_TABLES",
]
