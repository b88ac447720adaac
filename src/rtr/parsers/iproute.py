"""Parser for ``ip route show [table T]`` output."""

from typing import Optional

from rtr.models.route import Route, ROUTE_TYPES
from rtr.parsers.tokens import scan


_ROUTE_KEYWORDS = ("via", "dev", "proto", "scope", "src", "metric", "table")


def parse_route_line(line: str, default_table: str = "main") -> Optional[Route]:
    """Parse one route line, or return None if it names no destination.

    Also reads the persisted form, which is a subset of the listing form.
    """
    tokens = line.split()
    if not tokens:
        return None
    route_type = ""
    if tokens[0] in ROUTE_TYPES:
        route_type = tokens.pop(0)
        if not tokens:
            return None

    route = Route(destination=tokens[0], type=route_type, table=default_table)
    for keyword, value in scan(tokens[1:], _ROUTE_KEYWORDS):
        if keyword == "via":
            route.gateway = value
        elif keyword == "dev":
            route.interface = value
        elif keyword == "proto":
            route.protocol = value
        elif keyword == "scope":
            route.scope = value
        elif keyword == "src":
            route.source = value
        elif keyword == "metric":
            try:
                route.metric = int(value)
            except ValueError:
                continue
        elif keyword == "table":
            route.table = value
    return route


def parse_route_listing(text: str, default_table: str = "main") -> list[Route]:
    """Parse route lines, one entry per non-blank line.

    The first token is the destination unless it is a route type keyword,
    in which case the destination follows it. Remaining attributes are
    read in any order; unknown ones are ignored. ``table`` in the line
    overrides ``default_table``.

    Multipath continuation lines (``nexthop ...``) are kept verbatim on
    the preceding route's ``nexthops``; their gateways are not parsed.
    """
    routes = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if line.startswith("nexthop"):
            if routes:
                routes[-1].nexthops.append(line)
            continue
        route = parse_route_line(line, default_table)
        if route is not None:
            routes.append(route)
    return routes
