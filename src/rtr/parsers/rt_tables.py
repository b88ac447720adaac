"""Parser for the iproute2 ``rt_tables`` registry."""

from rtr.models.route import RoutingTable


# Tables the kernel always has, used when no registry file exists
DEFAULT_TABLES = (
    RoutingTable(id=255, name="local"),
    RoutingTable(id=254, name="main"),
    RoutingTable(id=253, name="default"),
)


def parse_rt_tables(text: str) -> list[RoutingTable]:
    """Parse ``id name`` lines; comments, blanks and malformed lines are ignored."""
    tables = []
    for line in text.splitlines():
        line = line.split("#", 1)[0].strip()
        if not line:
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        try:
            table_id = int(parts[0])
        except ValueError:
            continue
        tables.append(RoutingTable(id=table_id, name=parts[1]))
    return tables
