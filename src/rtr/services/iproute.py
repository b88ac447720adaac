"""Routing table service.

Wraps ``ip route`` for listing and mutating kernel routing tables and
reads the iproute2 table registry.
"""

from pathlib import Path
from typing import Optional

from rtr.builders import IP, route_command
from rtr.core.audit import AuditEventType, AuditLogger, get_audit_logger
from rtr.core.context import ExecutionContext
from rtr.core.exceptions import ValidationError
from rtr.core.executor import CommandExecutor
from rtr.core.locks import KeyedLocks, get_default_locks
from rtr.models.route import MAIN_TABLE, Route, RouteInput, RoutingTable
from rtr.parsers.iproute import parse_route_listing
from rtr.parsers.rt_tables import DEFAULT_TABLES, parse_rt_tables


LOCK_DOMAIN = "routes"

RT_TABLES_PATHS = (
    Path("/etc/iproute2/rt_tables"),
    Path("/usr/share/iproute2/rt_tables"),
)


class IPRouteService:
    """Stateless coordinator for kernel routing tables."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        *,
        audit: Optional[AuditLogger] = None,
        locks: Optional[KeyedLocks] = None,
        rt_tables_paths: tuple[Path, ...] = RT_TABLES_PATHS,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.audit = audit or get_audit_logger()
        self.locks = locks or get_default_locks()
        self.rt_tables_paths = rt_tables_paths

    def lock_key(self, table: Optional[str]) -> tuple[str, str]:
        return (LOCK_DOMAIN, table or MAIN_TABLE)

    def list_routes(self, table: str = MAIN_TABLE) -> list[Route]:
        """List the routes of one table."""
        table = table or MAIN_TABLE
        result = self.executor.run(
            [IP, "route", "show", "table", table],
            mutating=False,
        )
        return parse_route_listing(result.stdout, default_table=table)

    def list_all_routes(self) -> list[Route]:
        """List the routes of every table.

        Lines without a ``table`` attribute belong to main.
        """
        result = self.executor.run(
            [IP, "route", "show", "table", "all"],
            mutating=False,
        )
        return parse_route_listing(result.stdout, default_table=MAIN_TABLE)

    def add_route(self, route: RouteInput) -> None:
        """Add a route.

        Raises:
            ValidationError: If the route lacks destination or next hop
            ExecutionError: If ip refuses it, including when it already exists
        """
        route.validate()
        command = route_command("add", route)
        with self.locks.hold(self.lock_key(route.table)):
            self.executor.run(
                command,
                description=f"Adding route {route.destination}",
                combine_output=True,
            )
        self.audit.log_success(
            AuditEventType.ROUTE_ADD,
            "route",
            route.destination,
            parameters={"command": command[3:]},
        )

    def delete_route(
        self,
        destination: str,
        gateway: str = "",
        interface: str = "",
        table: str = "",
    ) -> None:
        """Delete a route, narrowed by gateway/interface when given."""
        if not destination:
            raise ValidationError("Destination is required")
        route = RouteInput(
            destination=destination,
            gateway=gateway,
            interface=interface,
            table=table,
        )
        command = route_command("del", route)
        with self.locks.hold(self.lock_key(table)):
            self.executor.run(
                command,
                description=f"Deleting route {destination}",
                combine_output=True,
            )
        self.audit.log_success(
            AuditEventType.ROUTE_DELETE,
            "route",
            destination,
            parameters={"command": command[3:]},
        )

    def flush_table(self, table: str = MAIN_TABLE) -> None:
        """Remove every route of a table."""
        table = table or MAIN_TABLE
        with self.locks.hold(self.lock_key(table)):
            self.executor.run(
                [IP, "route", "flush", "table", table],
                description=f"Flushing routing table {table}",
                combine_output=True,
            )
        self.audit.log_success(AuditEventType.ROUTE_FLUSH, "table", table)

    def get_routing_tables(self) -> list[RoutingTable]:
        """Read the table registry, first existing file wins.

        Falls back to local/main/default when no registry file exists.
        """
        for path in self.rt_tables_paths:
            try:
                text = path.read_text()
            except FileNotFoundError:
                continue
            self.ctx.console.debug(f"Reading routing tables from {path}")
            return parse_rt_tables(text)
        return list(DEFAULT_TABLES)
