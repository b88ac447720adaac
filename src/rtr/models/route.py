"""Routing-table entities and mutation intents."""

from dataclasses import dataclass, field

from rtr.core.exceptions import ValidationError


MAIN_TABLE = "main"

# Keywords that may precede the destination in `ip route show` output
ROUTE_TYPES = frozenset({
    "unicast", "local", "broadcast", "multicast", "anycast",
    "unreachable", "blackhole", "prohibit", "throw", "nat",
})

# Route types with no next hop; they are valid without gateway or interface
NEXTHOPLESS_TYPES = frozenset({"unreachable", "blackhole", "prohibit", "throw"})


@dataclass
class Route:
    """A route parsed from ``ip route show``."""
    destination: str
    type: str = ""
    gateway: str = ""
    interface: str = ""
    metric: int = 0
    protocol: str = ""
    scope: str = ""
    source: str = ""
    table: str = ""
    # Raw ``nexthop ...`` lines of a multipath route
    nexthops: list[str] = field(default_factory=list)

    @property
    def is_kernel_generated(self) -> bool:
        """Routes the kernel installs itself and recreates on its own."""
        if self.protocol == "kernel" and self.scope in ("link", "host"):
            return True
        return self.type in ("local", "broadcast")


@dataclass
class RoutingTable:
    """An entry of the rt_tables registry."""
    id: int
    name: str


@dataclass
class RouteInput:
    """Caller-constructed intent to add or delete a route."""
    destination: str
    gateway: str = ""
    interface: str = ""
    metric: int = 0
    table: str = ""
    type: str = ""

    def validate(self) -> None:
        """Check the fields the builder cannot do without.

        Raises:
            ValidationError: If destination or next hop is missing
        """
        if not self.destination:
            raise ValidationError(
                "Destination is required",
                hint="Use a CIDR like 10.0.0.0/8 or 'default'",
            )
        if self.type and self.type not in ROUTE_TYPES:
            raise ValidationError(f"Unknown route type: {self.type}")
        if not (self.gateway or self.interface) and self.type not in NEXTHOPLESS_TYPES:
            raise ValidationError(
                f"Route to {self.destination} needs a gateway or an interface",
                hint="Pass a gateway (via) or an interface (dev)",
            )
        if self.metric < 0:
            raise ValidationError(f"Invalid metric: {self.metric}")
