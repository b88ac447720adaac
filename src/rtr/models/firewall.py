"""Packet-filter entities and mutation intents."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from rtr.core.exceptions import ValidationError


# Policy shown for user-defined chains, which have none
NO_POLICY = "-"

# Address that matches every IPv4 packet
ANY_ADDRESS = "0.0.0.0/0"


class Table(str, Enum):
    """Iptables table."""
    FILTER = "filter"
    NAT = "nat"
    MANGLE = "mangle"
    RAW = "raw"


class Policy(str, Enum):
    """Default policy of a built-in chain."""
    ACCEPT = "ACCEPT"
    DROP = "DROP"


BUILTIN_CHAINS: dict[str, frozenset[str]] = {
    "filter": frozenset({"INPUT", "FORWARD", "OUTPUT"}),
    "nat": frozenset({"PREROUTING", "INPUT", "OUTPUT", "POSTROUTING"}),
    "mangle": frozenset({"PREROUTING", "INPUT", "FORWARD", "OUTPUT", "POSTROUTING"}),
    "raw": frozenset({"PREROUTING", "OUTPUT"}),
}


def validate_table(table: Optional[str]) -> str:
    """Normalize a table name, defaulting to filter.

    Raises:
        ValidationError: If the table is not one iptables knows
    """
    if not table:
        return Table.FILTER.value
    try:
        return Table(table).value
    except ValueError:
        valid = ", ".join(t.value for t in Table)
        raise ValidationError(
            f"Unknown firewall table: {table}",
            hint=f"Valid tables: {valid}",
        )


def is_builtin_chain(table: str, chain: str) -> bool:
    return chain in BUILTIN_CHAINS.get(table, frozenset())


@dataclass
class FirewallRule:
    """A rule parsed from ``iptables -L -n -v --line-numbers``.

    ``num`` is only meaningful against the listing that produced it.
    """
    num: int
    target: str
    protocol: str
    source: str
    destination: str
    packets: int = 0
    bytes: int = 0
    opt: str = "--"
    in_interface: str = "*"
    out_interface: str = "*"
    extra: str = ""

    def __str__(self) -> str:
        parts = [f"{self.num}:", self.target or "(no target)", self.protocol]
        if self.source != ANY_ADDRESS:
            parts.append(f"from {self.source}")
        if self.destination != ANY_ADDRESS:
            parts.append(f"to {self.destination}")
        if self.extra:
            parts.append(self.extra)
        return " ".join(parts)


@dataclass
class ChainInfo:
    """A chain and its rules, as of one listing."""
    name: str
    policy: str = NO_POLICY
    packets: int = 0
    bytes: int = 0
    references: Optional[int] = None
    rules: list[FirewallRule] = field(default_factory=list)

    @property
    def is_builtin(self) -> bool:
        """Built-in chains are the ones that carry a default policy."""
        return self.policy != NO_POLICY


@dataclass
class FirewallRuleInput:
    """Caller-constructed intent to add a firewall rule."""
    chain: str
    target: str
    table: str = "filter"
    position: Optional[int] = None
    protocol: str = ""
    source: str = ""
    destination: str = ""
    in_interface: str = ""
    out_interface: str = ""
    dport: str = ""
    sport: str = ""
    state: str = ""
    comment: str = ""
    to_destination: str = ""
    to_source: str = ""

    def validate(self) -> None:
        """Check the fields the builder cannot do without.

        Raises:
            ValidationError: If a required field is missing or malformed
        """
        self.table = validate_table(self.table)
        if not self.chain:
            raise ValidationError("Chain is required")
        if not self.target:
            raise ValidationError(
                "Target is required",
                hint="Use ACCEPT, DROP, REJECT, RETURN, LOG or a chain name",
            )
        if self.position is not None and self.position < 1:
            raise ValidationError(
                f"Invalid rule position: {self.position}",
                hint="Positions start at 1",
            )
