"""Policy-routing rule entities and mutation intents."""

from dataclasses import dataclass

from rtr.core.exceptions import ValidationError


# Selector value that matches every address
MATCH_ALL = "all"

# Priorities of the rules the kernel installs by default (local, main, default)
RESERVED_PRIORITIES = frozenset({0, 32766, 32767})

# Actions that end evaluation without a table lookup
TERMINAL_ACTIONS = frozenset({"unreachable", "blackhole", "prohibit"})

ACTION_LOOKUP = "lookup"


@dataclass
class IPRule:
    """A rule parsed from ``ip rule show``.

    ``priority`` is the identity key used for deletion.
    """
    priority: int
    selector: str = ""
    action: str = ""
    table: str = ""
    from_: str = MATCH_ALL
    to: str = ""
    fwmark: str = ""
    iif: str = ""
    oif: str = ""
    not_: bool = False

    @property
    def is_reserved(self) -> bool:
        return self.priority in RESERVED_PRIORITIES


@dataclass
class IPRuleInput:
    """Caller-constructed intent to add a policy-routing rule."""
    priority: int = 0
    from_: str = ""
    to: str = ""
    fwmark: str = ""
    iif: str = ""
    oif: str = ""
    table: str = ""
    action: str = ""
    not_: bool = False

    def validate(self) -> None:
        """Check the fields the builder cannot do without.

        Raises:
            ValidationError: If neither a table nor a terminal action is given
        """
        if self.priority < 0:
            raise ValidationError(f"Invalid priority: {self.priority}")
        if self.action and self.action not in TERMINAL_ACTIONS | {ACTION_LOOKUP}:
            raise ValidationError(
                f"Unknown rule action: {self.action}",
                hint="Use lookup, unreachable, blackhole or prohibit",
            )
        if self.action in TERMINAL_ACTIONS and self.table:
            raise ValidationError(
                f"Action {self.action} does not take a table",
            )
        if not self.table and self.action not in TERMINAL_ACTIONS:
            raise ValidationError(
                "Rule needs a table to look up or a terminal action",
                hint="Pass a table, or action unreachable/blackhole/prohibit",
            )
