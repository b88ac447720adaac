"""Parsers for iptables listings.

Handles two shapes:
- ``iptables -t T -L [chain] -n -v --line-numbers`` (human listing)
- ``iptables -t T -S [chain]`` (rule specifications)
"""

import re
import shlex

from rtr.core.exceptions import ParseError
from rtr.models.firewall import ChainInfo, FirewallRule, NO_POLICY


MAX_COUNTER = 2**64 - 1

_MULTIPLIERS = {
    "": 1,
    "K": 1024,
    "M": 1024**2,
    "G": 1024**3,
    "T": 1024**4,
}

_NUMBER_RE = re.compile(r"^(\d+)([KMGT]?)$")

_BUILTIN_HEADER_RE = re.compile(
    r"^Chain (\S+) \(policy (\S+) (\d+[KMGT]?) packets, (\d+[KMGT]?) bytes\)"
)
_USER_HEADER_RE = re.compile(r"^Chain (\S+) \((\d+) references?\)")

# Values of the "opt" column; seeing one in the target slot means the rule has no target
_OPT_VALUES = frozenset({"--", "-f", "!f"})


def parse_suffixed_number(text: str) -> int:
    """Parse a counter such as ``253K`` using binary multipliers.

    Raises:
        ParseError: If the text is not a counter or exceeds 64 bits
    """
    match = _NUMBER_RE.match(text.strip())
    if not match:
        raise ParseError(f"Invalid counter value: {text!r}", text=text)
    value = int(match.group(1)) * _MULTIPLIERS[match.group(2)]
    if value > MAX_COUNTER:
        raise ParseError(f"Counter value out of range: {text!r}", text=text)
    return value


def _parse_rule_line(line: str) -> FirewallRule:
    """Parse one rule row of the verbose listing.

    Columns: num pkts bytes target prot opt in out source destination [extra]
    """
    parts = line.split(None, 3)
    if len(parts) < 4:
        raise ValueError(line)
    num = int(parts[0])
    packets = parse_suffixed_number(parts[1])
    bytes_ = parse_suffixed_number(parts[2])

    rest = parts[3].split(None, 6)
    if len(rest) >= 2 and rest[1] in _OPT_VALUES:
        # No target: the row is one column short
        rest = [""] + parts[3].split(None, 5)
    if len(rest) < 7:
        raise ValueError(line)
    target, protocol, opt, in_iface, out_iface, source, remainder = rest
    dest_and_extra = remainder.split(None, 1)
    destination = dest_and_extra[0]
    extra = dest_and_extra[1] if len(dest_and_extra) > 1 else ""

    return FirewallRule(
        num=num,
        packets=packets,
        bytes=bytes_,
        target=target,
        protocol=protocol,
        opt=opt,
        in_interface=in_iface,
        out_interface=out_iface,
        source=source,
        destination=destination,
        extra=extra,
    )


def parse_chain_listing(text: str) -> list[ChainInfo]:
    """Parse ``iptables -L -n -v --line-numbers`` output into chains.

    Chains are returned in source order, each with its rules in listing
    order. Rows that do not fit the column layout are skipped.

    Raises:
        ParseError: If non-blank text contains no chain header
    """
    chains: list[ChainInfo] = []
    current = None

    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue

        match = _BUILTIN_HEADER_RE.match(line)
        if match:
            current = ChainInfo(
                name=match.group(1),
                policy=match.group(2),
                packets=parse_suffixed_number(match.group(3)),
                bytes=parse_suffixed_number(match.group(4)),
            )
            chains.append(current)
            continue

        match = _USER_HEADER_RE.match(line)
        if match:
            current = ChainInfo(
                name=match.group(1),
                policy=NO_POLICY,
                references=int(match.group(2)),
            )
            chains.append(current)
            continue

        if current is None or line.startswith("num "):
            continue

        try:
            current.rules.append(_parse_rule_line(line))
        except (ValueError, ParseError):
            continue

    if not chains and text.strip():
        raise ParseError(
            "No chain header found in iptables listing",
            text=text,
            hint="Unexpected iptables output format",
        )
    return chains


def parse_rule_specs(text: str, chain: str) -> list[list[str]]:
    """Extract the arguments of every ``-A CHAIN`` line, in chain order.

    Index ``n - 1`` of the result is the complete specification of rule
    ``n``, ready to pass back to ``iptables -I``.
    """
    specs = []
    for line in text.splitlines():
        line = line.strip()
        if not line.startswith("-A "):
            continue
        args = shlex.split(line)
        if len(args) < 2 or args[1] != chain:
            continue
        specs.append(args[2:])
    return specs
