"""Parser for ``ip rule show`` output and persisted rule lines."""

import re
from typing import Union

from rtr.core.exceptions import ParseError, ValidationError
from rtr.models.rule import IPRule, IPRuleInput, ACTION_LOOKUP, TERMINAL_ACTIONS
from rtr.parsers.tokens import scan


_LINE_RE = re.compile(r"^(\d+):\s+(.+)$")

_VALUED = ("from", "to", "fwmark", "iif", "oif", "lookup")
_FLAGS = ("not",) + tuple(sorted(TERMINAL_ACTIONS))


def _read_selector(rule: Union[IPRule, IPRuleInput], tokens: list[str]) -> None:
    for keyword, value in scan(tokens, _VALUED, _FLAGS):
        if keyword == "from":
            rule.from_ = value
        elif keyword == "to":
            rule.to = value
        elif keyword == "fwmark":
            rule.fwmark = value
        elif keyword == "iif":
            rule.iif = value
        elif keyword == "oif":
            rule.oif = value
        elif keyword == "lookup":
            rule.table = value
            rule.action = ACTION_LOOKUP
        elif keyword == "not":
            rule.not_ = True
        else:
            rule.action = keyword


def parse_rule_listing(text: str) -> list[IPRule]:
    """Parse ``priority:<ws>selector`` lines into rules.

    Raises:
        ParseError: If non-blank text has no line of the expected shape
    """
    rules = []
    for line in text.splitlines():
        match = _LINE_RE.match(line.strip())
        if not match:
            continue

        selector = match.group(2).strip()
        rule = IPRule(priority=int(match.group(1)), selector=selector)
        _read_selector(rule, selector.split())
        rules.append(rule)

    if not rules and text.strip():
        raise ParseError(
            "No rule lines found in ip rule listing",
            text=text,
            hint="Unexpected ip rule output format",
        )
    return rules


def parse_rule_line(line: str) -> IPRuleInput:
    """Read a persisted ``[priority N] selector...`` line back into an intent.

    Raises:
        ValidationError: If the priority is not a number
    """
    tokens = line.split()
    rule = IPRuleInput()
    if tokens[:1] == ["priority"]:
        try:
            rule.priority = int(tokens[1])
        except (IndexError, ValueError):
            raise ValidationError(f"Invalid priority in rule line: {line}")
        tokens = tokens[2:]
    _read_selector(rule, tokens)
    return rule
