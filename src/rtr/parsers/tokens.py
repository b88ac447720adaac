"""Keyword scanner shared by the ``ip route`` and ``ip rule`` parsers."""

from typing import Iterable, Iterator, Optional


def scan(
    tokens: Iterable[str],
    valued: Iterable[str],
    flags: Iterable[str] = (),
) -> Iterator[tuple[str, Optional[str]]]:
    """Walk whitespace-separated tokens as keyword/value pairs.

    Keywords may appear in any order and any subset. A valued keyword
    consumes the following token. Flags stand alone and are yielded with
    ``None``. Anything else is skipped, so output from newer tool versions
    with extra attributes still parses.

    Args:
        tokens: Tokens after the leading positional field(s)
        valued: Keywords that take one argument
        flags: Keywords that take none

    Yields:
        ``(keyword, value)`` or ``(keyword, None)``
    """
    valued = frozenset(valued)
    flags = frozenset(flags)
    items = list(tokens)
    i = 0
    while i < len(items):
        token = items[i]
        if token in valued:
            # A trailing keyword with no value is dropped
            if i + 1 < len(items):
                yield token, items[i + 1]
            i += 2
            continue
        if token in flags:
            yield token, None
        i += 1
