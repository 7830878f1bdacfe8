from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from typing import Optional

from .errors import ConfigurationError


def tables_to_filter(tables: Iterable[str]) -> str:
    """
    Expand an explicit table list into an anchored alternation.

    >>> tables_to_filter(["users", "orders"])
    '^(?:users|orders)$'
    """
    names = [re.escape(t) for t in tables]
    if not names:
        raise ConfigurationError("--tables requires at least one table name")
    return "^(?:" + "|".join(names) + ")$"


def select(
    all_tables: Sequence[str],
    regex: Optional[str] = None,
    include_list: Optional[Iterable[str]] = None,
    exclude_list: Optional[Iterable[str]] = None,
) -> list[str]:
    """
    Decide which tables take part in a transfer.

    The result always preserves the order of ``all_tables`` so a resumed run
    walks tables in the same order as the run it resumes.

    - ``include_list`` wins over ``regex`` when both are given.
    - ``regex`` is matched at the start of each name, case-sensitively.
    - ``exclude_list`` is subtracted last.

    Raises:
        ConfigurationError: If the filters leave nothing to transfer from a
            non-empty table set, or the regex does not compile.
    """
    if include_list is not None:
        wanted = set(include_list)
        selected = [t for t in all_tables if t in wanted]
    elif regex is not None:
        try:
            pattern = re.compile(regex)
        except re.error as exc:
            raise ConfigurationError(f"Invalid table filter {regex!r}: {exc}") from exc
        selected = [t for t in all_tables if pattern.match(t)]
    else:
        selected = list(all_tables)

    if exclude_list:
        excluded = set(exclude_list)
        selected = [t for t in selected if t not in excluded]

    if not selected and all_tables:
        raise ConfigurationError("Table filters matched no tables; nothing to transfer")

    return selected
