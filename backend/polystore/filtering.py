"""
In-process filtering, ordering and paging of flat snapshots.

Used where the store has no secondary indexes: the key-value backend and
the memory and key-value projection caches.
"""

from __future__ import annotations

from typing import Any, Iterable


def matches_filters(snapshot: dict[str, Any], filters: dict[str, Any], fulltext: set[str]) -> bool:
    """
    Strings match case-insensitively, as a substring for fulltext columns and
    exactly otherwise. Lists match by membership, anything else by equality.
    Empty filter values are ignored.
    """
    for name, expected in filters.items():
        if expected is None or expected == "":
            continue
        actual = snapshot.get(name)
        if isinstance(expected, str):
            if actual is None:
                return False
            if name in fulltext:
                if expected.lower() not in str(actual).lower():
                    return False
            elif str(actual).lower() != expected.lower():
                return False
        elif isinstance(expected, (list, tuple)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


def _sort_key(value: Any) -> tuple[int, Any]:
    if isinstance(value, bool):
        return (0, int(value))
    if isinstance(value, (int, float)):
        return (0, value)
    return (1, str(value).lower())


def sort_snapshots(snapshots: list[dict[str, Any]], column: str | None, descending: bool) -> list[dict[str, Any]]:
    """Sort by ``column``; missing values always go last."""
    if column is None:
        return snapshots
    present = [s for s in snapshots if s.get(column) is not None]
    missing = [s for s in snapshots if s.get(column) is None]
    present.sort(key=lambda s: _sort_key(s[column]), reverse=descending)
    return present + missing


def select_page(
    snapshots: Iterable[dict[str, Any]],
    filters: dict[str, Any],
    fulltext: set[str],
    order_by: str | None,
    descending: bool,
    offset: int,
    limit: int,
) -> tuple[list[dict[str, Any]], int]:
    """Filter, order and slice; returns the page and the total match count."""
    matched = [s for s in snapshots if matches_filters(s, filters, fulltext)]
    ordered = sort_snapshots(matched, order_by, descending)
    return ordered[offset:offset + limit], len(ordered)
