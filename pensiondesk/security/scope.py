"""
Scope enumerations.

``Scope`` is the breadth of a permission grant. The ordering is explicit (see
``scope_rank``) rather than derived from the string values, so adding a scope
means adding a rank, never relying on alphabetical order.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum


class Scope(str, Enum):
    SELF = "self"
    BRANCH = "branch"
    AREA = "area"
    ALL = "all"


_SCOPE_RANK: dict[Scope, int] = {
    Scope.SELF: 1,
    Scope.BRANCH: 2,
    Scope.AREA: 3,
    Scope.ALL: 4,
}


def scope_rank(scope: Scope) -> int:
    """Total order over scopes: self(1) < branch(2) < area(3) < all(4)."""
    return _SCOPE_RANK[Scope(scope)]


def broadest_scope(scopes: Iterable[Scope]) -> Scope | None:
    """Return the highest-ranked scope, or None for an empty input."""
    best: Scope | None = None
    for scope in scopes:
        if best is None or scope_rank(scope) > scope_rank(best):
            best = Scope(scope)
    return best


class BranchScope(str, Enum):
    """Classification of a user's territory filter."""

    ALL = "all"
    TERRITORY = "territory"
    NONE = "none"
