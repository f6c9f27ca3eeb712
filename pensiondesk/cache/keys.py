"""
Cache key builders and TTLs.

The key formats are shared with any external invalidation tooling, so they
must not change: ``user:{id}:permissions`` and ``user:{id}:branches``.
"""

from __future__ import annotations

USER_PERMISSIONS_TTL = 5 * 60
USER_BRANCHES_TTL = USER_PERMISSIONS_TTL

ALL_USER_PERMISSIONS_PATTERN = "user:*:permissions"
ALL_USER_BRANCHES_PATTERN = "user:*:branches"


def user_permissions_key(user_id: str) -> str:
    return f"user:{user_id}:permissions"


def user_branches_key(user_id: str) -> str:
    return f"user:{user_id}:branches"
