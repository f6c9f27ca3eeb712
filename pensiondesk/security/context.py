from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pensiondesk.security.scope import BranchScope, Scope


@dataclass(frozen=True)
class PermissionRef:
    """The capability part of a grant (reference data, never edited by end users)."""

    id: str
    code: str
    resource: str
    action: str
    description: str | None = None


@dataclass(frozen=True)
class CachedPermission:
    """
    One entry of a user's materialised permission set.

    This is what gets written to the cache, so it must round-trip through JSON
    via ``to_dict`` / ``from_dict``.
    """

    permission: PermissionRef
    scope: Scope
    company_id: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "permission": {
                "id": self.permission.id,
                "code": self.permission.code,
                "resource": self.permission.resource,
                "action": self.permission.action,
                "description": self.permission.description,
            },
            "scope": self.scope.value,
            "company_id": self.company_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CachedPermission:
        perm = data["permission"]
        return cls(
            permission=PermissionRef(
                id=str(perm["id"]),
                code=str(perm["code"]),
                resource=str(perm["resource"]),
                action=str(perm["action"]),
                description=perm.get("description"),
            ),
            scope=Scope(data["scope"]),
            company_id=data.get("company_id"),
        )


@dataclass(frozen=True)
class PermissionCheckContext:
    """
    Optional facts about the resource being accessed.

    Only non-emptiness of ``branch_ids`` / ``area_ids`` is inspected by the
    permission engine; containment checks belong to the territory engine.
    """

    resource_owner_id: str | None = None
    branch_ids: tuple[str, ...] = ()
    area_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class TerritoryFilter:
    """Derived (never persisted) answer to "which branches may this user see?"."""

    scope: BranchScope
    branch_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {"scope": self.scope.value, "branch_ids": list(self.branch_ids)}


@dataclass(frozen=True)
class RequestIdentity:
    """Who is asking, and on behalf of which company. Attached to request.state."""

    user_id: str
    company_id: str
