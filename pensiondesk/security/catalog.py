"""
Permission catalog loader.

Permissions are reference data. They are declared in YAML and upserted into
the store at startup; end users never create them.

Expected shape:

    permissions:
      clients.read:
        resource: clients
        action: read
        description: View pension clients
      clients.write:
        resource: clients
        action: write

The code must equal ``<resource>.<action>`` so grants stay readable in logs
and in the admin UI.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from pensiondesk.db.queries.permissions import CatalogEntry

logger = logging.getLogger(__name__)


class PermissionCatalogError(ValueError):
    """Raised when the permission catalog YAML is invalid."""


def parse_permission_catalog(raw: object) -> tuple[CatalogEntry, ...]:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise PermissionCatalogError("catalog root must be a mapping")

    perms_raw = raw.get("permissions") or {}
    if not isinstance(perms_raw, dict):
        raise PermissionCatalogError("permissions must be a mapping")

    entries: list[CatalogEntry] = []
    for code, value in perms_raw.items():
        if not isinstance(value, dict):
            raise PermissionCatalogError(f"permission {code!r} must be a mapping")

        resource = str(value.get("resource", "")).strip()
        action = str(value.get("action", "")).strip()
        if not resource or not action:
            raise PermissionCatalogError(f"permission {code!r} requires non-empty resource and action")
        if code != f"{resource}.{action}":
            raise PermissionCatalogError(f"permission {code!r} does not match {resource}.{action}")

        description = value.get("description")
        entries.append(
            CatalogEntry(
                code=str(code),
                resource=resource,
                action=action,
                description=str(description) if description is not None else None,
            )
        )

    return tuple(entries)


def load_permission_catalog(path: Path) -> tuple[CatalogEntry, ...]:
    """Load and validate the permission catalog from disk."""

    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    entries = parse_permission_catalog(raw)
    logger.debug("Loaded permission catalog path=%s entries=%d", path, len(entries))
    return entries
