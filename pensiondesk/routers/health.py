from __future__ import annotations

from fastapi import APIRouter, Depends

from pensiondesk.security.dependencies import get_permission_engine
from pensiondesk.security.permissions import PermissionEngine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(permissions: PermissionEngine = Depends(get_permission_engine)) -> dict[str, object]:
    return {"status": "ok", "cache_available": permissions.cache.is_available()}
