from __future__ import annotations

import logging

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from pensiondesk.errors import UnauthorizedError, ValidationError
from pensiondesk.models.security import User
from pensiondesk.security.context import RequestIdentity

logger = logging.getLogger(__name__)

AUTHORIZATION_HEADER = "Authorization"
BEARER_PREFIX = "Bearer"


def extract_user_id(request: Request) -> str:
    """
    Demo auth: extract bearer token and treat it as a user id.

    - Input: `Authorization: Bearer <token>`
    - Demo behavior: `<token>` is the user's id as stored in the users table
    - Production behavior (documented only): validate the token with the identity provider
    """

    raw = request.headers.get(AUTHORIZATION_HEADER)
    if not raw:
        logger.info("Missing Authorization header path=%s method=%s", request.url.path, request.method)
        raise UnauthorizedError("Authentication required")

    prefix = f"{BEARER_PREFIX} "
    if not raw.startswith(prefix):
        logger.warning("Invalid Authorization header format path=%s method=%s", request.url.path, request.method)
        raise ValidationError(f"Invalid {AUTHORIZATION_HEADER}. Expected '{BEARER_PREFIX} <token>'.")

    token = raw[len(prefix) :].strip()
    if not token:
        logger.warning("Empty bearer token path=%s method=%s", request.url.path, request.method)
        raise ValidationError(f"Invalid {AUTHORIZATION_HEADER}. Missing token after '{BEARER_PREFIX}'.")

    return token


def extract_company_id(request: Request, header_name: str) -> str:
    company_id = (request.headers.get(header_name) or "").strip()
    if not company_id:
        logger.info("Missing company header header=%s path=%s", header_name, request.url.path)
        raise ValidationError(f"Missing {header_name} header")
    return company_id


async def load_identity(db: AsyncSession, request: Request, company_header: str) -> RequestIdentity:
    user_id = extract_user_id(request)
    company_id = extract_company_id(request, company_header)

    user = await db.get(User, user_id)
    if user is None or not user.is_active or user.deleted_at is not None:
        raise UnauthorizedError("Invalid or inactive user")

    return RequestIdentity(user_id=user.id, company_id=company_id)
