"""Identity-provider token verification and get_current_user dependency.

Sessions are issued and refreshed by the identity provider; this module only
verifies the access token it hands the browser and maps it onto a users row.
"""

import jwt
from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coachlatam.config import get_settings
from coachlatam.constants import SESSION_COOKIE_NAME
from coachlatam.db.session import get_db
from coachlatam.errors import Unauthenticated, Unauthorized
from coachlatam.models.user import User


def _extract_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, credentials = auth_header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return request.cookies.get(SESSION_COOKIE_NAME)


def _decode_jwt(token: str) -> dict:
    settings = get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience,
        options={"require": ["exp", "sub"]},
    )


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User:
    """FastAPI dependency: verify the access token and return the User, or raise 401."""
    token = _extract_token(request)
    if not token:
        raise Unauthenticated("Unauthorized")
    try:
        payload = _decode_jwt(token)
        user_id = str(payload["sub"])
    except (jwt.InvalidTokenError, KeyError):
        raise Unauthenticated("Invalid or expired session")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise Unauthenticated("User not found")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """FastAPI dependency: like get_current_user but only admits admins."""
    if not user.is_admin:
        raise Unauthorized("Admin access required")
    return user
