"""API dependencies for dependency injection."""

import logging
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from musicscan.database import get_db
from musicscan.models import AppUser, UserRole
from musicscan.schemas.common import PaginationParams
from musicscan.utils.security import TokenError, hash_token, parse_bearer

logger = logging.getLogger(__name__)

DbSession = Annotated[AsyncSession, Depends(get_db)]

ADMIN_ROLE = "admin"


def get_pagination(
    page: int = Query(default=1, ge=1, description="Page number"),
    per_page: int = Query(default=50, ge=1, le=500, description="Items per page"),
) -> PaginationParams:
    """Get pagination parameters from query string."""
    return PaginationParams(page=page, per_page=per_page)


Pagination = Annotated[PaginationParams, Depends(get_pagination)]


async def get_current_user(
    db: DbSession,
    authorization: Annotated[str | None, Header()] = None,
) -> AppUser:
    """Resolve the bearer token to a user, 401 otherwise."""
    try:
        token = parse_bearer(authorization)
    except TokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = await db.execute(select(AppUser).where(AppUser.api_token_hash == hash_token(token)))
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


CurrentUser = Annotated[AppUser, Depends(get_current_user)]


async def require_admin(db: DbSession, user: CurrentUser) -> AppUser:
    """403 unless the user has the admin role."""
    result = await db.execute(
        select(UserRole.id).where(UserRole.user_id == user.id, UserRole.role == ADMIN_ROLE)
    )
    if result.scalar_one_or_none() is None:
        logger.warning(f"User {user.id} tried an admin action without the admin role")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return user


AdminUser = Annotated[AppUser, Depends(require_admin)]
