"""Create an admin user and print its API token.

Usage: python scripts/create_admin.py admin@example.com
"""

import asyncio
import sys
import uuid

from sqlalchemy import select

from musicscan.api.deps import ADMIN_ROLE
from musicscan.database import init_db, session_scope
from musicscan.models import AppUser, UserRole
from musicscan.utils.security import generate_token, hash_token


async def create_admin(email: str) -> str:
    await init_db()
    token = generate_token()
    async with session_scope() as db:
        result = await db.execute(select(AppUser).where(AppUser.email == email))
        user = result.scalar_one_or_none()
        if user is None:
            user = AppUser(id=str(uuid.uuid4()), email=email)
            db.add(user)
        user.api_token_hash = hash_token(token)
        await db.flush()

        result = await db.execute(
            select(UserRole).where(UserRole.user_id == user.id, UserRole.role == ADMIN_ROLE)
        )
        if result.scalar_one_or_none() is None:
            db.add(UserRole(user_id=user.id, role=ADMIN_ROLE))
    return token


if __name__ == "__main__":
    if len(sys.argv) != 2:
        sys.exit("usage: create_admin.py EMAIL")
    print(asyncio.run(create_admin(sys.argv[1])))
