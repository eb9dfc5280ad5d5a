"""User account operations."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictException, UnauthorizedException
from app.core.security import hash_password, verify_password
from app.models.user import User
from app.schemas.user import UserCreate, UserUpdate

logger = logging.getLogger(__name__)


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


async def get_user_by_username(db: AsyncSession, username: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def register_user(db: AsyncSession, data: UserCreate) -> User:
    """Create an account.

    Args:
        db: Database session.
        data: Validated registration body.

    Returns:
        The new user.

    Raises:
        ConflictException: If the email or username is taken.
    """
    if await get_user_by_email(db, data.email):
        raise ConflictException("Email already registered", details={"field": "email"})
    if await get_user_by_username(db, data.username):
        raise ConflictException("Username already taken", details={"field": "username"})

    user = User(
        email=data.email,
        username=data.username,
        password_hash=hash_password(data.password),
        first_name=data.first_name,
        last_name=data.last_name,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race against a concurrent registration
        await db.rollback()
        raise ConflictException("Email or username already registered")

    await db.refresh(user)
    logger.info(f"Registered user {user.id} ({user.username})")
    return user


async def authenticate(db: AsyncSession, email: str, password: str) -> User:
    """Check credentials.

    Raises:
        UnauthorizedException: On an unknown email or wrong password. The
            message does not say which.
    """
    user = await get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        logger.info(f"Failed login for {email}")
        raise UnauthorizedException("Invalid email or password")
    return user


async def update_profile(db: AsyncSession, user: User, data: UserUpdate) -> User:
    """Apply the supplied profile fields.

    Raises:
        ConflictException: If the new username is taken.
    """
    changes = data.model_dump(exclude_unset=True)
    new_username = changes.get("username")
    if new_username and new_username != user.username:
        if await get_user_by_username(db, new_username):
            raise ConflictException("Username already taken", details={"field": "username"})

    for field, value in changes.items():
        if field == "username" and value is None:
            continue
        setattr(user, field, value)

    await db.commit()
    await db.refresh(user)
    return user


async def delete_user(db: AsyncSession, user: User) -> None:
    """Delete an account together with all of its trees."""
    await db.delete(user)
    await db.commit()
    logger.info(f"Deleted user {user.id}")
