"""Dependency injection utilities for API endpoints.

Database sessions, the authenticated user, image storage and
pagination parameters.
"""

from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import UnauthorizedException
from app.core.security import decode_access_token
from app.imaging.extractor import MetadataExtractor
from app.models.user import User
from app.services.database import get_db
from app.services.storage import StorageManager

# Type alias for database session dependency
DBSession = Annotated[AsyncSession, Depends(get_db)]

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    db: DBSession,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
) -> User:
    """Resolve the bearer token to a user.

    Raises:
        UnauthorizedException: If the token is missing, invalid, expired,
            or names a user that no longer exists.
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedException("Authentication required")

    payload = decode_access_token(credentials.credentials)
    user = await db.get(User, payload["sub"])
    if user is None:
        raise UnauthorizedException("User no longer exists")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


@lru_cache
def get_storage() -> StorageManager:
    """Image storage configured from settings (one instance per process)."""
    return StorageManager(
        base_path=settings.UPLOAD_DIR,
        url_prefix=settings.UPLOAD_URL_PREFIX,
        max_width=settings.STORED_IMAGE_MAX_WIDTH,
        max_height=settings.STORED_IMAGE_MAX_HEIGHT,
        quality=settings.STORED_IMAGE_QUALITY,
    )


Storage = Annotated[StorageManager, Depends(get_storage)]


@lru_cache
def get_extractor() -> MetadataExtractor:
    return MetadataExtractor.from_config(settings.pipeline_config())


Extractor = Annotated[MetadataExtractor, Depends(get_extractor)]


class PaginationParams:
    """Common pagination parameters for list endpoints.

    Attributes:
        page: 1-based page number.
        limit: Maximum number of records per page.
    """

    def __init__(
        self,
        page: Annotated[int, Query(ge=1, description="Page number (1-based)")] = 1,
        limit: Annotated[
            int, Query(ge=1, le=100, description="Max records to return")
        ] = 20,
    ) -> None:
        self.page = page
        self.limit = limit

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


# Type alias for pagination dependency
Pagination = Annotated[PaginationParams, Depends()]
