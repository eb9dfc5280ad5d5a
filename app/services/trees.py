"""Tree record operations.

Every query eagerly loads ``Tree.owner``: responses embed the owner
summary and async sessions cannot lazy-load it later.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import Select, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.exceptions import (
    DatabaseException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from app.imaging.coordinates import calculate_distance
from app.models.tree import Tree, TreeStatus
from app.models.user import User
from app.schemas.tree import TreeCreate, TreeUpdate
from app.services.storage import StorageManager

logger = logging.getLogger(__name__)

KM_PER_DEGREE_LATITUDE = 111.32


@dataclass(frozen=True)
class Bounds:
    south: float
    west: float
    north: float
    east: float

    @classmethod
    def parse(cls, value: str) -> "Bounds":
        """Parse ``south,west,north,east``.

        Raises:
            ValidationException: If the string is malformed or out of range.
        """
        try:
            south, west, north, east = (float(part) for part in value.split(","))
        except ValueError:
            raise ValidationException(
                "bounds must be 'south,west,north,east'",
                details={"bounds": value},
            )
        if not (-90 <= south <= north <= 90) or not (-180 <= west <= 180 and -180 <= east <= 180):
            raise ValidationException("bounds are out of range", details={"bounds": value})
        return cls(south, west, north, east)


@dataclass(frozen=True)
class TreeFilters:
    search: Optional[str] = None
    species: Optional[str] = None
    status: Optional[TreeStatus] = None
    owner_id: Optional[str] = None
    bounds: Optional[Bounds] = None


def _with_owner(stmt: Select) -> Select:
    return stmt.options(selectinload(Tree.owner))


def _apply_filters(stmt: Select, filters: TreeFilters) -> Select:
    if filters.search:
        pattern = f"%{filters.search.strip()}%"
        stmt = stmt.where(
            or_(
                Tree.name.ilike(pattern),
                Tree.species.ilike(pattern),
                Tree.description.ilike(pattern),
                Tree.address.ilike(pattern),
            )
        )
    if filters.species:
        stmt = stmt.where(func.lower(Tree.species) == filters.species.strip().lower())
    if filters.status:
        stmt = stmt.where(Tree.status == filters.status)
    if filters.owner_id:
        stmt = stmt.where(Tree.owner_id == filters.owner_id)
    if filters.bounds:
        b = filters.bounds
        stmt = stmt.where(Tree.latitude.between(b.south, b.north))
        if b.west <= b.east:
            stmt = stmt.where(Tree.longitude.between(b.west, b.east))
        else:
            # Box crosses the antimeridian
            stmt = stmt.where(or_(Tree.longitude >= b.west, Tree.longitude <= b.east))
    return stmt


async def get_tree(db: AsyncSession, tree_id: str) -> Tree:
    """Fetch one tree with its owner.

    Raises:
        NotFoundException: If the tree does not exist.
    """
    result = await db.execute(
        _with_owner(select(Tree).where(Tree.id == tree_id)).execution_options(
            populate_existing=True
        )
    )
    tree = result.scalar_one_or_none()
    if tree is None:
        raise NotFoundException("Tree not found", details={"id": tree_id})
    return tree


async def list_trees(
    db: AsyncSession,
    filters: TreeFilters,
    page: int = 1,
    limit: int = 20,
) -> Tuple[Sequence[Tree], int]:
    """Return one page of trees, newest first, plus the total match count."""
    count_stmt = _apply_filters(select(func.count()).select_from(Tree), filters)
    total = (await db.execute(count_stmt)).scalar_one()

    stmt = _apply_filters(_with_owner(select(Tree)), filters)
    stmt = stmt.order_by(Tree.created_at.desc(), Tree.id).offset((page - 1) * limit).limit(limit)
    trees = (await db.execute(stmt)).scalars().all()
    return trees, total


async def nearby_trees(
    db: AsyncSession,
    latitude: float,
    longitude: float,
    radius_km: float,
    limit: int = 50,
) -> List[Tuple[Tree, float]]:
    """Trees within ``radius_km`` of a point, nearest first.

    A bounding box narrows the SQL query; the haversine distance decides.
    """
    lat_delta = radius_km / KM_PER_DEGREE_LATITUDE
    stmt = _with_owner(select(Tree)).where(
        Tree.latitude.between(latitude - lat_delta, latitude + lat_delta)
    )
    cos_lat = math.cos(math.radians(latitude))
    if cos_lat > 1e-6:
        lon_delta = radius_km / (KM_PER_DEGREE_LATITUDE * cos_lat)
        if lon_delta < 180:
            stmt = stmt.where(
                Tree.longitude.between(longitude - lon_delta, longitude + lon_delta)
            )

    candidates = (await db.execute(stmt)).scalars().all()
    matches = []
    for tree in candidates:
        distance = calculate_distance(latitude, longitude, tree.latitude, tree.longitude)
        if distance <= radius_km:
            matches.append((tree, distance))
    matches.sort(key=lambda match: match[1])
    return matches[:limit]


async def _commit(db: AsyncSession, action: str) -> None:
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Failed to {action}: {e}")
        raise DatabaseException(f"Failed to {action}")


def _check_image(storage: StorageManager, image_url: str) -> None:
    if not storage.exists(image_url):
        raise ValidationException(
            "imageUrl does not reference an uploaded image",
            details={"imageUrl": image_url},
        )


async def create_tree(
    db: AsyncSession,
    owner: User,
    data: TreeCreate,
    storage: StorageManager,
) -> Tree:
    """Create a tree owned by ``owner``.

    Raises:
        ValidationException: If ``image_url`` is not a stored upload.
    """
    _check_image(storage, data.image_url)

    tree = Tree(**data.model_dump(), owner_id=owner.id)
    db.add(tree)
    await _commit(db, "create tree")
    logger.info(f"Tree {tree.id} created by {owner.id} at {tree.latitude}, {tree.longitude}")
    return await get_tree(db, tree.id)


async def _owned_tree(db: AsyncSession, tree_id: str, user: User) -> Tree:
    tree = await get_tree(db, tree_id)
    if tree.owner_id != user.id:
        raise ForbiddenException("You can only modify your own trees")
    return tree


async def update_tree(
    db: AsyncSession,
    tree_id: str,
    user: User,
    data: TreeUpdate,
    storage: StorageManager,
) -> Tree:
    """Apply the supplied fields to a tree the user owns.

    Raises:
        NotFoundException: If the tree does not exist.
        ForbiddenException: If the user is not the owner.
        ValidationException: On a null required field or an unknown image.
    """
    tree = await _owned_tree(db, tree_id, user)
    changes = data.model_dump(exclude_unset=True)

    for field in ("name", "species", "latitude", "longitude", "image_url", "status", "tags"):
        if field in changes and changes[field] is None:
            raise ValidationException(f"{field} cannot be null", details={"field": field})
    if "image_url" in changes and changes["image_url"] != tree.image_url:
        _check_image(storage, changes["image_url"])

    for field, value in changes.items():
        setattr(tree, field, value)

    await _commit(db, "update tree")
    return await get_tree(db, tree.id)


async def delete_tree(db: AsyncSession, tree_id: str, user: User) -> None:
    """Delete a tree the user owns."""
    tree = await _owned_tree(db, tree_id, user)
    await db.delete(tree)
    await _commit(db, "delete tree")
    logger.info(f"Tree {tree_id} deleted by {user.id}")
