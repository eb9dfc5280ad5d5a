"""Tree CRUD endpoints.

Reads are public; writes require a bearer token and only the owner of
a tree may change or delete it.
"""

import math
from typing import Annotated, List, Optional

from fastapi import APIRouter, Query, Response, status

from app.api.deps import CurrentUser, DBSession, Pagination, Storage
from app.models.tree import Tree, TreeStatus
from app.schemas.tree import NearbyTree, TreeCreate, TreeListResponse, TreeRead, TreeUpdate
from app.services import trees as tree_service
from app.services.trees import Bounds, TreeFilters

router = APIRouter(prefix="/trees", tags=["Trees"])


@router.get(
    "",
    response_model=TreeListResponse,
    summary="List trees",
    description="Newest first. `bounds` is `south,west,north,east`.",
)
async def list_trees(
    db: DBSession,
    pagination: Pagination,
    search: Annotated[Optional[str], Query(max_length=200)] = None,
    species: Optional[str] = None,
    tree_status: Annotated[Optional[TreeStatus], Query(alias="status")] = None,
    owner_id: Optional[str] = None,
    bounds: Optional[str] = None,
) -> TreeListResponse:
    filters = TreeFilters(
        search=search,
        species=species,
        status=tree_status,
        owner_id=owner_id,
        bounds=Bounds.parse(bounds) if bounds else None,
    )
    trees, total = await tree_service.list_trees(
        db, filters, page=pagination.page, limit=pagination.limit
    )
    return TreeListResponse(
        trees=[TreeRead.model_validate(tree) for tree in trees],
        total=total,
        page=pagination.page,
        limit=pagination.limit,
        total_pages=math.ceil(total / pagination.limit) if total else 0,
    )


@router.get(
    "/nearby",
    response_model=List[NearbyTree],
    summary="Trees near a point",
    description="Trees within `radius` kilometres, nearest first.",
)
async def nearby_trees(
    db: DBSession,
    latitude: Annotated[float, Query(ge=-90, le=90)],
    longitude: Annotated[float, Query(ge=-180, le=180)],
    radius: Annotated[float, Query(gt=0, le=500, description="Radius in km")] = 10.0,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
) -> List[NearbyTree]:
    matches = await tree_service.nearby_trees(db, latitude, longitude, radius, limit)
    return [
        NearbyTree.model_validate(
            {**TreeRead.model_validate(tree).model_dump(), "distance_km": round(distance, 3)}
        )
        for tree, distance in matches
    ]


@router.get("/{tree_id}", response_model=TreeRead, summary="Get tree")
async def get_tree(tree_id: str, db: DBSession) -> Tree:
    return await tree_service.get_tree(db, tree_id)


@router.post(
    "",
    response_model=TreeRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create tree",
    description="`imageUrl` must come from `POST /upload/image`.",
)
async def create_tree(
    body: TreeCreate,
    db: DBSession,
    storage: Storage,
    current_user: CurrentUser,
) -> Tree:
    return await tree_service.create_tree(db, current_user, body, storage)


@router.put("/{tree_id}", response_model=TreeRead, summary="Update tree")
async def update_tree(
    tree_id: str,
    body: TreeUpdate,
    db: DBSession,
    storage: Storage,
    current_user: CurrentUser,
) -> Tree:
    return await tree_service.update_tree(db, tree_id, current_user, body, storage)


@router.delete("/{tree_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete tree")
async def delete_tree(tree_id: str, db: DBSession, current_user: CurrentUser) -> Response:
    await tree_service.delete_tree(db, tree_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
