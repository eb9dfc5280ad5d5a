"""Tree request and response schemas."""

from datetime import date, datetime
from typing import List, Optional

from pydantic import Field, field_validator

from app.models.tree import TreeStatus
from app.schemas.base import CamelModel
from app.schemas.user import UserSummary


def _unique_tags(tags: List[str]) -> List[str]:
    cleaned = (tag.strip() for tag in tags)
    return list(dict.fromkeys(tag for tag in cleaned if tag))


def _required_text(value: str, label: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError(f"{label} must not be blank")
    return value


class TreeCreate(CamelModel):
    """Body of ``POST /trees``.

    ``image_url`` must be a URL returned by ``POST /upload/image``.
    """

    name: str = Field(..., max_length=200)
    species: str = Field(..., max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    date_planted: Optional[date] = None
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: Optional[str] = Field(None, max_length=500)
    image_url: str = Field(..., min_length=1, max_length=512)
    status: TreeStatus = TreeStatus.HEALTHY
    tags: List[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def check_name(cls, value: str) -> str:
        return _required_text(value, "Name")

    @field_validator("species")
    @classmethod
    def check_species(cls, value: str) -> str:
        return _required_text(value, "Species")

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, value: List[str]) -> List[str]:
        return _unique_tags(value)


class TreeUpdate(CamelModel):
    """Body of ``PUT /trees/{id}``. Only supplied fields change."""

    name: Optional[str] = Field(None, max_length=200)
    species: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    date_planted: Optional[date] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    address: Optional[str] = Field(None, max_length=500)
    image_url: Optional[str] = Field(None, min_length=1, max_length=512)
    status: Optional[TreeStatus] = None
    tags: Optional[List[str]] = None

    @field_validator("name")
    @classmethod
    def check_name(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _required_text(value, "Name")

    @field_validator("species")
    @classmethod
    def check_species(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _required_text(value, "Species")

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return None if value is None else _unique_tags(value)


class TreeRead(CamelModel):
    id: str
    name: str
    species: Optional[str] = None
    description: Optional[str] = None
    date_planted: Optional[date] = None
    latitude: float
    longitude: float
    address: Optional[str] = None
    image_url: str
    status: TreeStatus
    tags: List[str] = Field(default_factory=list)
    owner_id: str
    owner: Optional[UserSummary] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class NearbyTree(TreeRead):
    distance_km: float


class TreeListResponse(CamelModel):
    trees: List[TreeRead]
    total: int
    page: int
    limit: int
    total_pages: int
