"""Tree model.

Positions are stored as plain latitude/longitude floats (WGS 84) so
the same schema runs on PostgreSQL and SQLite; distance queries use
the haversine helpers in ``app.imaging.coordinates``.
"""

import enum
from datetime import date
from typing import Optional

from sqlalchemy import JSON, Date, Enum, Float, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class TreeStatus(str, enum.Enum):
    HEALTHY = "healthy"
    FLOWERING = "flowering"
    DISEASED = "diseased"
    DEAD = "dead"


class Tree(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A pinned tree.

    Attributes:
        id: UUID primary key.
        name: Display name.
        species: Species (required on create; the column itself is nullable).
        description: Free text.
        date_planted: When the tree was planted, if known.
        latitude: Decimal degrees, -90..90.
        longitude: Decimal degrees, -180..180.
        address: Optional human-readable address.
        image_url: Public URL of the stored photo.
        status: Health status.
        tags: Unique string tags.
        owner_id: User who pinned the tree.
    """

    __tablename__ = "trees"
    __mapper_args__ = {"eager_defaults": True}

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    species: Mapped[Optional[str]] = mapped_column(String(200), nullable=True, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    date_planted: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    latitude: Mapped[float] = mapped_column(Float, nullable=False, index=True)
    longitude: Mapped[float] = mapped_column(Float, nullable=False, index=True)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    image_url: Mapped[str] = mapped_column(String(512), nullable=False)
    status: Mapped[TreeStatus] = mapped_column(
        Enum(
            TreeStatus,
            name="tree_status",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        default=TreeStatus.HEALTHY,
        nullable=False,
    )
    tags: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    owner_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    owner: Mapped["User"] = relationship("User", back_populates="trees")


# Import related models for relationship resolution
from app.models.user import User  # noqa: E402
