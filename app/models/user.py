"""User account model."""

from typing import Optional

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A registered user who can pin trees.

    Attributes:
        id: UUID primary key.
        email: Login email, unique.
        username: Public handle, unique.
        password_hash: bcrypt hash; the plain password is never stored.
        first_name: Optional given name.
        last_name: Optional family name.
        avatar: Optional avatar URL.
        bio: Optional profile text.
        is_verified: Whether the email address has been verified.
        trees: Trees owned by this user; deleted with the account.
    """

    __tablename__ = "users"
    __mapper_args__ = {"eager_defaults": True}

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    avatar: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    trees: Mapped[list["Tree"]] = relationship(
        "Tree",
        back_populates="owner",
        cascade="all, delete-orphan",
    )


# Import related models for relationship resolution
from app.models.tree import Tree  # noqa: E402
