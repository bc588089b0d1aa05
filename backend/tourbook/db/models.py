import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, List, Optional, Tuple
from uuid import UUID as PyUUID

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime, Index, JSON, UniqueConstraint

DEFAULT_RATINGS_AVERAGE = 4.5


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def round_rating(value: float) -> float:
    """Round half up to one decimal (4.66 -> 4.7, 4.25 -> 4.3)."""
    return math.floor(float(value) * 10 + 0.5) / 10


# Enums
class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    DIFFICULT = "difficult"


class UserRole(str, Enum):
    USER = "user"
    GUIDE = "guide"
    LEAD_GUIDE = "lead-guide"
    ADMIN = "admin"


class Document(SQLModel):
    """Common fields for every collection-like table"""

    # never part of any output
    hidden_fields: ClassVar[FrozenSet[str]] = frozenset()
    # derived values appended on output
    computed_fields: ClassVar[Tuple[str, ...]] = ()

    id: PyUUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    # bumped on every update; hidden from default projections
    version: int = Field(default=0, nullable=False)


# Models
class User(Document, table=True):
    __tablename__ = "users"

    __table_args__ = (
        Index('idx_users_role', 'role'),
    )

    hidden_fields: ClassVar[FrozenSet[str]] = frozenset({
        "password_hash",
        "password_reset_token",
        "password_reset_expires",
        "active",
    })

    name: str = Field(max_length=20, description="Display name")
    email: str = Field(
        index=True,
        unique=True,
        nullable=False,
        max_length=255,
        description="Login email, stored lower-case"
    )
    photo: str = Field(default="default.jpg", max_length=255)
    role: UserRole = Field(default=UserRole.USER, nullable=False)
    password_hash: str = Field(nullable=False, max_length=255)
    password_changed_at: Optional[datetime] = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    password_reset_token: Optional[str] = Field(default=None, max_length=64, index=True)
    password_reset_expires: Optional[datetime] = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    active: bool = Field(default=True, nullable=False, description="False once the account is deleted")


class Tour(Document, table=True):
    __tablename__ = "tours"

    __table_args__ = (
        Index('idx_tours_price_rating', 'price', 'ratings_average'),
        Index('idx_tours_slug', 'slug'),
    )

    computed_fields: ClassVar[Tuple[str, ...]] = ("duration_weeks",)

    name: str = Field(unique=True, nullable=False, max_length=40)
    slug: Optional[str] = Field(default=None, max_length=60)
    duration: int = Field(description="Length of the tour in days")
    max_group_size: int
    difficulty: Difficulty
    ratings_average: float = Field(default=DEFAULT_RATINGS_AVERAGE)
    ratings_quantity: int = Field(default=0)
    price: float
    price_discount: Optional[float] = Field(default=None)
    summary: str
    description: Optional[str] = Field(default=None)
    image_cover: str
    images: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    # ISO-8601 strings; JSON columns do not carry datetimes
    start_dates: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    secret_tour: bool = Field(default=False, nullable=False)
    start_location: Optional[Dict[str, Any]] = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
        description="GeoJSON point: coordinates are [lng, lat]"
    )
    locations: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

    @property
    def duration_weeks(self) -> Optional[float]:
        if self.duration is None:
            return None
        return self.duration / 7


class TourGuide(SQLModel, table=True):
    __tablename__ = "tour_guides"

    tour_id: PyUUID = Field(foreign_key="tours.id", primary_key=True, ondelete="CASCADE")
    user_id: PyUUID = Field(foreign_key="users.id", primary_key=True, ondelete="CASCADE")
    position: int = Field(default=0, description="Order in the tour's guide list")


class Review(Document, table=True):
    __tablename__ = "reviews"

    __table_args__ = (
        UniqueConstraint('tour_id', 'user_id', name='uq_reviews_tour_user'),
    )

    review: str
    rating: float = Field(default=DEFAULT_RATINGS_AVERAGE)
    # weak references: no foreign keys, no cascades
    tour_id: PyUUID = Field(index=True, nullable=False)
    user_id: PyUUID = Field(index=True, nullable=False)


class Booking(Document, table=True):
    __tablename__ = "bookings"

    tour_id: PyUUID = Field(index=True, nullable=False)
    user_id: PyUUID = Field(index=True, nullable=False)
    price: float
    paid: bool = Field(default=True, nullable=False)
