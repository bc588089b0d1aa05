from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from tourbook.db.models import DEFAULT_RATINGS_AVERAGE, Difficulty, UserRole


def _strip_required(value: str, label: str) -> str:
    if value is None or not value.strip():
        raise ValueError(f"{label} cannot be empty")
    return value.strip()


# ===== TOUR SCHEMAS =====

class GeoPoint(BaseModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(..., description="[longitude, latitude]")
    address: Optional[str] = None
    description: Optional[str] = None

    @field_validator('coordinates')
    @classmethod
    def validate_coordinates(cls, v):
        if len(v) != 2:
            raise ValueError("Coordinates must be [longitude, latitude]")
        lng, lat = v
        if not (-180 <= lng <= 180 and -90 <= lat <= 90):
            raise ValueError("Coordinates out of range")
        return v


class TourLocation(GeoPoint):
    day: Optional[int] = Field(None, ge=0)


class TourBase(BaseModel):
    @field_validator('name', check_fields=False)
    @classmethod
    def validate_name(cls, v):
        if v is None:
            return v
        v = v.strip()
        if len(v) < 10:
            raise ValueError("A tour name must have more or equal than 10 characters")
        if len(v) > 40:
            raise ValueError("A tour name must have less or equal than 40 characters")
        return v

    @field_validator('summary', 'description', check_fields=False)
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator('ratings_average', check_fields=False)
    @classmethod
    def validate_rating(cls, v):
        if v is not None and not 1 <= v <= 5:
            raise ValueError("Rating must be between 1.0 and 5.0")
        return v


class TourCreate(TourBase):
    name: str
    duration: int = Field(..., gt=0)
    max_group_size: int = Field(..., gt=0)
    difficulty: Difficulty
    ratings_average: float = DEFAULT_RATINGS_AVERAGE
    ratings_quantity: int = Field(0, ge=0)
    price: float = Field(..., gt=0)
    price_discount: Optional[float] = Field(None, ge=0)
    summary: str
    description: Optional[str] = None
    image_cover: str
    images: List[str] = []
    start_dates: List[datetime] = []
    secret_tour: bool = False
    start_location: Optional[GeoPoint] = None
    locations: List[TourLocation] = []
    guides: List[UUID] = []

    @field_validator('summary')
    @classmethod
    def validate_summary(cls, v):
        return _strip_required(v, "A tour summary")

    @model_validator(mode='after')
    def validate_discount(self):
        if self.price_discount is not None and self.price_discount >= self.price:
            raise ValueError(
                f"Discount price ({self.price_discount}) should be below the regular price"
            )
        return self


class TourUpdate(TourBase):
    name: Optional[str] = None
    duration: Optional[int] = Field(None, gt=0)
    max_group_size: Optional[int] = Field(None, gt=0)
    difficulty: Optional[Difficulty] = None
    ratings_average: Optional[float] = None
    ratings_quantity: Optional[int] = Field(None, ge=0)
    price: Optional[float] = Field(None, gt=0)
    price_discount: Optional[float] = Field(None, ge=0)
    summary: Optional[str] = None
    description: Optional[str] = None
    image_cover: Optional[str] = None
    images: Optional[List[str]] = None
    start_dates: Optional[List[datetime]] = None
    secret_tour: Optional[bool] = None
    start_location: Optional[GeoPoint] = None
    locations: Optional[List[TourLocation]] = None
    guides: Optional[List[UUID]] = None


# ===== REVIEW SCHEMAS =====

class ReviewCreate(BaseModel):
    review: str
    rating: float = Field(DEFAULT_RATINGS_AVERAGE, ge=1, le=5)
    tour_id: Optional[UUID] = None

    @field_validator('review')
    @classmethod
    def validate_review(cls, v):
        return _strip_required(v, "Review")


class ReviewUpdate(BaseModel):
    review: Optional[str] = None
    rating: Optional[float] = Field(None, ge=1, le=5)

    @field_validator('review')
    @classmethod
    def validate_review(cls, v):
        return None if v is None else _strip_required(v, "Review")


# ===== USER SCHEMAS =====

class PasswordPair(BaseModel):
    password: str = Field(..., min_length=8, max_length=15)
    password_confirm: str

    @model_validator(mode='after')
    def passwords_match(self):
        if self.password != self.password_confirm:
            raise ValueError("Passwords are not the same!")
        return self


class SignupRequest(PasswordPair):
    name: str = Field(..., max_length=20)
    email: EmailStr

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        return _strip_required(v, "Name")

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        return str(v).strip().lower()


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(PasswordPair):
    pass


class UpdatePasswordRequest(PasswordPair):
    password_current: str


class UpdateMeRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    # present only to be rejected with a pointer to /updateMyPassword
    password: Optional[str] = None
    password_confirm: Optional[str] = None

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        return str(v).strip().lower() if v is not None else v


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    photo: Optional[str] = None
    role: Optional[UserRole] = None

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        return str(v).strip().lower() if v is not None else v


# ===== BOOKING SCHEMAS =====

class BookingCreate(BaseModel):
    tour_id: UUID
    user_id: UUID
    price: float = Field(..., gt=0)
    paid: bool = True


class BookingUpdate(BaseModel):
    price: Optional[float] = Field(None, gt=0)
    paid: Optional[bool] = None
