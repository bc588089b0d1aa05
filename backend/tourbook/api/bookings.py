"""
Bookings API endpoints
"""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from tourbook.api.factory import HandlerFactory
from tourbook.api.populate import populate_booking
from tourbook.api.schemas import BookingCreate, BookingUpdate
from tourbook.core.errors import AppError
from tourbook.core.security import protect, restrict_to
from tourbook.db import crud
from tourbook.db.models import Booking, Tour, User, UserRole
from tourbook.db.session import get_session

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/bookings", tags=["bookings"], dependencies=[Depends(protect)])

bookings = HandlerFactory(Booking, populate=populate_booking, populated_fields=("user", "tour"))

manage_bookings = restrict_to(UserRole.ADMIN, UserRole.LEAD_GUIDE)


@router.get("/my")
async def get_my_bookings(
    request: Request,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(protect),
):
    return await bookings.get_all(session, request.query_params, where=[Booking.user_id == current_user.id])


@router.get("")
async def get_all_bookings(
    request: Request,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(manage_bookings),
):
    return await bookings.get_all(session, request.query_params)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(manage_bookings),
):
    if await crud.find_by_id(session, Tour, payload.tour_id) is None:
        raise AppError("No tour found with that ID", 404)
    if await crud.find_by_id(session, User, payload.user_id) is None:
        raise AppError("No user found with that ID", 404)

    return await bookings.create_one(session, payload.model_dump())


@router.get("/{booking_id}")
async def get_booking(
    booking_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(manage_bookings),
):
    return await bookings.get_one(session, booking_id)


@router.patch("/{booking_id}")
async def update_booking(
    booking_id: UUID,
    payload: BookingUpdate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(manage_bookings),
):
    values = payload.model_dump(exclude_unset=True, exclude_none=True)
    return await bookings.update_one(session, booking_id, values)


@router.delete("/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_booking(
    booking_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(manage_bookings),
):
    await bookings.delete_one(session, booking_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
