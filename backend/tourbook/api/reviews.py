"""
Reviews API endpoints

Every write here keeps the owning tour's rating statistics in step: creates
recompute after the insert, updates and deletes capture the tour id first and
recompute once the mutation is committed.
"""

from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from tourbook.api.factory import HandlerFactory
from tourbook.api.populate import populate_authors
from tourbook.api.schemas import ReviewCreate, ReviewUpdate
from tourbook.core.errors import AppError
from tourbook.core.security import protect, restrict_to
from tourbook.db import aggregates, crud
from tourbook.db.models import Review, Tour, User, UserRole
from tourbook.db.session import get_session

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/reviews", tags=["reviews"], dependencies=[Depends(protect)])
tour_reviews_router = APIRouter(
    prefix="/tours/{tour_id}/reviews",
    tags=["reviews"],
    dependencies=[Depends(protect)],
)

reviews = HandlerFactory(Review, populate=populate_authors, populated_fields=("user",))

write_review = restrict_to(UserRole.USER)
manage_review = restrict_to(UserRole.USER, UserRole.ADMIN)


async def _create_review(
    session: AsyncSession,
    payload: ReviewCreate,
    user: User,
    tour_id: Optional[UUID],
):
    tour_id = tour_id or payload.tour_id
    if tour_id is None:
        raise AppError("Review must belong to a tour.", 400)
    if await crud.find_by_id(session, Tour, tour_id) is None:
        raise AppError("No tour found with that ID", 404)

    response = await reviews.create_one(session, {
        "review": payload.review,
        "rating": payload.rating,
        "tour_id": tour_id,
        "user_id": user.id,
    })
    await aggregates.calc_average_ratings(session, tour_id)
    return response


async def _owned_review(session: AsyncSession, review_id: UUID, user: User) -> Review:
    review = await reviews.get_document(session, review_id)
    if user.role != UserRole.ADMIN and review.user_id != user.id:
        raise AppError("You can only modify your own reviews", 403)
    return review


@router.get("")
async def get_all_reviews(request: Request, session: AsyncSession = Depends(get_session)):
    return await reviews.get_all(session, request.query_params)


@tour_reviews_router.get("")
async def get_tour_reviews(tour_id: UUID, request: Request, session: AsyncSession = Depends(get_session)):
    return await reviews.get_all(session, request.query_params, where=[Review.tour_id == tour_id])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_review(
    payload: ReviewCreate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(write_review),
):
    return await _create_review(session, payload, current_user, None)


@tour_reviews_router.post("", status_code=status.HTTP_201_CREATED)
async def create_tour_review(
    tour_id: UUID,
    payload: ReviewCreate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(write_review),
):
    return await _create_review(session, payload, current_user, tour_id)


@router.get("/{review_id}")
async def get_review(review_id: UUID, session: AsyncSession = Depends(get_session)):
    return await reviews.get_one(session, review_id)


@router.patch("/{review_id}")
async def update_review(
    review_id: UUID,
    payload: ReviewUpdate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(manage_review),
):
    review = await _owned_review(session, review_id, current_user)
    tour_id = await aggregates.capture_tour_id(session, review_id)

    values = payload.model_dump(exclude_unset=True, exclude_none=True)
    response = await reviews.update_one(session, review_id, values, obj=review)
    await aggregates.calc_average_ratings(session, tour_id)
    return response


@router.delete("/{review_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_review(
    review_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(manage_review),
):
    review = await _owned_review(session, review_id, current_user)
    tour_id = await aggregates.capture_tour_id(session, review_id)

    await reviews.delete_one(session, review_id, obj=review)
    await aggregates.calc_average_ratings(session, tour_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
