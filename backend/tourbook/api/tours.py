"""
Tours API endpoints
"""

from datetime import timezone
from typing import Any, Dict
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Request, Response, status
from slugify import slugify
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tourbook.api.factory import HandlerFactory, success
from tourbook.api.populate import check_guides, clear_guides, populate_guides, populate_tour_detail, set_guides
from tourbook.api.schemas import TourCreate, TourUpdate
from tourbook.core.errors import AppError
from tourbook.core.geo import distance_between, parse_latlng, parse_unit, point_of
from tourbook.core.security import restrict_to
from tourbook.db import aggregates, crud
from tourbook.db.models import Tour, User, UserRole, as_utc, round_rating
from tourbook.db.session import get_session

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/tours", tags=["tours"])

tours = HandlerFactory(Tour, populate=populate_guides, populated_fields=("guides",))

TOP_FIVE_CHEAP = {
    "limit": "5",
    "sort": "-ratings_average,price",
    "fields": "name,price,ratings_average,summary,difficulty",
}

manage_tours = restrict_to(UserRole.ADMIN, UserRole.LEAD_GUIDE)


def _storable(payload, fields) -> Dict[str, Any]:
    """Schema values in column form: JSON columns get plain data, datetimes ISO text"""
    values = payload.model_dump(include=fields, exclude_unset=True)
    if "start_dates" in values and values["start_dates"] is not None:
        values["start_dates"] = [
            as_utc(start).astimezone(timezone.utc).isoformat() for start in payload.start_dates
        ]
    if "start_location" in values and payload.start_location is not None:
        values["start_location"] = payload.start_location.model_dump(exclude_none=True)
    if "locations" in values and payload.locations is not None:
        values["locations"] = [location.model_dump(exclude_none=True) for location in payload.locations]
    if values.get("ratings_average") is not None:
        values["ratings_average"] = round_rating(values["ratings_average"])
    return values


@router.get("")
async def get_all_tours(request: Request, session: AsyncSession = Depends(get_session)):
    return await tours.get_all(session, request.query_params)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_tour(
    payload: TourCreate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(manage_tours),
):
    guide_ids = await check_guides(session, payload.guides)
    values = _storable(payload, set(TourCreate.model_fields) - {"guides"})
    # defaults are not "set" but still belong on the row
    for name in ("images", "start_dates", "locations"):
        values.setdefault(name, [])
    values["slug"] = slugify(payload.name)

    tour = Tour(**values)
    if guide_ids:
        await set_guides(session, tour.id, guide_ids)
    tour = await crud.insert(session, tour)

    logger.info("tour_created", tour_id=str(tour.id), created_by=str(current_user.id))
    docs = await tours.serialize(session, [tour])
    return success(docs[0])


@router.get("/top-five-cheap")
async def top_five_cheap(request: Request, session: AsyncSession = Depends(get_session)):
    params = [(key, value) for key, value in request.query_params.multi_items() if key not in TOP_FIVE_CHEAP]
    params.extend(TOP_FIVE_CHEAP.items())
    return await tours.get_all(session, params)


@router.get("/tour-stats")
async def get_tour_stats(session: AsyncSession = Depends(get_session)):
    stats = await aggregates.tour_stats(session)
    return {"status": "success", "data": {"stats": stats}}


@router.get("/monthly-plan/{year}")
async def get_monthly_plan(
    year: int,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(restrict_to(UserRole.ADMIN, UserRole.LEAD_GUIDE, UserRole.GUIDE)),
):
    plan = await aggregates.monthly_plan(session, year)
    return {"status": "success", "data": {"plan": plan}}


async def _located_tours(session: AsyncSession):
    result = await session.execute(
        select(Tour).where(Tour.start_location.is_not(None), *crud.visible_filters(Tour))
    )
    for tour in result.scalars().all():
        point = point_of(tour.start_location)
        if point is not None:
            yield tour, point


@router.get("/tours-within/{distance}/center/{latlng}/unit/{unit}")
async def get_tours_within(
    distance: float,
    latlng: str,
    unit: str,
    session: AsyncSession = Depends(get_session),
):
    center = parse_latlng(latlng)
    unit = parse_unit(unit)
    if distance < 0:
        raise AppError("Distance must not be negative.", 400)

    within = [
        tour async for tour, point in _located_tours(session)
        if distance_between(center, point, unit) <= distance
    ]
    docs = await tours.serialize(session, within)
    return success(docs, results=len(docs))


@router.get("/distances/{latlng}/unit/{unit}")
async def get_distances(latlng: str, unit: str, session: AsyncSession = Depends(get_session)):
    origin = parse_latlng(latlng)
    unit = parse_unit(unit)

    distances = [
        {"id": str(tour.id), "name": tour.name, "distance": round(distance_between(origin, point, unit), 3)}
        async for tour, point in _located_tours(session)
    ]
    distances.sort(key=lambda item: item["distance"])
    return success(distances)


@router.get("/{tour_id}")
async def get_tour(tour_id: UUID, session: AsyncSession = Depends(get_session)):
    return await tours.get_one(session, tour_id, populate=populate_tour_detail)


@router.patch("/{tour_id}")
async def update_tour(
    tour_id: UUID,
    payload: TourUpdate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(manage_tours),
):
    tour = await tours.get_document(session, tour_id)
    values = _storable(payload, set(TourUpdate.model_fields) - {"guides"})

    required = ("name", "duration", "max_group_size", "difficulty", "price", "summary", "image_cover",
                "images", "start_dates", "locations", "secret_tour")
    for name in required:
        if name in values and values[name] is None:
            raise AppError(f"Invalid input data. {name}: field required", 400)

    price = values.get("price", tour.price)
    discount = values.get("price_discount", tour.price_discount)
    if discount is not None and discount >= price:
        raise AppError(f"Discount price ({discount}) should be below the regular price", 400)

    if values.get("name") and values["name"] != tour.name:
        values["slug"] = slugify(values["name"])

    if payload.guides is not None:
        await set_guides(session, tour.id, await check_guides(session, payload.guides))

    return await tours.update_one(session, tour_id, values, obj=tour)


@router.delete("/{tour_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tour(
    tour_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(manage_tours),
):
    tour = await tours.get_document(session, tour_id)
    await clear_guides(session, tour.id)
    await tours.delete_one(session, tour_id, obj=tour)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
