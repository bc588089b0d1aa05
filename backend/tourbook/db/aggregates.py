"""
Derived statistics over tours and reviews.

Tour.ratings_quantity / Tour.ratings_average are a materialized view over the
reviews of that tour. Writers of reviews follow a two-step protocol:

    tour_id = await capture_tour_id(session, review_id)   # before the mutation
    ...update or delete the review, commit...
    await calc_average_ratings(session, tour_id)            # after the commit

Creates skip the capture step because the new row carries its tour id.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tourbook.db.crud import visible_filters
from tourbook.db.models import DEFAULT_RATINGS_AVERAGE, Review, Tour, as_utc, round_rating

logger = structlog.get_logger(__name__)

TOP_RATED_THRESHOLD = 4.5
MONTHLY_PLAN_LIMIT = 12


class TourLocks:
    """Serializes rating recomputation per tour within this process.

    A tour's lock exists only while some task holds or awaits it.
    """

    def __init__(self):
        self._locks: Dict[UUID, asyncio.Lock] = {}
        self._holders: Dict[UUID, int] = {}

    @asynccontextmanager
    async def hold(self, tour_id: UUID):
        lock = self._locks.setdefault(tour_id, asyncio.Lock())
        self._holders[tour_id] = self._holders.get(tour_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[tour_id] -= 1
            if not self._holders[tour_id]:
                del self._holders[tour_id]
                del self._locks[tour_id]


tour_locks = TourLocks()


async def capture_tour_id(session: AsyncSession, review_id: UUID) -> Optional[UUID]:
    """Snapshot the owning tour of a review before it is mutated"""
    result = await session.execute(select(Review.tour_id).where(Review.id == review_id))
    return result.scalar_one_or_none()


async def calc_average_ratings(session: AsyncSession, tour_id: Optional[UUID]) -> Tuple[int, float]:
    """Recompute and persist the rating count/average of one tour"""
    if tour_id is None:
        return 0, DEFAULT_RATINGS_AVERAGE

    async with tour_locks.hold(tour_id):
        result = await session.execute(
            select(func.count(Review.id), func.avg(Review.rating)).where(Review.tour_id == tour_id)
        )
        quantity, average = result.one()

        if quantity:
            stats = (int(quantity), round_rating(average))
        else:
            # no reviews left: back to defaults, never a stale average
            stats = (0, DEFAULT_RATINGS_AVERAGE)

        await session.execute(
            update(Tour)
            .where(Tour.id == tour_id)
            .values(ratings_quantity=stats[0], ratings_average=stats[1])
        )
        await session.commit()

    logger.info("tour_ratings_synchronized", tour_id=str(tour_id), quantity=stats[0], average=stats[1])
    return stats


async def tour_stats(session: AsyncSession) -> List[Dict[str, Any]]:
    """Per-difficulty statistics of well rated tours, cheapest group first"""
    avg_price = func.avg(Tour.price)
    result = await session.execute(
        select(
            Tour.difficulty,
            func.count(Tour.id),
            func.sum(Tour.ratings_quantity),
            func.avg(Tour.ratings_average),
            avg_price,
            func.min(Tour.price),
            func.max(Tour.price),
        )
        .where(Tour.ratings_average >= TOP_RATED_THRESHOLD, *visible_filters(Tour))
        .group_by(Tour.difficulty)
        .order_by(avg_price)
    )

    stats = []
    for difficulty, num_tours, num_ratings, avg_rating, avg_price_value, min_price, max_price in result.all():
        stats.append({
            "difficulty": difficulty.value.upper(),
            "num_tours": num_tours,
            "num_ratings": int(num_ratings or 0),
            "avg_rating": round(float(avg_rating), 2),
            "avg_price": round(float(avg_price_value), 2),
            "min_price": min_price,
            "max_price": max_price,
        })
    return stats


async def monthly_plan(session: AsyncSession, year: int) -> List[Dict[str, Any]]:
    """Tour starts per month of ``year``, busiest month first"""
    result = await session.execute(
        select(Tour.name, Tour.start_dates).where(*visible_filters(Tour))
    )

    months: Dict[int, List[str]] = defaultdict(list)
    for name, start_dates in result.all():
        for raw in start_dates or []:
            start = as_utc(datetime.fromisoformat(raw)).astimezone(timezone.utc)
            if start.year == year:
                months[start.month].append(name)

    plan = [
        {"month": month, "num_tour_starts": len(names), "tours": names}
        for month, names in months.items()
    ]
    plan.sort(key=lambda item: (-item["num_tour_starts"], item["month"]))
    return plan[:MONTHLY_PLAN_LIMIT]
