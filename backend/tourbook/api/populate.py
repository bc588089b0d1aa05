"""
Reference population for API output.

Each helper takes ``(row, document)`` pairs from ``HandlerFactory.serialize``
and fills the referenced documents in with one extra query per reference.
"""

from collections import defaultdict
from typing import Dict, Iterable, List
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tourbook.core.errors import AppError
from tourbook.db.crud import to_document, visible_filters
from tourbook.db.models import Review, Tour, TourGuide, User

GUIDE_FIELDS = ("id", "name", "email", "photo", "role")
AUTHOR_FIELDS = ("id", "name", "photo")
BOOKING_USER_FIELDS = ("id", "name", "email")
BOOKING_TOUR_FIELDS = ("id", "name")


def _pick(doc: dict, fields: Iterable[str]) -> dict:
    return {name: doc.get(name) for name in fields}


async def _users_by_id(session: AsyncSession, ids: Iterable[UUID], fields: Iterable[str]) -> Dict[UUID, dict]:
    ids = set(ids)
    if not ids:
        return {}
    result = await session.execute(select(User).where(User.id.in_(ids), *visible_filters(User)))
    return {user.id: _pick(to_document(user), fields) for user in result.scalars().all()}


async def populate_guides(session: AsyncSession, pairs) -> None:
    tour_ids = [obj.id for obj, _ in pairs]
    result = await session.execute(
        select(TourGuide.tour_id, User)
        .join(User, User.id == TourGuide.user_id)
        .where(TourGuide.tour_id.in_(tour_ids), *visible_filters(User))
        .order_by(TourGuide.position)
    )
    guides: Dict[UUID, List[dict]] = defaultdict(list)
    for tour_id, user in result.all():
        guides[tour_id].append(_pick(to_document(user), GUIDE_FIELDS))
    for obj, doc in pairs:
        doc["guides"] = guides.get(obj.id, [])


async def populate_authors(session: AsyncSession, pairs) -> None:
    authors = await _users_by_id(session, [obj.user_id for obj, _ in pairs], AUTHOR_FIELDS)
    for obj, doc in pairs:
        doc["user"] = authors.get(obj.user_id)


async def populate_tour_detail(session: AsyncSession, pairs) -> None:
    """Guides plus the tour's reviews (single-tour reads)"""
    await populate_guides(session, pairs)
    for obj, doc in pairs:
        result = await session.execute(
            select(Review).where(Review.tour_id == obj.id).order_by(Review.created_at.desc())
        )
        reviews = list(result.scalars().all())
        review_docs = [to_document(review) for review in reviews]
        if reviews:
            await populate_authors(session, list(zip(reviews, review_docs)))
        doc["reviews"] = review_docs


async def populate_booking(session: AsyncSession, pairs) -> None:
    users = await _users_by_id(session, [obj.user_id for obj, _ in pairs], BOOKING_USER_FIELDS)
    tour_ids = {obj.tour_id for obj, _ in pairs}
    result = await session.execute(select(Tour.id, Tour.name).where(Tour.id.in_(tour_ids)))
    tours = {tour_id: {"id": str(tour_id), "name": name} for tour_id, name in result.all()}
    for obj, doc in pairs:
        doc["user"] = users.get(obj.user_id)
        doc["tour"] = tours.get(obj.tour_id)


async def check_guides(session: AsyncSession, guide_ids: List[UUID]) -> List[UUID]:
    """De-duplicated guide ids; unknown or inactive users are rejected"""
    ordered = list(dict.fromkeys(guide_ids))
    if ordered:
        result = await session.execute(
            select(User.id).where(User.id.in_(ordered), *visible_filters(User))
        )
        found = set(result.scalars().all())
        missing = [str(guide_id) for guide_id in ordered if guide_id not in found]
        if missing:
            raise AppError(f"No user found for guide id: {', '.join(missing)}", 400)
    return ordered


async def set_guides(session: AsyncSession, tour_id: UUID, ordered: List[UUID]) -> None:
    """Stage a replacement guide list; the caller's commit writes it with the tour"""
    await session.execute(delete(TourGuide).where(TourGuide.tour_id == tour_id))
    for position, guide_id in enumerate(ordered):
        session.add(TourGuide(tour_id=tour_id, user_id=guide_id, position=position))


async def clear_guides(session: AsyncSession, tour_id: UUID) -> None:
    await session.execute(delete(TourGuide).where(TourGuide.tour_id == tour_id))
