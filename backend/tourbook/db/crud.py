"""
Generic persistence operations shared by every collection.

``apply_query`` binds a ``TranslatedQuery`` to a table: it validates field
names, coerces query-string values to column types and produces the
SQLAlchemy statement. Read-path visibility (secret tours, inactive users) is
an explicit stage, ``visible_filters``, applied by every read below.
"""

import math
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Type

import structlog
from sqlalchemy import asc, desc, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

from tourbook.core.errors import AppError
from tourbook.core.query import INTERNAL_FIELDS, FilterCondition, TranslatedQuery
from tourbook.db.models import Document, Tour, User

logger = structlog.get_logger(__name__)

_COMPARABLE_TYPES = (int, float, datetime)
_INT64_MAX = 2 ** 63 - 1

# Read-path visibility stages, keyed by model
_VISIBILITY: Dict[Type[Document], Callable[[], list]] = {
    Tour: lambda: [Tour.secret_tour.is_not(True)],
    User: lambda: [User.active.is_not(False)],
}


def visible_filters(model: Type[Document]) -> list:
    stage = _VISIBILITY.get(model)
    return stage() if stage else []


def _column(model: Type[Document], name: str):
    columns = model.__table__.columns
    if name not in columns or name in model.hidden_fields:
        raise AppError(f"Invalid field: {name}", 400)
    return columns[name]


def _python_type(column) -> type:
    try:
        return column.type.python_type
    except NotImplementedError:
        return object


def _parse_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in ("true", "1", "yes"):
        return True
    if text in ("false", "0", "no"):
        return False
    raise ValueError(raw)


def _coerce_int(raw: Any, exact: bool) -> Any:
    if isinstance(raw, bool):
        raise ValueError(raw)
    try:
        number = int(str(raw).strip())
    except ValueError:
        number = float(raw)
        if not math.isfinite(number):
            raise ValueError(raw)
        if number.is_integer():
            number = int(number)
        elif exact:
            raise ValueError(raw)
    if abs(number) > _INT64_MAX:
        raise ValueError(raw)
    return number


def coerce_value(column, raw: Any, exact: bool = True) -> Any:
    """Cast a raw query-string value to the column's Python type

    With ``exact=False`` (range comparisons) integer columns also accept
    fractional numbers, compared by value.
    """
    if isinstance(raw, (list, tuple)):
        return [coerce_value(column, item, exact) for item in raw]

    py_type = _python_type(column)
    try:
        if py_type in (dict, list, object):
            raise AppError(f"Cannot filter on field: {column.name}", 400)
        if py_type is bool:
            return _parse_bool(raw)
        if py_type is int:
            return _coerce_int(raw, exact)
        if isinstance(raw, py_type):
            return raw
        if py_type is datetime:
            return datetime.fromisoformat(str(raw))
        if py_type is uuid.UUID:
            return uuid.UUID(str(raw))
        if isinstance(py_type, type) and issubclass(py_type, Enum):
            return py_type(raw)
        return py_type(raw)
    except (TypeError, ValueError):
        raise AppError(f"Invalid value for {column.name}: {raw}", 400)


def _condition(model: Type[Document], condition: FilterCondition):
    column = _column(model, condition.field)
    attribute = getattr(model, condition.field)
    value = coerce_value(column, condition.value, exact=condition.op in ("eq", "in"))

    if condition.op == "eq":
        return attribute == value
    if condition.op == "in":
        return attribute.in_(value)

    if _python_type(column) not in _COMPARABLE_TYPES:
        raise AppError(f"Field {condition.field} does not support {condition.op}", 400)
    if condition.op == "gte":
        return attribute >= value
    if condition.op == "gt":
        return attribute > value
    if condition.op == "lte":
        return attribute <= value
    if condition.op == "lt":
        return attribute < value
    raise AppError(f"Unsupported filter operator: {condition.op}", 400)


def apply_query(stmt: Select, model: Type[Document], query: TranslatedQuery) -> Select:
    for condition in query.filters:
        stmt = stmt.where(_condition(model, condition))

    for name, direction in query.order:
        _column(model, name)
        attribute = getattr(model, name)
        stmt = stmt.order_by(desc(attribute) if direction == "desc" else asc(attribute))

    return stmt.offset(query.skip).limit(query.limit)


def resolve_fields(
    model: Type[Document],
    query: TranslatedQuery,
    extra: Iterable[str] = (),
) -> Optional[Set[str]]:
    """Validated inclusion set for output, or None for the default projection"""
    if query.fields is None:
        return None
    allowed = (set(model.__table__.columns.keys()) | set(model.computed_fields) | set(extra)) - model.hidden_fields
    unknown = [name for name in query.fields if name not in allowed]
    if unknown:
        raise AppError(f"Invalid field: {', '.join(unknown)}", 400)
    return set(query.fields) | {"id"}


def to_document(obj: Document, fields: Optional[Set[str]] = None) -> Dict[str, Any]:
    """Serialize a row, honouring hidden fields and the projection"""
    model = type(obj)
    data = obj.model_dump(mode="json", exclude=set(model.hidden_fields))
    for name in model.computed_fields:
        data[name] = getattr(obj, name)

    if fields is None:
        for name in INTERNAL_FIELDS:
            data.pop(name, None)
        return data
    return {key: value for key, value in data.items() if key in fields}


async def find_all(
    session: AsyncSession,
    model: Type[Document],
    query: TranslatedQuery,
    where: Sequence = (),
) -> List[Document]:
    stmt = select(model).where(*visible_filters(model), *where)
    stmt = apply_query(stmt, model, query)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def find_by_id(session: AsyncSession, model: Type[Document], doc_id: uuid.UUID) -> Optional[Document]:
    result = await session.execute(
        select(model).where(model.id == doc_id, *visible_filters(model))
    )
    return result.scalar_one_or_none()


async def find_one(session: AsyncSession, model: Type[Document], *where) -> Optional[Document]:
    result = await session.execute(
        select(model).where(*where, *visible_filters(model)).limit(1)
    )
    return result.scalars().first()


async def insert(session: AsyncSession, obj: Document) -> Document:
    try:
        session.add(obj)
        await session.commit()
        await session.refresh(obj)
    except IntegrityError:
        await session.rollback()
        logger.warning("insert_rejected", model=type(obj).__name__)
        raise
    logger.info("document_created", model=type(obj).__name__, id=str(obj.id))
    return obj


async def update_fields(session: AsyncSession, obj: Document, values: Dict[str, Any]) -> Document:
    model_name, doc_id = type(obj).__name__, str(obj.id)
    for name, value in values.items():
        setattr(obj, name, value)
    obj.version = (obj.version or 0) + 1
    try:
        session.add(obj)
        await session.commit()
        await session.refresh(obj)
    except IntegrityError:
        await session.rollback()
        logger.warning("update_rejected", model=model_name, id=doc_id)
        raise
    logger.info("document_updated", model=model_name, id=doc_id, version=obj.version)
    return obj


async def delete(session: AsyncSession, obj: Document) -> None:
    await session.delete(obj)
    await session.commit()
    logger.info("document_deleted", model=type(obj).__name__, id=str(obj.id))
