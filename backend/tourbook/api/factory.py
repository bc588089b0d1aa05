"""
Generic CRUD handlers

``HandlerFactory`` wraps one table with the list/read/create/update/delete
operations every collection shares. Routers call it with an open session and
add their own guards, hooks and populate steps around it.
"""

from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Type
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from tourbook.core.errors import AppError
from tourbook.core.query import DEFAULT_SORT, QueryTranslator, TranslatedQuery
from tourbook.core.settings import get_settings
from tourbook.db import crud
from tourbook.db.models import Document

logger = structlog.get_logger(__name__)

NOT_FOUND_MESSAGE = "No document found with that ID"

Pairs = List[Tuple[Document, Dict[str, Any]]]
Populate = Callable[[AsyncSession, Pairs], Awaitable[None]]


def success(data: Any, results: Optional[int] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"status": "success"}
    if results is not None:
        body["results"] = results
    body["data"] = {"doc": data}
    return body


class HandlerFactory:
    def __init__(
        self,
        model: Type[Document],
        populate: Optional[Populate] = None,
        populated_fields: Iterable[str] = (),
        default_sort: str = DEFAULT_SORT,
    ):
        self.model = model
        self.populate = populate
        self.populated_fields = tuple(populated_fields)
        self.default_sort = default_sort

    def translate(self, params: Any) -> TranslatedQuery:
        settings = get_settings()
        return QueryTranslator(
            params,
            default_sort=self.default_sort,
            default_limit=settings.DEFAULT_PAGE_LIMIT,
            max_limit=settings.MAX_PAGE_LIMIT,
        ).translate()

    async def serialize(
        self,
        session: AsyncSession,
        objs: Sequence[Document],
        fields: Optional[Set[str]] = None,
        populate: Optional[Populate] = None,
    ) -> List[Dict[str, Any]]:
        docs = [crud.to_document(obj, fields) for obj in objs]
        populate = populate or self.populate
        if populate and objs:
            await populate(session, list(zip(objs, docs)))
        if fields is not None:
            docs = [{key: value for key, value in doc.items() if key in fields} for doc in docs]
        return docs

    async def get_document(self, session: AsyncSession, doc_id: UUID) -> Document:
        obj = await crud.find_by_id(session, self.model, doc_id)
        if obj is None:
            raise AppError(NOT_FOUND_MESSAGE, 404)
        return obj

    async def get_all(
        self,
        session: AsyncSession,
        params: Any,
        where: Sequence = (),
    ) -> Dict[str, Any]:
        query = self.translate(params)
        fields = crud.resolve_fields(self.model, query, extra=self.populated_fields)
        objs = await crud.find_all(session, self.model, query, where=where)
        docs = await self.serialize(session, objs, fields)
        return success(docs, results=len(docs))

    async def get_one(
        self,
        session: AsyncSession,
        doc_id: UUID,
        populate: Optional[Populate] = None,
    ) -> Dict[str, Any]:
        obj = await self.get_document(session, doc_id)
        docs = await self.serialize(session, [obj], populate=populate)
        return success(docs[0])

    async def create_one(self, session: AsyncSession, values: Dict[str, Any]) -> Dict[str, Any]:
        obj = await crud.insert(session, self.model(**values))
        docs = await self.serialize(session, [obj])
        return success(docs[0])

    async def update_one(
        self,
        session: AsyncSession,
        doc_id: UUID,
        values: Dict[str, Any],
        obj: Optional[Document] = None,
    ) -> Dict[str, Any]:
        if obj is None:
            obj = await self.get_document(session, doc_id)
        obj = await crud.update_fields(session, obj, values)
        docs = await self.serialize(session, [obj])
        return success(docs[0])

    async def delete_one(self, session: AsyncSession, doc_id: UUID, obj: Optional[Document] = None) -> None:
        if obj is None:
            obj = await self.get_document(session, doc_id)
        await crud.delete(session, obj)
