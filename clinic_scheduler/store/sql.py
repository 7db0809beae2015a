"""SQLAlchemy Core implementation of the document store."""

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import structlog
from sqlalchemy import ColumnElement, Table, delete, func, insert, or_, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_scheduler.core.exceptions import NotFoundException
from clinic_scheduler.models.appointments import appointments
from clinic_scheduler.store.base import ID_ATTRIBUTE, DocumentList, DocumentStore, Query, split_queries
from clinic_scheduler.store.feed import ChangeFeed

logger = structlog.get_logger(__name__)

DEFAULT_TABLES: dict[str, Table] = {"appointments": appointments}


class SQLDocumentStore(DocumentStore):
    """Document store mapping collections onto SQL tables."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tables: dict[str, Table] | None = None,
        feed: ChangeFeed | None = None,
    ):
        """
        Initialize store.

        Args:
            session_factory: Factory for async sessions; one session per operation
            tables: Collection name to table mapping
            feed: Change feed receiving committed writes
        """
        super().__init__(feed)
        self.session_factory = session_factory
        self.tables = dict(tables or DEFAULT_TABLES)

    def _table(self, collection: str) -> Table:
        try:
            return self.tables[collection]
        except KeyError:
            raise NotFoundException(f"Collection {collection} not found") from None

    @staticmethod
    def _column(table: Table, attribute: str | None) -> ColumnElement[Any]:
        name = "id" if attribute == ID_ATTRIBUTE else attribute
        if name is None or name not in table.c:
            raise ValueError(f"Unknown attribute for {table.name}: {attribute}")
        return table.c[name]

    def _condition(self, table: Table, query: Query) -> ColumnElement[bool]:
        if query.method == "or":
            return or_(*(self._condition(table, sub_query) for sub_query in query.values))

        column = self._column(table, query.attribute)
        value = query.value

        if query.method == "equal":
            return column == value
        if query.method == "notEqual":
            # NULL never compares unequal in SQL; absent fields count as different
            return or_(column != value, column.is_(None))
        if query.method == "greaterThan":
            return column > value
        if query.method == "greaterThanEqual":
            return column >= value
        if query.method == "lessThan":
            return column < value
        if query.method == "lessThanEqual":
            return column <= value

        raise ValueError(f"Unsupported filter method: {query.method}")

    async def list_documents(
        self,
        collection: str,
        queries: list[Query] | None = None,
        limit: int = 25,
    ) -> DocumentList:
        table = self._table(collection)
        filters, orders, query_limit, offset = split_queries(queries or [])
        conditions = [self._condition(table, query) for query in filters]

        count_stmt = select(func.count()).select_from(table).where(*conditions)

        stmt = select(table).where(*conditions)
        for order in orders:
            column = self._column(table, order.attribute)
            stmt = stmt.order_by(column.desc() if order.method == "orderDesc" else column.asc())
        stmt = stmt.limit(query_limit if query_limit is not None else limit).offset(offset)

        async with self.session_factory() as session:
            total = (await session.execute(count_stmt)).scalar() or 0
            rows = (await session.execute(stmt)).fetchall()

        return DocumentList(documents=[dict(row._mapping) for row in rows], total=total)

    async def get_document(self, collection: str, document_id: str) -> dict[str, Any]:
        table = self._table(collection)
        stmt = select(table).where(table.c.id == document_id)

        async with self.session_factory() as session:
            row = (await session.execute(stmt)).fetchone()

        if not row:
            raise NotFoundException(f"Document {document_id} not found in {collection}")
        return dict(row._mapping)

    async def create_document(self, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        table = self._table(collection)
        values = dict(data)
        values["id"] = values.get("id") or str(uuid4())
        values.setdefault("created_at", datetime.now(UTC))

        stmt = insert(table).values(**values).returning(table)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            row = result.fetchone()
            await session.commit()

        document = dict(row._mapping)
        logger.debug("document_created", collection=collection, document_id=document["id"])

        await self.feed.publish(collection, "create", dict(document))
        return document

    async def update_document(
        self,
        collection: str,
        document_id: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        table = self._table(collection)
        values = {key: value for key, value in data.items() if key != "id"}
        if not values:
            return await self.get_document(collection, document_id)

        stmt = update(table).where(table.c.id == document_id).values(**values).returning(table)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            row = result.fetchone()
            if not row:
                await session.rollback()
                raise NotFoundException(f"Document {document_id} not found in {collection}")
            await session.commit()

        document = dict(row._mapping)
        logger.debug("document_updated", collection=collection, document_id=document_id)

        await self.feed.publish(collection, "update", dict(document))
        return document

    async def delete_document(self, collection: str, document_id: str) -> None:
        table = self._table(collection)
        stmt = delete(table).where(table.c.id == document_id).returning(table)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            row = result.fetchone()
            if not row:
                await session.rollback()
                raise NotFoundException(f"Document {document_id} not found in {collection}")
            await session.commit()

        logger.debug("document_deleted", collection=collection, document_id=document_id)
        await self.feed.publish(collection, "delete", dict(row._mapping))

    async def ping(self) -> bool:
        """Check database connectivity."""
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception:
            return False
