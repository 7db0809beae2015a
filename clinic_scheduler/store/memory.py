"""Dictionary-backed document store for tests and local development."""

import copy
import operator
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import structlog

from clinic_scheduler.core.exceptions import NotFoundException
from clinic_scheduler.store.base import ID_ATTRIBUTE, DocumentList, DocumentStore, Query, split_queries
from clinic_scheduler.store.feed import ChangeFeed

logger = structlog.get_logger(__name__)

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "greaterThan": operator.gt,
    "greaterThanEqual": operator.ge,
    "lessThan": operator.lt,
    "lessThanEqual": operator.le,
}


def _attribute(query: Query) -> str:
    return "id" if query.attribute == ID_ATTRIBUTE else str(query.attribute)


def matches(document: dict[str, Any], query: Query) -> bool:
    """Evaluate a single filter clause against a document."""
    if query.method == "or":
        return any(matches(document, sub_query) for sub_query in query.values)

    current = document.get(_attribute(query))

    if query.method == "equal":
        return current == query.value
    if query.method == "notEqual":
        return current != query.value

    comparator = _COMPARATORS.get(query.method)
    if comparator is None:
        raise ValueError(f"Unsupported filter method: {query.method}")
    if current is None:
        return False
    return comparator(current, query.value)


class InMemoryDocumentStore(DocumentStore):
    """Document store keeping every collection in process memory."""

    def __init__(self, feed: ChangeFeed | None = None):
        """Initialize an empty store."""
        super().__init__(feed)
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}

    def _collection(self, collection: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    async def list_documents(
        self,
        collection: str,
        queries: list[Query] | None = None,
        limit: int = 25,
    ) -> DocumentList:
        filters, orders, query_limit, offset = split_queries(queries or [])

        documents = [
            document
            for document in self._collection(collection).values()
            if all(matches(document, query) for query in filters)
        ]

        # Apply the least significant ordering first; sorts are stable
        for order in reversed(orders):
            key = _attribute(order)
            present = [document for document in documents if document.get(key) is not None]
            missing = [document for document in documents if document.get(key) is None]
            present.sort(key=lambda document: document[key], reverse=order.method == "orderDesc")
            documents = present + missing

        total = len(documents)
        page_size = query_limit if query_limit is not None else limit
        page = documents[offset : offset + page_size]

        return DocumentList(documents=copy.deepcopy(page), total=total)

    async def get_document(self, collection: str, document_id: str) -> dict[str, Any]:
        document = self._collection(collection).get(document_id)
        if document is None:
            raise NotFoundException(f"Document {document_id} not found in {collection}")
        return copy.deepcopy(document)

    async def create_document(self, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        document = copy.deepcopy(data)
        document["id"] = document.get("id") or uuid4().hex
        document.setdefault("created_at", datetime.now(UTC))

        self._collection(collection)[document["id"]] = document
        logger.debug("document_created", collection=collection, document_id=document["id"])

        await self.feed.publish(collection, "create", copy.deepcopy(document))
        return copy.deepcopy(document)

    async def update_document(
        self,
        collection: str,
        document_id: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        documents = self._collection(collection)
        if document_id not in documents:
            raise NotFoundException(f"Document {document_id} not found in {collection}")

        changes = {key: value for key, value in copy.deepcopy(data).items() if key != "id"}
        documents[document_id].update(changes)
        logger.debug("document_updated", collection=collection, document_id=document_id)

        document = copy.deepcopy(documents[document_id])
        await self.feed.publish(collection, "update", copy.deepcopy(document))
        return document

    async def delete_document(self, collection: str, document_id: str) -> None:
        document = self._collection(collection).pop(document_id, None)
        if document is None:
            raise NotFoundException(f"Document {document_id} not found in {collection}")
        logger.debug("document_deleted", collection=collection, document_id=document_id)

        await self.feed.publish(collection, "delete", document)
