"""Document store contract shared by the SQL and in-memory backends."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from clinic_scheduler.store.feed import ChangeFeed, ChangeHandler

ID_ATTRIBUTE = "$id"


@dataclass(frozen=True)
class Query:
    """
    A single query clause.

    Build instances with the classmethods (``Query.equal("doctor_id", "D1")``);
    backends interpret ``method`` and never see raw SQL.
    """

    method: str
    attribute: str | None = None
    values: tuple[Any, ...] = field(default_factory=tuple)

    @classmethod
    def equal(cls, attribute: str, value: Any) -> "Query":
        return cls("equal", attribute, (value,))

    @classmethod
    def not_equal(cls, attribute: str, value: Any) -> "Query":
        return cls("notEqual", attribute, (value,))

    @classmethod
    def greater_than(cls, attribute: str, value: Any) -> "Query":
        return cls("greaterThan", attribute, (value,))

    @classmethod
    def greater_than_equal(cls, attribute: str, value: Any) -> "Query":
        return cls("greaterThanEqual", attribute, (value,))

    @classmethod
    def less_than(cls, attribute: str, value: Any) -> "Query":
        return cls("lessThan", attribute, (value,))

    @classmethod
    def less_than_equal(cls, attribute: str, value: Any) -> "Query":
        return cls("lessThanEqual", attribute, (value,))

    @classmethod
    def or_(cls, *queries: "Query") -> "Query":
        """Match documents satisfying any of the given filter clauses."""
        return cls("or", None, tuple(queries))

    @classmethod
    def order_asc(cls, attribute: str) -> "Query":
        return cls("orderAsc", attribute)

    @classmethod
    def order_desc(cls, attribute: str) -> "Query":
        return cls("orderDesc", attribute)

    @classmethod
    def limit(cls, value: int) -> "Query":
        return cls("limit", None, (value,))

    @classmethod
    def offset(cls, value: int) -> "Query":
        return cls("offset", None, (value,))

    @property
    def is_filter(self) -> bool:
        """True for clauses that restrict the result set."""
        return self.method in FILTER_METHODS

    @property
    def value(self) -> Any:
        """First value of the clause."""
        return self.values[0] if self.values else None


FILTER_METHODS = frozenset(
    {
        "equal",
        "notEqual",
        "greaterThan",
        "greaterThanEqual",
        "lessThan",
        "lessThanEqual",
        "or",
    }
)


@dataclass
class DocumentList:
    """Result of a list query."""

    documents: list[dict[str, Any]]
    total: int


def split_queries(
    queries: list[Query],
) -> tuple[list[Query], list[Query], int | None, int]:
    """
    Separate filter, ordering and paging clauses.

    Returns:
        Tuple of (filters, orders, limit, offset); the last limit/offset wins
    """
    filters: list[Query] = []
    orders: list[Query] = []
    limit: int | None = None
    offset = 0

    for query in queries:
        if query.is_filter:
            filters.append(query)
        elif query.method in ("orderAsc", "orderDesc"):
            orders.append(query)
        elif query.method == "limit":
            limit = int(query.value)
        elif query.method == "offset":
            offset = int(query.value)
        else:
            raise ValueError(f"Unsupported query method: {query.method}")

    return filters, orders, limit, offset


class DocumentStore(ABC):
    """
    Asynchronous document store with a per-collection change feed.

    Every successful write publishes a raw change event to ``self.feed`` after
    it has been committed.
    """

    def __init__(self, feed: ChangeFeed | None = None):
        """Initialize store with an optional shared change feed."""
        self.feed = feed or ChangeFeed()

    @abstractmethod
    async def list_documents(
        self,
        collection: str,
        queries: list[Query] | None = None,
        limit: int = 25,
    ) -> DocumentList:
        """List documents matching all filter clauses."""

    @abstractmethod
    async def get_document(self, collection: str, document_id: str) -> dict[str, Any]:
        """Get a document, raising NotFoundException if absent."""

    @abstractmethod
    async def create_document(self, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create a document and return it with its assigned id."""

    @abstractmethod
    async def update_document(
        self,
        collection: str,
        document_id: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        """Apply a partial update atomically and return the full document."""

    @abstractmethod
    async def delete_document(self, collection: str, document_id: str) -> None:
        """Delete a document, raising NotFoundException if absent."""

    async def ping(self) -> bool:
        """Check whether the backend is reachable."""
        return True

    def subscribe_to_collection(
        self,
        collection: str,
        handler: ChangeHandler,
    ) -> Callable[[], None]:
        """
        Subscribe to create/update/delete events of a collection.

        Returns:
            Callable removing the subscription
        """
        return self.feed.subscribe(collection, handler)
