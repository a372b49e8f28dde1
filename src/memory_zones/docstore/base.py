"""
Document store abstractions for memory-zones.

The graph engine talks to its backend only through the `DocumentStore`
protocol below. Queries are expressed as backend-neutral filters and search
intents; each backend translates them into its own query language.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol


class NamespaceKind(Enum):
    """What a namespace holds. Backends use it to pick mappings."""
    ENTITIES = "entities"
    RELATIONS = "relations"
    METADATA = "metadata"


class QueryKind(Enum):
    """How free text should be matched against entity documents."""
    WILDCARD = "wildcard"      # "*": match everything
    EXACT_NAME = "exact_name"  # single token, biased towards the name field
    BOOLEAN = "boolean"        # AND / OR / NOT or wildcard syntax
    FUZZY = "fuzzy"            # "term~N" style fuzzy or proximity syntax
    GENERIC = "generic"        # multi-field fuzzy match


@dataclass(frozen=True)
class QueryIntent:
    kind: QueryKind
    text: str


class SortBy(Enum):
    RELEVANCE = "relevance"
    RECENT = "recent"
    IMPORTANCE = "importance"


@dataclass(frozen=True)
class Filter:
    """Exact-match conditions.

    `must` is a conjunction of ``field == value`` (a list value means "field is
    one of"). `should` holds alternative conjunctions of the same shape; when
    present at least one of them has to match as well.
    """

    must: dict[str, Any] = field(default_factory=dict)
    should: tuple[dict[str, Any], ...] = ()

    def matches(self, doc: dict[str, Any]) -> bool:
        if not _conjunction_matches(self.must, doc):
            return False
        if self.should:
            return any(_conjunction_matches(group, doc) for group in self.should)
        return True


def _conjunction_matches(conditions: dict[str, Any], doc: dict[str, Any]) -> bool:
    for key, expected in conditions.items():
        actual = doc.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


@dataclass
class SearchRequest:
    intent: QueryIntent
    filter: Filter = field(default_factory=Filter)
    sort_by: SortBy = SortBy.RELEVANCE
    limit: int = 10
    offset: int = 0
    highlight: bool = False


@dataclass
class SearchHit:
    id: str
    score: float
    document: dict[str, Any]
    highlights: dict[str, list[str]] | None = None


@dataclass
class SearchResult:
    total: int
    hits: list[SearchHit] = field(default_factory=list)


@dataclass
class BulkResult:
    succeeded: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)


class DocumentStore(Protocol):
    """Abstraction for the backing document store / search index.

    Every write waits until it is visible to subsequent reads and searches.
    Backend failures surface as `UpstreamUnavailableError`.
    """

    def ensure_namespace(self, namespace: str, kind: NamespaceKind) -> bool: ...

    def namespace_exists(self, namespace: str) -> bool: ...

    def drop_namespace(self, namespace: str) -> bool: ...

    def list_namespaces(self, prefix: str) -> list[str]: ...

    def index(self, namespace: str, doc_id: str, document: dict[str, Any]) -> None: ...

    def get(self, namespace: str, doc_id: str) -> dict[str, Any] | None: ...

    def update(
        self,
        namespace: str,
        doc_id: str,
        *,
        set: dict[str, Any] | None = None,
        increment: dict[str, int | float] | None = None,
        append: dict[str, list[Any]] | None = None,
    ) -> dict[str, Any] | None: ...

    def delete(self, namespace: str, doc_id: str) -> bool: ...

    def delete_by_query(self, namespace: str, filter: Filter) -> int: ...

    def search(self, namespace: str, request: SearchRequest) -> SearchResult: ...

    def scan(self, namespace: str, filter: Filter | None = None) -> Iterator[dict[str, Any]]: ...

    def count(self, namespace: str, filter: Filter | None = None) -> int: ...

    def bulk(self, namespace: str, documents: list[tuple[str, dict[str, Any]]]) -> BulkResult: ...

    def aggregate(
        self, namespace: str, field: str, *, filter: Filter | None = None, size: int = 100
    ) -> dict[str, int]: ...
