"""Document store implementations."""

from .base import (
    BulkResult,
    DocumentStore,
    Filter,
    NamespaceKind,
    QueryIntent,
    QueryKind,
    SearchHit,
    SearchRequest,
    SearchResult,
    SortBy,
)
from .memory import InMemoryDocumentStore

__all__ = [
    "BulkResult",
    "DocumentStore",
    "Filter",
    "InMemoryDocumentStore",
    "NamespaceKind",
    "QueryIntent",
    "QueryKind",
    "SearchHit",
    "SearchRequest",
    "SearchResult",
    "SortBy",
]
