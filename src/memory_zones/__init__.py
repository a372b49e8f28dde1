"""Zoned knowledge-graph memory on top of a document store.

Entities and relations live in independently addressable zones. The engine
handles identity, recency bookkeeping, bounded traversal and zone
set-operations; text search and scoring are delegated to the backend.
"""

__version__ = "0.1.0"
