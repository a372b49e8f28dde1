"""
Process-local document store.

Useful for development and tests: no server required, same contract as the
Elasticsearch backend. Text matching is deliberately naive (token overlap with
field weights); ranking quality is the real search backend's job.
"""

from __future__ import annotations

import copy
import fnmatch
import re
import threading
from collections import Counter
from collections.abc import Iterator
from typing import Any

from .base import (
    BulkResult,
    Filter,
    NamespaceKind,
    QueryIntent,
    QueryKind,
    SearchHit,
    SearchRequest,
    SearchResult,
    SortBy,
)

# name is boosted highest, then type, then observations
FIELD_WEIGHTS = (("name", 3.0), ("entityType", 2.0), ("observations", 1.0))

_TOKEN = re.compile(r"\w+")
_BOOLEAN_SPLIT = re.compile(r"\s+(AND|OR|NOT)\s+")
_FUZZY_SUFFIX = re.compile(r"~\d*$")


def _tokens(text: str) -> list[str]:
    return _TOKEN.findall(text.lower())


def _field_text(doc: dict[str, Any], field: str) -> str:
    value = doc.get(field)
    if isinstance(value, list):
        return " ".join(str(v) for v in value)
    return str(value or "")


def _term_score(term: str, doc: dict[str, Any]) -> float:
    term = _FUZZY_SUFFIX.sub("", term.strip()).strip('"').lower()
    if not term:
        return 0.0
    score = 0.0
    for field, weight in FIELD_WEIGHTS:
        text = _field_text(doc, field).lower()
        if any(ch in term for ch in "*?"):
            hit = any(fnmatch.fnmatchcase(tok, term) for tok in _tokens(text))
        elif " " in term:
            hit = term in text
        else:
            hit = term in _tokens(text)
        if hit:
            score += weight
    return score


def _boolean_score(text: str, doc: dict[str, Any]) -> float:
    parts = _BOOLEAN_SPLIT.split(text)
    score = _term_score(parts[0], doc)
    for op, term in zip(parts[1::2], parts[2::2]):
        other = _term_score(term, doc)
        if op == "AND":
            score = score + other if score and other else 0.0
        elif op == "OR":
            score = score + other
        elif op == "NOT":
            score = score if not other else 0.0
    return score


def score_document(intent: QueryIntent, doc: dict[str, Any]) -> float:
    """Naive relevance of `doc` for `intent`; 0 means no match."""
    if intent.kind is QueryKind.WILDCARD:
        return 1.0
    if intent.kind is QueryKind.EXACT_NAME:
        if str(doc.get("name", "")).lower() == intent.text.lower():
            return 10.0
        return _term_score(intent.text, doc)
    if intent.kind in (QueryKind.BOOLEAN, QueryKind.FUZZY):
        return _boolean_score(intent.text, doc)
    return sum(_term_score(tok, doc) for tok in intent.text.split())


def _sort_key(sort_by: SortBy):
    if sort_by is SortBy.RECENT:
        return lambda hit: (hit.document.get("lastRead") or "",)
    if sort_by is SortBy.IMPORTANCE:
        return lambda hit: (
            bool(hit.document.get("isImportant")),
            float(hit.document.get("relevanceScore") or 0.0),
        )
    return lambda hit: (hit.score,)


class InMemoryDocumentStore:
    """Dict-backed `DocumentStore`. Thread-safe; every write is visible immediately."""

    def __init__(self) -> None:
        self._namespaces: dict[str, dict[str, dict[str, Any]]] = {}
        self._kinds: dict[str, NamespaceKind] = {}
        self._lock = threading.RLock()

    # Namespace management

    def ensure_namespace(self, namespace: str, kind: NamespaceKind) -> bool:
        with self._lock:
            if namespace in self._namespaces:
                return False
            self._namespaces[namespace] = {}
            self._kinds[namespace] = kind
            return True

    def namespace_exists(self, namespace: str) -> bool:
        with self._lock:
            return namespace in self._namespaces

    def drop_namespace(self, namespace: str) -> bool:
        with self._lock:
            self._kinds.pop(namespace, None)
            return self._namespaces.pop(namespace, None) is not None

    def list_namespaces(self, prefix: str) -> list[str]:
        with self._lock:
            return sorted(ns for ns in self._namespaces if ns.startswith(prefix))

    def _docs(self, namespace: str) -> dict[str, dict[str, Any]]:
        # writes to an unknown namespace create it, like an auto-creating index
        return self._namespaces.setdefault(namespace, {})

    # Documents

    def index(self, namespace: str, doc_id: str, document: dict[str, Any]) -> None:
        with self._lock:
            self._docs(namespace)[doc_id] = copy.deepcopy(document)

    def get(self, namespace: str, doc_id: str) -> dict[str, Any] | None:
        with self._lock:
            doc = self._namespaces.get(namespace, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def update(
        self,
        namespace: str,
        doc_id: str,
        *,
        set: dict[str, Any] | None = None,
        increment: dict[str, int | float] | None = None,
        append: dict[str, list[Any]] | None = None,
    ) -> dict[str, Any] | None:
        with self._lock:
            doc = self._namespaces.get(namespace, {}).get(doc_id)
            if doc is None:
                return None
            for key, value in (set or {}).items():
                doc[key] = copy.deepcopy(value)
            for key, delta in (increment or {}).items():
                doc[key] = (doc.get(key) or 0) + delta
            for key, values in (append or {}).items():
                doc[key] = list(doc.get(key) or []) + list(values)
            return copy.deepcopy(doc)

    def delete(self, namespace: str, doc_id: str) -> bool:
        with self._lock:
            return self._namespaces.get(namespace, {}).pop(doc_id, None) is not None

    def delete_by_query(self, namespace: str, filter: Filter) -> int:
        with self._lock:
            docs = self._namespaces.get(namespace, {})
            doomed = [doc_id for doc_id, doc in docs.items() if filter.matches(doc)]
            for doc_id in doomed:
                del docs[doc_id]
            return len(doomed)

    def bulk(self, namespace: str, documents: list[tuple[str, dict[str, Any]]]) -> BulkResult:
        with self._lock:
            docs = self._docs(namespace)
            for doc_id, document in documents:
                docs[doc_id] = copy.deepcopy(document)
            return BulkResult(succeeded=len(documents))

    # Queries

    def _matching(self, namespace: str, filter: Filter | None) -> list[tuple[str, dict[str, Any]]]:
        with self._lock:
            docs = self._namespaces.get(namespace, {})
            return [
                (doc_id, copy.deepcopy(doc))
                for doc_id, doc in docs.items()
                if filter is None or filter.matches(doc)
            ]

    def search(self, namespace: str, request: SearchRequest) -> SearchResult:
        hits = []
        for doc_id, doc in self._matching(namespace, request.filter):
            score = score_document(request.intent, doc)
            if score > 0:
                hits.append(SearchHit(id=doc_id, score=score, document=doc))
        hits.sort(key=_sort_key(request.sort_by), reverse=True)
        page = hits[request.offset : request.offset + request.limit]
        return SearchResult(total=len(hits), hits=page)

    def scan(self, namespace: str, filter: Filter | None = None) -> Iterator[dict[str, Any]]:
        for _doc_id, doc in self._matching(namespace, filter):
            yield doc

    def count(self, namespace: str, filter: Filter | None = None) -> int:
        return len(self._matching(namespace, filter))

    def aggregate(
        self, namespace: str, field: str, *, filter: Filter | None = None, size: int = 100
    ) -> dict[str, int]:
        counts = Counter(
            doc[field] for _doc_id, doc in self._matching(namespace, filter) if doc.get(field) is not None
        )
        return dict(counts.most_common(size))
