"""
Elasticsearch implementation of the memory-zones document store.

One index per zone for entities, one shared index for relations and one for
zone metadata. Writes use ``refresh="wait_for"`` so that a save followed by a
read or a search always observes the write.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from elasticsearch import ApiError, BadRequestError, Elasticsearch, NotFoundError, TransportError
from elasticsearch.helpers import bulk as es_bulk
from elasticsearch.helpers import scan as es_scan

from ..errors import UpstreamUnavailableError
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

logger = logging.getLogger(__name__)

ANALYSIS = {
    "analyzer": {
        "entity_analyzer": {
            "type": "custom",
            "tokenizer": "standard",
            "filter": ["lowercase", "asciifolding"],
        }
    }
}

INDEX_CONFIGS: dict[NamespaceKind, dict[str, Any]] = {
    NamespaceKind.ENTITIES: {
        "settings": {"number_of_shards": 1, "number_of_replicas": 0, "analysis": ANALYSIS},
        "mappings": {
            "properties": {
                "type": {"type": "keyword"},
                "name": {
                    "type": "text",
                    "analyzer": "entity_analyzer",
                    "fields": {"keyword": {"type": "keyword"}},
                },
                "entityType": {"type": "keyword"},
                "observations": {"type": "text", "analyzer": "entity_analyzer"},
                "zone": {"type": "keyword"},
                "lastRead": {"type": "date"},
                "lastWrite": {"type": "date"},
                "readCount": {"type": "integer"},
                "isImportant": {"type": "boolean"},
                "relevanceScore": {"type": "float"},
            }
        },
    },
    NamespaceKind.RELATIONS: {
        "settings": {"number_of_shards": 1, "number_of_replicas": 0},
        "mappings": {
            "properties": {
                "type": {"type": "keyword"},
                "from": {"type": "keyword"},
                "fromZone": {"type": "keyword"},
                "to": {"type": "keyword"},
                "toZone": {"type": "keyword"},
                "relationType": {"type": "keyword"},
            }
        },
    },
    NamespaceKind.METADATA: {
        "settings": {"number_of_shards": 1, "number_of_replicas": 0},
        "mappings": {
            "properties": {
                "name": {"type": "text", "fields": {"keyword": {"type": "keyword"}}},
                "description": {"type": "text"},
                "shortDescription": {"type": "text"},
                "createdAt": {"type": "date"},
                "lastModified": {"type": "date"},
                "config": {"type": "object", "enabled": False},
            }
        },
    },
}

# text fields that need their keyword sub-field for exact matching
KEYWORD_FIELDS = {"name": "name.keyword"}

SEARCH_FIELDS = ["name^3", "entityType^2", "observations"]

UPDATE_SCRIPT = """
for (entry in params.set.entrySet()) {
  ctx._source[entry.getKey()] = entry.getValue();
}
for (entry in params.inc.entrySet()) {
  def current = ctx._source[entry.getKey()];
  ctx._source[entry.getKey()] = (current == null ? 0 : current) + entry.getValue();
}
for (entry in params.append.entrySet()) {
  if (ctx._source[entry.getKey()] == null) {
    ctx._source[entry.getKey()] = new ArrayList();
  }
  ctx._source[entry.getKey()].addAll(entry.getValue());
}
"""


# --- Query translation -------------------------------------------------------


def _term(field: str, value: Any) -> dict[str, Any]:
    field = KEYWORD_FIELDS.get(field, field)
    if isinstance(value, (list, tuple, set, frozenset)):
        return {"terms": {field: list(value)}}
    return {"term": {field: value}}


def filter_to_query(filter: Filter | None) -> dict[str, Any]:
    """Translate a backend-neutral `Filter` into an Elasticsearch bool query."""
    if filter is None or (not filter.must and not filter.should):
        return {"match_all": {}}
    query: dict[str, Any] = {"bool": {"filter": [_term(k, v) for k, v in filter.must.items()]}}
    if filter.should:
        query["bool"]["should"] = [
            {"bool": {"filter": [_term(k, v) for k, v in group.items()]}} for group in filter.should
        ]
        query["bool"]["minimum_should_match"] = 1
    return query


def intent_to_query(intent: QueryIntent) -> dict[str, Any]:
    """Translate a classified search intent into an Elasticsearch text query."""
    if intent.kind is QueryKind.WILDCARD:
        return {"match_all": {}}
    if intent.kind is QueryKind.EXACT_NAME:
        return {
            "bool": {
                "should": [
                    {"term": {"name.keyword": {"value": intent.text, "boost": 10}}},
                    {"match": {"name": {"query": intent.text, "fuzziness": "AUTO", "boost": 3}}},
                    {"multi_match": {"query": intent.text, "fields": SEARCH_FIELDS, "fuzziness": "AUTO"}},
                ],
                "minimum_should_match": 1,
            }
        }
    if intent.kind in (QueryKind.BOOLEAN, QueryKind.FUZZY):
        return {
            "query_string": {
                "query": intent.text,
                "fields": SEARCH_FIELDS,
                "default_operator": "OR",
                "analyze_wildcard": True,
            }
        }
    return {
        "multi_match": {
            "query": intent.text,
            "fields": SEARCH_FIELDS,
            "fuzziness": "AUTO",
        }
    }


def sort_clause(sort_by: SortBy) -> list[dict[str, Any]]:
    if sort_by is SortBy.RECENT:
        return [{"lastRead": {"order": "desc"}}]
    if sort_by is SortBy.IMPORTANCE:
        return [
            {"isImportant": {"order": "desc"}},
            {"relevanceScore": {"order": "desc"}},
        ]
    return [{"_score": {"order": "desc"}}]


def build_search_body(request: SearchRequest) -> dict[str, Any]:
    """Full keyword arguments for `Elasticsearch.search` (minus the index)."""
    bool_query: dict[str, Any] = {"must": [intent_to_query(request.intent)]}
    filter_query = filter_to_query(request.filter)
    if "bool" in filter_query:
        bool_query["filter"] = [filter_query]
    body: dict[str, Any] = {
        "query": {"bool": bool_query},
        "sort": sort_clause(request.sort_by),
        "size": request.limit,
        "from_": request.offset,
    }
    if request.highlight:
        body["highlight"] = {"fields": {"name": {}, "observations": {}, "entityType": {}}}
    return body


# --- Store ---------------------------------------------------------------------


@dataclass(slots=True)
class ElasticsearchConfig:
    node: str = "http://localhost:9200"
    username: str | None = None
    password: str | None = None
    api_key: str | None = None
    request_timeout: float = 30.0


@contextmanager
def _upstream(action: str):
    try:
        yield
    except (ApiError, TransportError) as e:
        logger.error(f"Elasticsearch {action} failed: {e}")
        raise UpstreamUnavailableError(f"Elasticsearch {action} failed: {e}") from e


class ElasticsearchDocumentStore:
    """`DocumentStore` backed by an Elasticsearch 8 cluster."""

    def __init__(self, cfg: ElasticsearchConfig, client: Elasticsearch | None = None):
        self.cfg = cfg
        if client is None:
            kwargs: dict[str, Any] = {"request_timeout": cfg.request_timeout}
            if cfg.api_key:
                kwargs["api_key"] = cfg.api_key
            elif cfg.username and cfg.password:
                kwargs["basic_auth"] = (cfg.username, cfg.password)
            client = Elasticsearch(cfg.node, **kwargs)
        self.client = client

    def close(self) -> None:
        self.client.close()

    # Namespace management

    def ensure_namespace(self, namespace: str, kind: NamespaceKind) -> bool:
        with _upstream(f"create index {namespace}"):
            if self.client.indices.exists(index=namespace):
                return False
            try:
                self.client.indices.create(index=namespace, **INDEX_CONFIGS[kind])
            except BadRequestError as e:
                if "resource_already_exists_exception" in str(e):
                    return False
                raise
        logger.info(f"Created index: {namespace}")
        return True

    def namespace_exists(self, namespace: str) -> bool:
        with _upstream(f"check index {namespace}"):
            return bool(self.client.indices.exists(index=namespace))

    def drop_namespace(self, namespace: str) -> bool:
        with _upstream(f"delete index {namespace}"):
            try:
                self.client.indices.delete(index=namespace)
            except NotFoundError:
                return False
        logger.info(f"Deleted index: {namespace}")
        return True

    def list_namespaces(self, prefix: str) -> list[str]:
        with _upstream("list indices"):
            response = self.client.indices.get(index=f"{prefix}*", allow_no_indices=True)
        return sorted(name for name in response.keys() if name.startswith(prefix))

    # Documents

    def index(self, namespace: str, doc_id: str, document: dict[str, Any]) -> None:
        with _upstream(f"index {namespace}/{doc_id}"):
            self.client.index(index=namespace, id=doc_id, document=document, refresh="wait_for")

    def get(self, namespace: str, doc_id: str) -> dict[str, Any] | None:
        with _upstream(f"get {namespace}/{doc_id}"):
            try:
                response = self.client.get(index=namespace, id=doc_id)
            except NotFoundError:
                return None
        return response["_source"]

    def update(
        self,
        namespace: str,
        doc_id: str,
        *,
        set: dict[str, Any] | None = None,
        increment: dict[str, int | float] | None = None,
        append: dict[str, list[Any]] | None = None,
    ) -> dict[str, Any] | None:
        script = {
            "source": UPDATE_SCRIPT,
            "lang": "painless",
            "params": {"set": set or {}, "inc": increment or {}, "append": append or {}},
        }
        with _upstream(f"update {namespace}/{doc_id}"):
            try:
                response = self.client.update(
                    index=namespace,
                    id=doc_id,
                    script=script,
                    source=True,
                    refresh="wait_for",
                    retry_on_conflict=3,
                )
            except NotFoundError:
                return None
        return response["get"]["_source"]

    def delete(self, namespace: str, doc_id: str) -> bool:
        with _upstream(f"delete {namespace}/{doc_id}"):
            try:
                self.client.delete(index=namespace, id=doc_id, refresh="wait_for")
            except NotFoundError:
                return False
        return True

    def delete_by_query(self, namespace: str, filter: Filter) -> int:
        with _upstream(f"delete_by_query {namespace}"):
            response = self.client.delete_by_query(
                index=namespace,
                query=filter_to_query(filter),
                refresh=True,
                conflicts="proceed",
                ignore_unavailable=True,
            )
        return int(response.get("deleted", 0))

    def bulk(self, namespace: str, documents: list[tuple[str, dict[str, Any]]]) -> BulkResult:
        if not documents:
            return BulkResult()
        actions = (
            {"_op_type": "index", "_index": namespace, "_id": doc_id, "_source": doc}
            for doc_id, doc in documents
        )
        with _upstream(f"bulk {namespace}"):
            succeeded, errors = es_bulk(
                self.client, actions, refresh="wait_for", raise_on_error=False, stats_only=False
            )
        if errors:
            logger.warning(f"Bulk write to {namespace}: {len(errors)} document(s) rejected")
        return BulkResult(succeeded=succeeded, errors=list(errors))

    # Queries

    def search(self, namespace: str, request: SearchRequest) -> SearchResult:
        with _upstream(f"search {namespace}"):
            response = self.client.search(
                index=namespace, ignore_unavailable=True, **build_search_body(request)
            )
        hits = response["hits"]
        return SearchResult(
            total=int(hits["total"]["value"]),
            hits=[
                SearchHit(
                    id=h["_id"],
                    score=float(h.get("_score") or 0.0),
                    document=h["_source"],
                    highlights=h.get("highlight"),
                )
                for h in hits["hits"]
            ],
        )

    def scan(self, namespace: str, filter: Filter | None = None) -> Iterator[dict[str, Any]]:
        with _upstream(f"scan {namespace}"):
            for hit in es_scan(
                self.client,
                index=namespace,
                query={"query": filter_to_query(filter)},
                ignore_unavailable=True,
            ):
                yield hit["_source"]

    def count(self, namespace: str, filter: Filter | None = None) -> int:
        with _upstream(f"count {namespace}"):
            response = self.client.count(
                index=namespace, query=filter_to_query(filter), ignore_unavailable=True
            )
        return int(response["count"])

    def aggregate(
        self, namespace: str, field: str, *, filter: Filter | None = None, size: int = 100
    ) -> dict[str, int]:
        with _upstream(f"aggregate {namespace}.{field}"):
            response = self.client.search(
                index=namespace,
                size=0,
                query=filter_to_query(filter),
                aggs={"buckets": {"terms": {"field": KEYWORD_FIELDS.get(field, field), "size": size}}},
                ignore_unavailable=True,
            )
        buckets = (response.get("aggregations") or {}).get("buckets", {}).get("buckets", [])
        return {b["key"]: b["doc_count"] for b in buckets}
