from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from ..docstore.base import DocumentStore, Filter, QueryIntent, QueryKind, SearchRequest, SortBy
from ..errors import InvalidArgumentError
from ..relevance.base import RelevanceFilter
from .models import Entity, Namespaces, Relation
from .relations import RelationStore
from .zones import ZoneRegistry

logger = logging.getLogger(__name__)

DEFAULT_RELEVANCE_THRESHOLD = 10

_BOOLEAN_OPERATOR = re.compile(r"\s(AND|OR|NOT)\s")


def classify_query(text: str | None) -> QueryIntent:
    """Decide how free text should be matched.

    >>> classify_query("*").kind
    <QueryKind.WILDCARD: 'wildcard'>
    >>> classify_query("python OR rust").kind
    <QueryKind.BOOLEAN: 'boolean'>
    """
    if text is None or not text.strip():
        raise InvalidArgumentError("Search query cannot be empty")
    query = text.strip()
    if query == "*":
        return QueryIntent(QueryKind.WILDCARD, query)
    if "~" in query:
        return QueryIntent(QueryKind.FUZZY, query)
    if _BOOLEAN_OPERATOR.search(f" {query} ") or any(ch in query for ch in "*?"):
        return QueryIntent(QueryKind.BOOLEAN, query)
    if not any(ch.isspace() for ch in query):
        return QueryIntent(QueryKind.EXACT_NAME, query)
    return QueryIntent(QueryKind.GENERIC, query)


def parse_sort(sort_by: str | SortBy | None) -> SortBy:
    if sort_by is None:
        return SortBy.RELEVANCE
    if isinstance(sort_by, SortBy):
        return sort_by
    try:
        return SortBy(str(sort_by).lower())
    except ValueError:
        raise InvalidArgumentError(
            f"Unknown sort '{sort_by}': use relevance, recent or importance"
        ) from None


@dataclass
class SearchResponse:
    entities: list[Entity] = field(default_factory=list)
    relations: list[Relation] = field(default_factory=list)
    total: int = 0


class SearchOrchestrator:
    def __init__(
        self,
        store: DocumentStore,
        namespaces: Namespaces,
        zones: ZoneRegistry,
        relations: RelationStore,
        relevance: RelevanceFilter | None = None,
        relevance_threshold: int = DEFAULT_RELEVANCE_THRESHOLD,
    ):
        self.store = store
        self.namespaces = namespaces
        self.zones = zones
        self.relations = relations
        self.relevance = relevance
        self.relevance_threshold = relevance_threshold

    def search(
        self,
        query: str,
        zone: str,
        entity_types: list[str] | None = None,
        sort_by: str | SortBy | None = "relevance",
        limit: int = 10,
        offset: int = 0,
        information_needed: str | None = None,
        reason: str | None = None,
        include_relations: bool = True,
    ) -> SearchResponse:
        intent = classify_query(query)
        sort = parse_sort(sort_by)
        if limit < 1 or offset < 0:
            raise InvalidArgumentError("limit must be >= 1 and offset >= 0")
        self.zones.ensure(zone)

        must: dict = {"zone": zone}
        types = [t for t in (entity_types or []) if t]
        if types:
            must["entityType"] = types
        result = self.store.search(
            self.namespaces.entities(zone),
            SearchRequest(intent=intent, filter=Filter(must=must), sort_by=sort, limit=limit, offset=offset),
        )
        entities = [Entity.from_document(hit.document, zone) for hit in result.hits]

        if information_needed:
            entities = self.apply_relevance(entities, information_needed, reason)

        relations: list[Relation] = []
        if include_relations and entities:
            relations = self.relations.list_for_entities([e.name for e in entities], zone)
        return SearchResponse(entities=entities, relations=relations, total=result.total)

    def apply_relevance(self, entities: list[Entity], need: str, reason: str | None = None) -> list[Entity]:
        """Drop entities the relevance filter scores below the threshold, most useful first.

        Any failure of the filter leaves `entities` untouched.
        """
        if not entities or self.relevance is None or not self.relevance.enabled:
            return entities
        try:
            scores = self.relevance.score([e.summary() for e in entities], need, reason)
        except Exception as e:
            logger.warning(f"Relevance filter failed, returning unfiltered results: {e}")
            return entities
        if scores is None:
            return entities

        kept = [
            (scores[e.name], position, e)
            for position, e in enumerate(entities)
            if e.name in scores and scores[e.name] >= self.relevance_threshold
        ]
        kept.sort(key=lambda item: (-item[0], item[1]))
        return [e for _score, _position, e in kept]
