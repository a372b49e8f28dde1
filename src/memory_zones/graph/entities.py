"""
Zone-scoped entity storage with read/relevance bookkeeping.

Reading an entity through `get_tracked` is itself a write: it bumps
`readCount` and `lastRead`, which is the recency signal used for ranking.
Internal bookkeeping uses `get_untracked` so it does not pollute that signal.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

from ..docstore.base import DocumentStore, Filter, QueryIntent, QueryKind, SearchRequest, SortBy
from ..errors import InvalidArgumentError, NotFoundError
from .models import (
    DEFAULT_RELEVANCE_SCORE,
    UNKNOWN_ENTITY_TYPE,
    Entity,
    Namespaces,
    clamp_relevance,
    entity_doc_id,
    to_iso,
    utcnow,
)
from .zones import ZoneRegistry

logger = logging.getLogger(__name__)

IMPORTANCE_FACTOR = 10.0
IMPORTANCE_FLOOR = 10.0


def validate_entity_name(name: str | None) -> str:
    if name is None or not str(name).strip():
        raise InvalidArgumentError("Entity name cannot be empty")
    return name


class EntityStore:
    def __init__(self, store: DocumentStore, namespaces: Namespaces, zones: ZoneRegistry):
        self.store = store
        self.namespaces = namespaces
        self.zones = zones

    def save(self, entity: Entity, zone: str) -> Entity:
        """Upsert `entity` into `zone`, keeping read bookkeeping of any stored version."""
        validate_entity_name(entity.name)
        self.zones.ensure(zone)

        existing = self.get_untracked(entity.name, zone)
        now = utcnow()
        if entity.relevance_score is not None:
            score = entity.relevance_score
        elif existing is not None and existing.relevance_score is not None:
            score = existing.relevance_score
        else:
            score = DEFAULT_RELEVANCE_SCORE
        if entity.is_important is not None:
            important = entity.is_important
        else:
            important = bool(existing.is_important) if existing else False

        saved = Entity(
            name=entity.name,
            entity_type=entity.entity_type or UNKNOWN_ENTITY_TYPE,
            observations=list(entity.observations or []),
            zone=zone,
            relevance_score=clamp_relevance(score),
            is_important=important,
            read_count=existing.read_count if existing else 0,
            last_read=existing.last_read if existing and existing.last_read else now,
            last_write=now,
        )
        self.store.index(self.namespaces.entities(zone), saved.doc_id, saved.to_document())
        return saved

    def get_untracked(self, name: str, zone: str) -> Entity | None:
        self.zones.ensure(zone)
        doc = self.store.get(self.namespaces.entities(zone), entity_doc_id(name))
        return Entity.from_document(doc, zone) if doc else None

    def get_tracked(self, name: str, zone: str) -> Entity | None:
        """Fetch an entity and record the access (readCount + 1, lastRead = now).

        The backend applies the increment atomically, so concurrent readers
        never lose a count.
        """
        self.zones.ensure(zone)
        doc = self.store.update(
            self.namespaces.entities(zone),
            entity_doc_id(name),
            set={"lastRead": to_iso(utcnow())},
            increment={"readCount": 1},
        )
        return Entity.from_document(doc, zone) if doc else None

    def delete(self, name: str, zone: str, cascade_relations: bool = True) -> bool:
        self.zones.ensure(zone)
        if self.get_untracked(name, zone) is None:
            return False
        if cascade_relations:
            removed = self.store.delete_by_query(
                self.namespaces.relations,
                Filter(
                    should=(
                        {"from": name, "fromZone": zone},
                        {"to": name, "toZone": zone},
                    )
                ),
            )
            if removed:
                logger.debug(f"Removed {removed} relation(s) of {zone}:{name}")
        return self.store.delete(self.namespaces.entities(zone), entity_doc_id(name))

    def add_observations(self, name: str, zone: str, observations: list[str]) -> Entity:
        self.zones.ensure(zone)
        doc = self.store.update(
            self.namespaces.entities(zone),
            entity_doc_id(name),
            set={"lastWrite": to_iso(utcnow())},
            append={"observations": list(observations)},
        )
        if doc is None:
            raise NotFoundError(f'Entity "{name}" not found in zone "{zone}"')
        return Entity.from_document(doc, zone)

    def set_importance(self, name: str, zone: str, important: bool, auto_create: bool = False) -> Entity:
        """Multiply the relevance score by 10 (floor 10) or divide it by 10."""
        validate_entity_name(name)
        entity = self.get_untracked(name, zone)
        if entity is None:
            if not auto_create:
                raise NotFoundError(f'Entity "{name}" not found in zone "{zone}"')
            entity = self.save(Entity(name=name, entity_type=UNKNOWN_ENTITY_TYPE), zone)

        score = entity.relevance_score or DEFAULT_RELEVANCE_SCORE
        if important:
            score = max(IMPORTANCE_FLOOR, score * IMPORTANCE_FACTOR)
        else:
            score = score / IMPORTANCE_FACTOR
        doc = self.store.update(
            self.namespaces.entities(zone),
            entity.doc_id,
            set={
                "relevanceScore": clamp_relevance(score),
                "isImportant": important,
                "lastWrite": to_iso(utcnow()),
            },
        )
        if doc is None:
            raise NotFoundError(f'Entity "{name}" not found in zone "{zone}"')
        return Entity.from_document(doc, zone)

    def recent(self, zone: str, limit: int = 20) -> list[Entity]:
        self.zones.ensure(zone)
        result = self.store.search(
            self.namespaces.entities(zone),
            SearchRequest(
                intent=QueryIntent(QueryKind.WILDCARD, "*"),
                filter=Filter(must={"zone": zone}),
                sort_by=SortBy.RECENT,
                limit=limit,
            ),
        )
        return [Entity.from_document(hit.document, zone) for hit in result.hits]

    def iter_zone(self, zone: str) -> Iterator[Entity]:
        self.zones.ensure(zone)
        for doc in self.store.scan(self.namespaces.entities(zone)):
            yield Entity.from_document(doc, zone)

    def names(self, zone: str) -> list[str]:
        return [entity.name for entity in self.iter_zone(zone)]
