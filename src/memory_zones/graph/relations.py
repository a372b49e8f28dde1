from __future__ import annotations

import logging

from ..docstore.base import DocumentStore, Filter
from ..errors import InvalidArgumentError, MissingEndpointsError
from .entities import EntityStore
from .models import DEFAULT_RELEVANCE_SCORE, UNKNOWN_ENTITY_TYPE, Entity, Namespaces, Relation
from .zones import ZoneRegistry

logger = logging.getLogger(__name__)


class RelationStore:
    """Directed, typed edges between entities, possibly across zones.

    All relations share one namespace; an edge is identified by
    ``(fromZone, from, relationType, toZone, to)``.
    """

    def __init__(
        self,
        store: DocumentStore,
        namespaces: Namespaces,
        zones: ZoneRegistry,
        entities: EntityStore,
    ):
        self.store = store
        self.namespaces = namespaces
        self.zones = zones
        self.entities = entities

    def save(
        self,
        from_name: str,
        to_name: str,
        relation_type: str,
        from_zone: str,
        to_zone: str,
        auto_create: bool = True,
    ) -> Relation:
        if not from_name or not from_name.strip() or not to_name or not to_name.strip():
            raise InvalidArgumentError("Relation endpoints cannot be empty")
        if not relation_type or not relation_type.strip():
            raise InvalidArgumentError("Relation type cannot be empty")
        self.zones.ensure(from_zone)
        self.zones.ensure(to_zone)

        missing = [
            (zone, name)
            for zone, name in ((from_zone, from_name), (to_zone, to_name))
            if self.entities.get_untracked(name, zone) is None
        ]
        if missing and not auto_create:
            raise MissingEndpointsError(missing)
        for zone, name in dict.fromkeys(missing):
            self.entities.save(
                Entity(
                    name=name,
                    entity_type=UNKNOWN_ENTITY_TYPE,
                    observations=[],
                    relevance_score=DEFAULT_RELEVANCE_SCORE,
                ),
                zone,
            )
            logger.debug(f"Auto-created relation endpoint {zone}:{name}")

        relation = Relation(
            from_name=from_name,
            from_zone=from_zone,
            to_name=to_name,
            to_zone=to_zone,
            relation_type=relation_type,
        )
        stored = self.store.get(self.namespaces.relations, relation.doc_id)
        if stored is None or Relation.from_document(stored, from_zone) != relation:
            self.store.index(self.namespaces.relations, relation.doc_id, relation.to_document())
        return relation

    def save_relation(self, relation: Relation, auto_create: bool = True) -> Relation:
        return self.save(
            relation.from_name,
            relation.to_name,
            relation.relation_type,
            relation.from_zone,
            relation.to_zone,
            auto_create=auto_create,
        )

    def get(
        self, from_name: str, to_name: str, relation_type: str, from_zone: str, to_zone: str
    ) -> Relation | None:
        relation = Relation(from_name, from_zone, to_name, to_zone, relation_type)
        doc = self.store.get(self.namespaces.relations, relation.doc_id)
        return Relation.from_document(doc, from_zone) if doc else None

    def delete(self, from_name: str, to_name: str, relation_type: str, from_zone: str, to_zone: str) -> bool:
        relation = Relation(from_name, from_zone, to_name, to_zone, relation_type)
        return self.store.delete(self.namespaces.relations, relation.doc_id)

    def _query(self, filter: Filter, zone: str) -> list[Relation]:
        return [Relation.from_document(doc, zone) for doc in self.store.scan(self.namespaces.relations, filter)]

    def list_for_entities(self, names: list[str], zone: str) -> list[Relation]:
        """Every relation with one of `names` (in `zone`) at either end, without duplicates."""
        names = [n for n in dict.fromkeys(names) if n]
        if not names:
            return []
        found = self._query(
            Filter(
                should=(
                    {"from": names, "fromZone": zone},
                    {"to": names, "toZone": zone},
                )
            ),
            zone,
        )
        unique = {rel.doc_id: rel for rel in found}
        return list(unique.values())

    def outgoing(self, name: str, zone: str) -> list[Relation]:
        return self._query(Filter(must={"from": name, "fromZone": zone}), zone)

    def incoming(self, name: str, zone: str) -> list[Relation]:
        return self._query(Filter(must={"to": name, "toZone": zone}), zone)

    def delete_touching(self, name: str, zone: str) -> int:
        return self.store.delete_by_query(
            self.namespaces.relations,
            Filter(should=({"from": name, "fromZone": zone}, {"to": name, "toZone": zone})),
        )

    def delete_for_zone(self, zone: str) -> int:
        return self.store.delete_by_query(
            self.namespaces.relations,
            Filter(should=({"fromZone": zone}, {"toZone": zone})),
        )
