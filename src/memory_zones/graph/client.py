"""
`KnowledgeGraph`: the single entry point used by the CLI and the HTTP service.

Batch operations isolate failures per item. They only raise when the input is
rejected before any work starts (for instance an empty list).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..docstore.base import DocumentStore
from ..errors import InvalidArgumentError, KnowledgeGraphError, NotFoundError
from ..relevance.base import RelevanceFilter
from .entities import EntityStore
from .models import DEFAULT_ZONE, Entity, Namespaces, Neighborhood, Relation, ZoneMetadata
from .relations import RelationStore
from .search import DEFAULT_RELEVANCE_THRESHOLD, SearchOrchestrator, SearchResponse
from .transfer import GraphTransfer, ImportResult
from .traversal import GraphTraversal
from .zone_ops import ConflictPolicy, CopyResult, MergeResult, MoveResult, ZoneOperations
from .zones import ZoneRegistry, ZoneStats

if TYPE_CHECKING:
    from ..settings import MemoryZonesSettings

logger = logging.getLogger(__name__)

DESCRIBE_SAMPLE_SIZE = 20


@dataclass
class BatchFailure:
    item: str
    reason: str


@dataclass
class BatchResult:
    succeeded: list[Any] = field(default_factory=list)
    failed: list[BatchFailure] = field(default_factory=list)


def _entity_from_input(item: Entity | dict[str, Any]) -> Entity:
    if isinstance(item, Entity):
        return item
    return Entity(
        name=item.get("name") or "",
        entity_type=item.get("entityType") or item.get("entity_type") or "unknown",
        observations=list(item.get("observations") or []),
        relevance_score=item.get("relevanceScore", item.get("relevance_score")),
        is_important=item.get("isImportant", item.get("is_important")),
    )


def _provided(item: dict[str, Any], *keys: str) -> bool:
    return any(item.get(key) is not None for key in keys)


def _merge_partial(item: dict[str, Any], entity: Entity, existing: Entity) -> Entity:
    if not _provided(item, "entityType", "entity_type"):
        entity.entity_type = existing.entity_type
    if not _provided(item, "observations"):
        entity.observations = list(existing.observations)
    return entity


def _relation_from_input(item: Relation | dict[str, Any], zone: str) -> Relation:
    if isinstance(item, Relation):
        return item
    return Relation(
        from_name=item.get("from") or "",
        from_zone=item.get("fromZone") or zone,
        to_name=item.get("to") or "",
        to_zone=item.get("toZone") or zone,
        relation_type=item.get("relationType") or "",
    )


def _require_items(items: list, what: str) -> None:
    if not items:
        raise InvalidArgumentError(f"At least one {what} is required")


class KnowledgeGraph:
    def __init__(
        self,
        store: DocumentStore,
        index_prefix: str = "knowledge-graph",
        relevance: RelevanceFilter | None = None,
        relevance_threshold: int = DEFAULT_RELEVANCE_THRESHOLD,
        default_zone: str = DEFAULT_ZONE,
    ):
        self.store = store
        self.namespaces = Namespaces(index_prefix)
        self.relevance = relevance
        self.default_zone = default_zone
        self.zones = ZoneRegistry(store, self.namespaces)
        self.entities = EntityStore(store, self.namespaces, self.zones)
        self.relations = RelationStore(store, self.namespaces, self.zones, self.entities)
        self.traversal = GraphTraversal(self.entities, self.relations)
        self.operations = ZoneOperations(self.zones, self.entities, self.relations)
        self.searcher = SearchOrchestrator(
            store,
            self.namespaces,
            self.zones,
            self.relations,
            relevance=relevance,
            relevance_threshold=relevance_threshold,
        )
        self.transfer = GraphTransfer(store, self.namespaces, self.zones, self.entities, self.relations)

    def initialize(self) -> None:
        self.zones.ensure(DEFAULT_ZONE)
        if self.default_zone != DEFAULT_ZONE:
            self.zones.ensure(self.default_zone)

    def close(self) -> None:
        for collaborator in (self.store, self.relevance):
            close = getattr(collaborator, "close", None)
            if close is not None:
                close()

    def _zone(self, zone: str | None) -> str:
        return zone or self.default_zone

    # --- Entities ---------------------------------------------------------------

    def save_entity(self, entity: Entity | dict[str, Any], zone: str | None = None) -> Entity:
        return self.entities.save(_entity_from_input(entity), self._zone(zone))

    def get_entity(self, name: str, zone: str | None = None, track: bool = True) -> Entity | None:
        zone = self._zone(zone)
        if track:
            return self.entities.get_tracked(name, zone)
        return self.entities.get_untracked(name, zone)

    def create_entities(self, items: list[Entity | dict[str, Any]], zone: str | None = None) -> BatchResult:
        zone = self._zone(zone)
        entities = [_entity_from_input(i) for i in items or []]
        _require_items(entities, "entity")
        if all(not e.name.strip() for e in entities):
            raise InvalidArgumentError("Entity names cannot all be empty")

        result = BatchResult()
        for entity in entities:
            try:
                if not entity.name.strip():
                    raise InvalidArgumentError("Entity name cannot be empty")
                if self.entities.get_untracked(entity.name, zone) is not None:
                    result.failed.append(BatchFailure(entity.name, "already exists"))
                    continue
                result.succeeded.append(self.entities.save(entity, zone))
            except KnowledgeGraphError as e:
                logger.warning(f"create_entities: {entity.name!r} failed: {e}")
                result.failed.append(BatchFailure(entity.name, str(e)))
        return result

    def update_entities(self, items: list[Entity | dict[str, Any]], zone: str | None = None) -> BatchResult:
        """Update existing entities. Fields a dict item leaves out (or sets to None) keep their stored value."""
        zone = self._zone(zone)
        _require_items(items, "entity")

        result = BatchResult()
        for item in items:
            entity = _entity_from_input(item)
            try:
                existing = self.entities.get_untracked(entity.name, zone)
                if existing is None:
                    result.failed.append(BatchFailure(entity.name, "not found"))
                    continue
                if not isinstance(item, Entity):
                    entity = _merge_partial(item, entity, existing)
                result.succeeded.append(self.entities.save(entity, zone))
            except KnowledgeGraphError as e:
                logger.warning(f"update_entities: {entity.name!r} failed: {e}")
                result.failed.append(BatchFailure(entity.name, str(e)))
        return result

    def delete_entities(
        self, names: list[str], zone: str | None = None, cascade_relations: bool = True
    ) -> BatchResult:
        zone = self._zone(zone)
        _require_items(names, "entity name")
        if all(not (n or "").strip() for n in names):
            raise InvalidArgumentError("Entity names cannot all be empty")

        result = BatchResult()
        for name in names:
            try:
                if not (name or "").strip():
                    raise InvalidArgumentError("Entity name cannot be empty")
                if self.entities.delete(name, zone, cascade_relations=cascade_relations):
                    result.succeeded.append(name)
                else:
                    result.failed.append(BatchFailure(name, "not found"))
            except KnowledgeGraphError as e:
                logger.warning(f"delete_entities: {name!r} failed: {e}")
                result.failed.append(BatchFailure(name, str(e)))
        return result

    def open_entities(self, names: list[str], zone: str | None = None) -> SearchResponse:
        """Tracked fetch of `names` plus the relations among them."""
        zone = self._zone(zone)
        _require_items(names, "entity name")
        found = [e for e in (self.entities.get_tracked(n, zone) for n in dict.fromkeys(names)) if e]
        keys = {e.key for e in found}
        relations = [
            r
            for r in self.relations.list_for_entities([e.name for e in found], zone)
            if (r.from_zone, r.from_name) in keys and (r.to_zone, r.to_name) in keys
        ]
        return SearchResponse(entities=found, relations=relations, total=len(found))

    def add_observations(self, name: str, observations: list[str], zone: str | None = None) -> Entity:
        if not observations:
            raise InvalidArgumentError("At least one observation is required")
        return self.entities.add_observations(name, self._zone(zone), observations)

    def mark_important(
        self, name: str, important: bool = True, zone: str | None = None, auto_create: bool = False
    ) -> Entity:
        return self.entities.set_importance(name, self._zone(zone), important, auto_create=auto_create)

    def recent(self, zone: str | None = None, limit: int = 20) -> list[Entity]:
        return self.entities.recent(self._zone(zone), limit)

    # --- Relations --------------------------------------------------------------

    def create_relations(
        self,
        items: list[Relation | dict[str, Any]],
        zone: str | None = None,
        auto_create: bool = True,
    ) -> BatchResult:
        zone = self._zone(zone)
        relations = [_relation_from_input(i, zone) for i in items or []]
        _require_items(relations, "relation")

        result = BatchResult()
        for relation in relations:
            try:
                result.succeeded.append(self.relations.save_relation(relation, auto_create=auto_create))
            except KnowledgeGraphError as e:
                logger.warning(f"create_relations: {relation.label} failed: {e}")
                result.failed.append(BatchFailure(relation.label, str(e)))
        return result

    def delete_relations(self, items: list[Relation | dict[str, Any]], zone: str | None = None) -> BatchResult:
        zone = self._zone(zone)
        relations = [_relation_from_input(i, zone) for i in items or []]
        _require_items(relations, "relation")

        result = BatchResult()
        for r in relations:
            try:
                if self.relations.delete(r.from_name, r.to_name, r.relation_type, r.from_zone, r.to_zone):
                    result.succeeded.append(r)
                else:
                    result.failed.append(BatchFailure(r.label, "not found"))
            except KnowledgeGraphError as e:
                logger.warning(f"delete_relations: {r.label} failed: {e}")
                result.failed.append(BatchFailure(r.label, str(e)))
        return result

    def related(self, name: str, zone: str | None = None, depth: int = 1) -> Neighborhood:
        return self.traversal.expand(name, self._zone(zone), depth)

    # --- Search -----------------------------------------------------------------

    def search(self, query: str, zone: str | None = None, **kwargs: Any) -> SearchResponse:
        return self.searcher.search(query, self._zone(zone), **kwargs)

    # --- Zones ------------------------------------------------------------------

    def list_zones(self, reason: str | None = None) -> list[dict[str, Any]]:
        """All zones; with a `reason` and an enabled filter, each gets a 0-2 usefulness.

        Zones rated 0 are left out. Without a usable classification every zone
        counts as very useful (2).
        """
        zones = self.zones.list()
        usefulness: dict[str, int] | None = None
        if reason and self.relevance is not None and self.relevance.enabled:
            try:
                usefulness = self.relevance.classify_zones(
                    [{"name": z.name, "description": z.description} for z in zones], reason
                )
            except Exception as e:
                logger.warning(f"Zone classification failed, listing all zones: {e}")
        out = []
        for zone in zones:
            score = 2 if usefulness is None else usefulness.get(zone.name, 2)
            if score == 0:
                continue
            out.append({**zone.to_document(), "usefulness": score})
        return out

    def add_zone(self, name: str, description: str | None = None, config: dict | None = None) -> ZoneMetadata:
        return self.zones.add(name, description=description, config=config)

    def get_zone(self, name: str) -> ZoneMetadata:
        meta = self.zones.get(name)
        if meta is None:
            raise NotFoundError(f'Zone "{name}" not found')
        return meta

    def delete_zone(self, name: str) -> bool:
        return self.zones.delete(name)

    def reset(self) -> list[str]:
        """Wipe all zones, entities and relations, then recreate the empty default zone."""
        dropped = self.zones.reset()
        self.initialize()
        return dropped

    def zone_stats(self, name: str | None = None) -> ZoneStats:
        return self.zones.stats(self._zone(name))

    def describe_zone(self, name: str, user_hint: str | None = None) -> ZoneMetadata:
        """Ask the relevance filter to (re)write the zone's description from a sample of entities.

        With the filter disabled or failing, a user hint becomes the description as is.
        """
        meta = self.get_zone(name)
        sample = self.entities.recent(name, DESCRIBE_SAMPLE_SIZE)
        described = None
        if self.relevance is not None and self.relevance.enabled:
            try:
                described = self.relevance.describe_zone(
                    name,
                    meta.description,
                    [e.summary() for e in sample],
                    user_hint=user_hint,
                )
            except Exception as e:
                logger.warning(f"Describing zone {name} failed: {e}")
        if described is not None:
            return self.zones.update_description(name, described.description, described.short_description)
        if user_hint:
            return self.zones.update_description(name, user_hint)
        return meta

    # --- Zone set-operations ----------------------------------------------------

    def copy_entities(self, names: list[str], source_zone: str, target_zone: str, **kwargs: Any) -> CopyResult:
        return self.operations.copy(names, source_zone, target_zone, **kwargs)

    def move_entities(self, names: list[str], source_zone: str, target_zone: str, **kwargs: Any) -> MoveResult:
        return self.operations.move(names, source_zone, target_zone, **kwargs)

    def merge_zones(
        self,
        source_zones: list[str],
        target_zone: str,
        delete_source_zones: bool = False,
        overwrite_conflicts: ConflictPolicy = "skip",
    ) -> MergeResult:
        return self.operations.merge(
            source_zones,
            target_zone,
            delete_source_zones=delete_source_zones,
            overwrite_conflicts=overwrite_conflicts,
        )

    # --- Import / export --------------------------------------------------------

    def export_zone(self, zone: str | None = None) -> list[dict[str, Any]]:
        return self.transfer.export_zone(self._zone(zone))

    def import_records(self, records: list[dict[str, Any]], zone: str | None = None) -> ImportResult:
        return self.transfer.import_records(records, self._zone(zone))

    def export_all(self, zones: list[str] | None = None) -> dict[str, Any]:
        return self.transfer.export_all(zones)

    def import_all(self, payload: dict[str, Any]) -> dict[str, int]:
        return self.transfer.import_all(payload)


def build_knowledge_graph(cfg: MemoryZonesSettings | None = None) -> KnowledgeGraph:
    """Wire a `KnowledgeGraph` from settings (the module-level settings by default)."""
    if cfg is None:
        from ..settings import settings as cfg

    if cfg.document_store == "memory":
        from ..docstore.memory import InMemoryDocumentStore

        store: DocumentStore = InMemoryDocumentStore()
    elif cfg.document_store == "elasticsearch":
        from ..docstore.elastic import ElasticsearchConfig, ElasticsearchDocumentStore

        store = ElasticsearchDocumentStore(
            ElasticsearchConfig(
                node=cfg.es_node,
                username=cfg.es_username,
                password=cfg.es_password,
                api_key=cfg.es_api_key,
                request_timeout=cfg.es_request_timeout,
            )
        )
    else:
        raise InvalidArgumentError(f"Unknown document store '{cfg.document_store}': use elasticsearch or memory")

    relevance = None
    if cfg.ai_api_key:
        from ..relevance.groq import ChatRelevanceFilter

        relevance = ChatRelevanceFilter(
            api_key=cfg.ai_api_key,
            base_url=cfg.ai_base_url,
            models=cfg.model_list,
            cooldown_seconds=cfg.ai_cooldown_seconds,
            timeout_seconds=cfg.ai_timeout_seconds,
        )
    else:
        logger.info("No AI API key configured; relevance filtering disabled")

    graph = KnowledgeGraph(
        store,
        index_prefix=cfg.index_prefix,
        relevance=relevance,
        relevance_threshold=cfg.relevance_threshold,
        default_zone=cfg.default_zone,
    )
    return graph
