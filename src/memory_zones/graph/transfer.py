"""
NDJSON import/export and whole-system backup.

Record format, one JSON object per line:

    {"type": "entity", "name": "...", "entityType": "...", "observations": [...], ...}
    {"type": "relation", "from": "...", "fromZone": "...", "to": "...", "toZone": "...", "relationType": "..."}

Relation records without zones come from older exports; they are anchored in
the zone being imported into.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..docstore.base import DocumentStore, Filter
from ..errors import InvalidArgumentError, MissingEndpointsError
from .entities import EntityStore, validate_entity_name
from .models import (
    DEFAULT_ZONE,
    Entity,
    Namespaces,
    Relation,
    ZoneMetadata,
    clamp_relevance,
    utcnow,
)
from .relations import RelationStore
from .zones import ZoneRegistry

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    entities_added: int = 0
    relations_added: int = 0
    invalid_entities: list[dict[str, Any]] = field(default_factory=list)
    invalid_relations: list[dict[str, Any]] = field(default_factory=list)


def read_ndjson(path: str | Path) -> list[dict[str, Any]]:
    records: list[dict[str, Any]] = []
    with open(path, encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"{path}:{lineno}: skipping unparsable line ({e})")
                continue
            if not isinstance(record, dict):
                logger.warning(f"{path}:{lineno}: skipping non-object record")
                continue
            records.append(record)
    return records


def write_ndjson(path: str | Path, records: Iterable[dict[str, Any]]) -> int:
    count = 0
    with open(path, "w", encoding="utf-8") as fh:
        for record in records:
            fh.write(json.dumps(record, ensure_ascii=False))
            fh.write("\n")
            count += 1
    return count


def _entity_from_record(record: dict[str, Any], zone: str) -> Entity:
    validate_entity_name(record.get("name"))
    entity = Entity.from_document(record, zone)
    now = utcnow()
    entity.zone = zone
    entity.relevance_score = clamp_relevance(entity.relevance_score or 1.0)
    entity.last_read = entity.last_read or now
    entity.last_write = entity.last_write or now
    return entity


class GraphTransfer:
    def __init__(
        self,
        store: DocumentStore,
        namespaces: Namespaces,
        zones: ZoneRegistry,
        entities: EntityStore,
        relations: RelationStore,
    ):
        self.store = store
        self.namespaces = namespaces
        self.zones = zones
        self.entities = entities
        self.relations = relations

    def export_zone(self, zone: str) -> list[dict[str, Any]]:
        self.zones.ensure(zone)
        records = [entity.to_document() for entity in self.entities.iter_zone(zone)]
        touching = Filter(should=({"fromZone": zone}, {"toZone": zone}))
        records.extend(
            Relation.from_document(doc, zone).to_document()
            for doc in self.store.scan(self.namespaces.relations, touching)
        )
        return records

    def import_records(self, records: Iterable[dict[str, Any]], zone: str = DEFAULT_ZONE) -> ImportResult:
        """Additive upsert: entities first (in bulk), then relations."""
        self.zones.ensure(zone)
        result = ImportResult()
        entity_docs: list[tuple[str, dict[str, Any]]] = []
        relation_records: list[dict[str, Any]] = []

        for record in records:
            kind = record.get("type")
            if kind == "entity":
                try:
                    entity = _entity_from_record(record, zone)
                except (InvalidArgumentError, KeyError, TypeError, ValueError) as e:
                    result.invalid_entities.append({"record": record, "reason": str(e)})
                    continue
                entity_docs.append((entity.doc_id, entity.to_document()))
            elif kind == "relation":
                relation_records.append(record)
            else:
                logger.debug(f"Ignoring record of unknown type {kind!r}")

        if entity_docs:
            bulk = self.store.bulk(self.namespaces.entities(zone), entity_docs)
            result.entities_added = bulk.succeeded
            for error in bulk.errors:
                result.invalid_entities.append({"record": error, "reason": "bulk write failed"})

        for record in relation_records:
            try:
                relation = Relation.from_document(record, zone)
            except KeyError as e:
                result.invalid_relations.append({"record": record, "reason": f"missing field {e}"})
                continue
            try:
                self.zones.ensure(relation.from_zone)
                self.zones.ensure(relation.to_zone)
                self.relations.save_relation(relation, auto_create=False)
            except (InvalidArgumentError, MissingEndpointsError) as e:
                result.invalid_relations.append({"record": record, "reason": str(e)})
                continue
            result.relations_added += 1

        if result.invalid_relations:
            logger.warning(
                f"{len(result.invalid_relations)} relation(s) not imported into {zone}: missing endpoints"
            )
        logger.info(
            f"Imported {result.entities_added} entities and {result.relations_added} relations into {zone}"
        )
        return result

    def export_all(self, zones: list[str] | None = None) -> dict[str, Any]:
        """Every entity, relation and zone record, for a whole-system backup."""
        metadata = self.zones.list()
        if zones:
            wanted = set(zones)
            metadata = [m for m in metadata if m.name in wanted]
        names = {m.name for m in metadata}

        entities: list[dict[str, Any]] = []
        for meta in metadata:
            entities.extend(entity.to_document() for entity in self.entities.iter_zone(meta.name))
        relations = [
            Relation.from_document(doc).to_document()
            for doc in self.store.scan(self.namespaces.relations)
        ]
        if zones:
            relations = [r for r in relations if r["fromZone"] in names or r["toZone"] in names]
        return {
            "entities": entities,
            "relations": relations,
            "zones": [m.to_document() for m in metadata],
        }

    def import_all(self, payload: dict[str, Any]) -> dict[str, int]:
        zones_added = 0
        for doc in payload.get("zones") or []:
            meta = ZoneMetadata.from_document(doc)
            if meta.name == DEFAULT_ZONE:
                self.zones.update_description(meta.name, meta.description or "Default knowledge zone")
                continue
            if self.zones.get(meta.name) is None:
                zones_added += 1
            self.zones.add(meta.name, description=meta.description, config=meta.config)

        by_zone: dict[str, list[dict[str, Any]]] = {}
        for doc in payload.get("entities") or []:
            by_zone.setdefault(doc.get("zone") or DEFAULT_ZONE, []).append({**doc, "type": "entity"})

        entities_added = relations_added = 0
        for zone, records in by_zone.items():
            entities_added += self.import_records(records, zone).entities_added
        relation_records = [{**doc, "type": "relation"} for doc in payload.get("relations") or []]
        if relation_records:
            relations_added = self.import_records(relation_records, DEFAULT_ZONE).relations_added
        return {
            "zones_added": zones_added,
            "entities_added": entities_added,
            "relations_added": relations_added,
        }
