from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from ..docstore.base import DocumentStore, Filter, NamespaceKind
from ..errors import InvalidArgumentError
from .models import DEFAULT_ZONE, Namespaces, ZoneMetadata, utcnow, zone_doc_id

logger = logging.getLogger(__name__)

# index-safe: lowercase, no separators the backend would reject
ZONE_NAME = re.compile(r"^[a-z0-9][a-z0-9._-]{0,99}$")


def validate_zone_name(zone: str) -> str:
    if not zone or not zone.strip():
        raise InvalidArgumentError("Zone name cannot be empty")
    if not ZONE_NAME.match(zone):
        raise InvalidArgumentError(
            f"Invalid zone name '{zone}': use lowercase letters, digits, '.', '_' or '-'"
        )
    return zone


@dataclass
class ZoneStats:
    zone: str
    entity_count: int
    relation_count: int
    entity_types: dict[str, int] = field(default_factory=dict)
    relation_types: dict[str, int] = field(default_factory=dict)


class ZoneRegistry:
    """Source of truth for which zones exist.

    Provisioning is memoised per process. Racing callers at worst repeat an
    idempotent namespace check.
    """

    def __init__(self, store: DocumentStore, namespaces: Namespaces):
        self.store = store
        self.namespaces = namespaces
        self._bootstrapped = False
        self._provisioned: set[str] = set()

    def _bootstrap(self) -> None:
        if self._bootstrapped:
            return
        self.store.ensure_namespace(self.namespaces.relations, NamespaceKind.RELATIONS)
        if self.store.ensure_namespace(self.namespaces.metadata, NamespaceKind.METADATA):
            self._save(DEFAULT_ZONE, description="Default knowledge zone")
        self._bootstrapped = True

    def ensure(self, zone: str) -> str:
        """Validate `zone` and make sure its namespace and metadata record exist."""
        validate_zone_name(zone)
        self._bootstrap()
        if zone in self._provisioned:
            return zone
        self.store.ensure_namespace(self.namespaces.entities(zone), NamespaceKind.ENTITIES)
        if self.store.get(self.namespaces.metadata, zone_doc_id(zone)) is None:
            description = "Default knowledge zone" if zone == DEFAULT_ZONE else None
            self._save(zone, description=description)
            logger.info(f"Registered zone: {zone}")
        self._provisioned.add(zone)
        return zone

    def _save(
        self,
        name: str,
        description: str | None = None,
        config: dict[str, Any] | None = None,
        short_description: str | None = None,
    ) -> ZoneMetadata:
        now = utcnow()
        existing = self.get(name)
        metadata = ZoneMetadata(
            name=name,
            description=description or (existing.description if existing else None),
            short_description=short_description or (existing.short_description if existing else None),
            created_at=existing.created_at if existing and existing.created_at else now,
            last_modified=now,
            config=config or (existing.config if existing else None),
        )
        self.store.index(self.namespaces.metadata, metadata.doc_id, metadata.to_document())
        return metadata

    def add(
        self, name: str, description: str | None = None, config: dict[str, Any] | None = None
    ) -> ZoneMetadata:
        if name == DEFAULT_ZONE:
            raise InvalidArgumentError('Invalid zone name. Cannot be empty or "default".')
        self.ensure(name)
        return self._save(name, description=description, config=config)

    def get(self, name: str) -> ZoneMetadata | None:
        doc = self.store.get(self.namespaces.metadata, zone_doc_id(name))
        return ZoneMetadata.from_document(doc) if doc else None

    def exists(self, name: str) -> bool:
        return self.get(name) is not None or self.store.namespace_exists(self.namespaces.entities(name))

    def list(self) -> list[ZoneMetadata]:
        """Registered zones plus zones detected from existing entity namespaces."""
        self._bootstrap()
        zones = {
            meta.name: meta
            for meta in (ZoneMetadata.from_document(d) for d in self.store.scan(self.namespaces.metadata))
        }
        for namespace in self.store.list_namespaces(self.namespaces.entity_prefix):
            zone = self.namespaces.zone_of(namespace)
            if zone and zone not in zones:
                zones[zone] = self._save(zone, description=f"Zone detected from index: {namespace}")
                logger.info(f"Detected unregistered zone: {zone}")
        if DEFAULT_ZONE not in zones:
            zones[DEFAULT_ZONE] = self._save(DEFAULT_ZONE, description="Default knowledge zone")
        return sorted(zones.values(), key=lambda z: (z.name != DEFAULT_ZONE, z.name))

    def update_description(
        self, name: str, description: str, short_description: str | None = None
    ) -> ZoneMetadata:
        self.ensure(name)
        return self._save(name, description=description, short_description=short_description)

    def delete(self, name: str) -> bool:
        """Drop a zone, its entities and every relation that references it."""
        if name == DEFAULT_ZONE:
            raise InvalidArgumentError("Cannot delete the default zone.")
        validate_zone_name(name)
        self._bootstrap()
        existed = self.exists(name)
        self.store.drop_namespace(self.namespaces.entities(name))
        self.store.delete(self.namespaces.metadata, zone_doc_id(name))
        self._provisioned.discard(name)
        removed = self.store.delete_by_query(
            self.namespaces.relations,
            Filter(should=({"fromZone": name}, {"toZone": name})),
        )
        if existed:
            logger.info(f"Deleted zone {name} ({removed} relation(s) removed)")
        return existed

    def reset(self) -> list[str]:
        """Drop every zone namespace plus the relation and metadata namespaces. Returns what was dropped."""
        targets = self.store.list_namespaces(self.namespaces.entity_prefix)
        targets += [self.namespaces.relations, self.namespaces.metadata]
        dropped = [ns for ns in targets if self.store.drop_namespace(ns)]
        self._provisioned.clear()
        self._bootstrapped = False
        logger.warning(f"Reset dropped {len(dropped)} namespace(s)")
        return dropped

    def stats(self, name: str) -> ZoneStats:
        self.ensure(name)
        entities_ns = self.namespaces.entities(name)
        touching = Filter(should=({"fromZone": name}, {"toZone": name}))
        return ZoneStats(
            zone=name,
            entity_count=self.store.count(entities_ns),
            relation_count=self.store.count(self.namespaces.relations, touching),
            entity_types=self.store.aggregate(entities_ns, "entityType"),
            relation_types=self.store.aggregate(self.namespaces.relations, "relationType", filter=touching),
        )
