from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

DEFAULT_ZONE = "default"
UNKNOWN_ENTITY_TYPE = "unknown"
DEFAULT_RELEVANCE_SCORE = 1.0
MIN_RELEVANCE_SCORE = 1e-9


def utcnow() -> datetime:
    return datetime.now(UTC)


def to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def parse_iso(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def clamp_relevance(score: float) -> float:
    return max(float(score), MIN_RELEVANCE_SCORE)


@dataclass
class Entity:
    """A typed node with free-text observations, scoped to one zone.

    `relevance_score` and `is_important` may be left as None on input, in which
    case a save keeps the stored values (or the defaults for a new entity).
    """

    name: str
    entity_type: str = UNKNOWN_ENTITY_TYPE
    observations: list[str] = field(default_factory=list)
    zone: str = DEFAULT_ZONE
    relevance_score: float | None = None
    is_important: bool | None = None
    read_count: int = 0
    last_read: datetime | None = None
    last_write: datetime | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.zone, self.name)

    @property
    def doc_id(self) -> str:
        return entity_doc_id(self.name)

    def to_document(self) -> dict[str, Any]:
        return {
            "type": "entity",
            "name": self.name,
            "entityType": self.entity_type,
            "observations": list(self.observations),
            "zone": self.zone,
            "relevanceScore": self.relevance_score,
            "isImportant": bool(self.is_important),
            "readCount": self.read_count,
            "lastRead": to_iso(self.last_read),
            "lastWrite": to_iso(self.last_write),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any], zone: str | None = None) -> Entity:
        score = doc.get("relevanceScore")
        return cls(
            name=doc["name"],
            entity_type=doc.get("entityType") or UNKNOWN_ENTITY_TYPE,
            observations=list(doc.get("observations") or []),
            zone=doc.get("zone") or zone or DEFAULT_ZONE,
            relevance_score=float(score) if isinstance(score, (int, float)) else DEFAULT_RELEVANCE_SCORE,
            is_important=bool(doc.get("isImportant", False)),
            read_count=int(doc.get("readCount") or 0),
            last_read=parse_iso(doc.get("lastRead")),
            last_write=parse_iso(doc.get("lastWrite")),
        )

    def summary(self, include_observations: bool = True) -> dict[str, Any]:
        """Compact, caller-facing representation."""
        out: dict[str, Any] = {"name": self.name, "entityType": self.entity_type, "zone": self.zone}
        if include_observations:
            out["observations"] = list(self.observations)
            out["lastRead"] = to_iso(self.last_read)
            out["lastWrite"] = to_iso(self.last_write)
            out["relevanceScore"] = self.relevance_score
        return out


@dataclass(frozen=True)
class Relation:
    """A typed, directed edge. Endpoints may live in different zones."""

    from_name: str
    from_zone: str
    to_name: str
    to_zone: str
    relation_type: str

    @property
    def key(self) -> tuple[str, str, str, str, str]:
        return (self.from_zone, self.from_name, self.relation_type, self.to_zone, self.to_name)

    @property
    def doc_id(self) -> str:
        return relation_doc_id(self.from_name, self.from_zone, self.relation_type, self.to_name, self.to_zone)

    @property
    def label(self) -> str:
        return f"{self.from_zone}:{self.from_name} -[{self.relation_type}]-> {self.to_zone}:{self.to_name}"

    def to_document(self) -> dict[str, Any]:
        return {
            "type": "relation",
            "from": self.from_name,
            "fromZone": self.from_zone,
            "to": self.to_name,
            "toZone": self.to_zone,
            "relationType": self.relation_type,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any], zone: str = DEFAULT_ZONE) -> Relation:
        # legacy records carry no zones; they are anchored in `zone`
        return cls(
            from_name=doc["from"],
            from_zone=doc.get("fromZone") or zone,
            to_name=doc["to"],
            to_zone=doc.get("toZone") or zone,
            relation_type=doc["relationType"],
        )

    def rezoned(self, source_zone: str, target_zone: str) -> Relation:
        """Move endpoints that live in `source_zone` over to `target_zone`."""
        return Relation(
            from_name=self.from_name,
            from_zone=target_zone if self.from_zone == source_zone else self.from_zone,
            to_name=self.to_name,
            to_zone=target_zone if self.to_zone == source_zone else self.to_zone,
            relation_type=self.relation_type,
        )


@dataclass
class ZoneMetadata:
    name: str
    description: str | None = None
    short_description: str | None = None
    created_at: datetime | None = None
    last_modified: datetime | None = None
    config: dict[str, Any] | None = None

    @property
    def doc_id(self) -> str:
        return zone_doc_id(self.name)

    def to_document(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "shortDescription": self.short_description,
            "createdAt": to_iso(self.created_at),
            "lastModified": to_iso(self.last_modified),
            "config": self.config,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> ZoneMetadata:
        return cls(
            name=doc["name"],
            description=doc.get("description"),
            short_description=doc.get("shortDescription"),
            created_at=parse_iso(doc.get("createdAt")),
            last_modified=parse_iso(doc.get("lastModified")),
            config=doc.get("config"),
        )


@dataclass
class Neighborhood:
    entities: list[Entity] = field(default_factory=list)
    relations: list[Relation] = field(default_factory=list)


def entity_doc_id(name: str) -> str:
    return f"entity:{name}"


def relation_doc_id(from_name: str, from_zone: str, relation_type: str, to_name: str, to_zone: str) -> str:
    """Stable id over all five identity fields. Names may contain any character, so the
    fields are hashed as a JSON array rather than joined with a separator."""
    parts = json.dumps([from_zone, from_name, relation_type, to_zone, to_name], ensure_ascii=False)
    return "relation:" + hashlib.sha256(parts.encode("utf-8")).hexdigest()


def zone_doc_id(name: str) -> str:
    return f"zone:{name}"


@dataclass(frozen=True)
class Namespaces:
    """Maps zones onto document-store namespaces."""

    prefix: str = "knowledge-graph"

    def entities(self, zone: str) -> str:
        return f"{self.prefix}@{zone}"

    @property
    def entity_prefix(self) -> str:
        return f"{self.prefix}@"

    @property
    def relations(self) -> str:
        return f"{self.prefix}-relations"

    @property
    def metadata(self) -> str:
        return f"{self.prefix}-metadata"

    def zone_of(self, namespace: str) -> str | None:
        if namespace.startswith(self.entity_prefix):
            return namespace[len(self.entity_prefix) :]
        return None
