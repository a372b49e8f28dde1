"""
Zone set-operations: copy, move and merge entities between zones.

None of these are transactional. Each entity is handled on its own and the
outcome is reported per item, so a partial run is visible in the result
rather than raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal

from ..errors import InvalidArgumentError
from .entities import EntityStore
from .models import Entity, Relation
from .relations import RelationStore
from .zones import ZoneRegistry, validate_zone_name

logger = logging.getLogger(__name__)

ConflictPolicy = Literal["skip", "overwrite", "rename"]
CONFLICT_POLICIES = ("skip", "overwrite", "rename")


@dataclass
class SkippedEntity:
    name: str
    reason: str


@dataclass
class FailedZone:
    zone: str
    reason: str


@dataclass
class CopyResult:
    copied: list[str] = field(default_factory=list)
    skipped: list[SkippedEntity] = field(default_factory=list)
    relations_copied: int = 0


@dataclass
class MoveResult:
    moved: list[str] = field(default_factory=list)
    skipped: list[SkippedEntity] = field(default_factory=list)
    relations_moved: int = 0


@dataclass
class MergeResult:
    merged_zones: list[str] = field(default_factory=list)
    failed_zones: list[FailedZone] = field(default_factory=list)
    entities_copied: int = 0
    entities_skipped: int = 0
    relations_copied: int = 0


def renamed(name: str, source_zone: str) -> str:
    return f"{name}_from_{source_zone}"


class ZoneOperations:
    def __init__(self, zones: ZoneRegistry, entities: EntityStore, relations: RelationStore):
        self.zones = zones
        self.entities = entities
        self.relations = relations

    def _validate_transfer(self, names: list[str], source_zone: str, target_zone: str) -> list[str]:
        cleaned = [n for n in dict.fromkeys(names or []) if n and n.strip()]
        if not cleaned:
            raise InvalidArgumentError("At least one entity name is required")
        validate_zone_name(source_zone)
        validate_zone_name(target_zone)
        if source_zone == target_zone:
            raise InvalidArgumentError("Source and target zones must differ")
        return cleaned

    def _resolves(self, zone: str, name: str) -> bool:
        return self.entities.get_untracked(name, zone) is not None

    def _write_if_resolvable(self, relation: Relation) -> bool:
        # checked freshly: an endpoint may have been added or removed meanwhile
        if not self._resolves(relation.from_zone, relation.from_name) or not self._resolves(
            relation.to_zone, relation.to_name
        ):
            logger.debug(f"Dropped relation {relation.label}: endpoint missing in destination")
            return False
        self.relations.save_relation(relation, auto_create=False)
        return True

    def copy(
        self,
        names: list[str],
        source_zone: str,
        target_zone: str,
        copy_relations: bool = True,
        overwrite: bool = False,
    ) -> CopyResult:
        names = self._validate_transfer(names, source_zone, target_zone)
        result, _ = self._copy(names, source_zone, target_zone, copy_relations, overwrite)
        return result

    def _copy(
        self,
        names: list[str],
        source_zone: str,
        target_zone: str,
        copy_relations: bool,
        overwrite: bool,
    ) -> tuple[CopyResult, list[Relation]]:
        """Copy entities and return the source relations that were re-created in the target."""
        self.zones.ensure(source_zone)
        self.zones.ensure(target_zone)
        result = CopyResult()

        for name in names:
            entity = self.entities.get_untracked(name, source_zone)
            if entity is None:
                result.skipped.append(SkippedEntity(name, f"Entity not found in zone '{source_zone}'"))
                continue
            if not overwrite and self._resolves(target_zone, name):
                result.skipped.append(SkippedEntity(name, f"Entity already exists in zone '{target_zone}'"))
                continue
            self.entities.save(_reset_copy(entity, name), target_zone)
            result.copied.append(name)

        carried: list[Relation] = []
        if copy_relations and result.copied:
            for relation in self.relations.list_for_entities(result.copied, source_zone):
                if self._write_if_resolvable(relation.rezoned(source_zone, target_zone)):
                    carried.append(relation)
            result.relations_copied = len(carried)
        return result, carried

    def move(
        self,
        names: list[str],
        source_zone: str,
        target_zone: str,
        move_relations: bool = True,
        overwrite: bool = False,
    ) -> MoveResult:
        names = self._validate_transfer(names, source_zone, target_zone)
        copied, carried = self._copy(names, source_zone, target_zone, move_relations, overwrite)
        result = MoveResult(
            moved=list(copied.copied),
            skipped=list(copied.skipped),
            relations_moved=copied.relations_copied,
        )

        for relation in carried:
            self.relations.delete(
                relation.from_name,
                relation.to_name,
                relation.relation_type,
                relation.from_zone,
                relation.to_zone,
            )
        for name in copied.copied:
            try:
                deleted = self.entities.delete(name, source_zone, cascade_relations=False)
            except Exception as e:
                logger.warning(f"Moved {name} but could not delete it from {source_zone}: {e}")
                result.skipped.append(SkippedEntity(name, f"Copied but not deleted from source: {e}"))
                continue
            if not deleted:
                result.skipped.append(SkippedEntity(name, "Copied but not deleted from source"))
        return result

    def merge(
        self,
        source_zones: list[str],
        target_zone: str,
        delete_source_zones: bool = False,
        overwrite_conflicts: ConflictPolicy = "skip",
    ) -> MergeResult:
        sources = [z for z in dict.fromkeys(source_zones or []) if z]
        if not sources:
            raise InvalidArgumentError("At least one source zone is required")
        if overwrite_conflicts not in CONFLICT_POLICIES:
            raise InvalidArgumentError(
                f"Invalid conflict strategy '{overwrite_conflicts}': use skip, overwrite or rename"
            )
        validate_zone_name(target_zone)
        for zone in sources:
            validate_zone_name(zone)
        self.zones.ensure(target_zone)

        result = MergeResult()
        for source in sources:
            if source == target_zone:
                result.failed_zones.append(FailedZone(source, "Cannot merge a zone with itself"))
                continue
            try:
                names = self.entities.names(source)
                if not names:
                    result.failed_zones.append(FailedZone(source, "no entities"))
                    continue
                if overwrite_conflicts == "rename":
                    copied, skipped, relations = self._merge_renaming(names, source, target_zone)
                else:
                    outcome, _ = self._copy(
                        names, source, target_zone, True, overwrite_conflicts == "overwrite"
                    )
                    copied, skipped, relations = (
                        len(outcome.copied),
                        len(outcome.skipped),
                        outcome.relations_copied,
                    )
            except Exception as e:
                logger.warning(f"Merging zone {source} into {target_zone} failed: {e}")
                result.failed_zones.append(FailedZone(source, str(e)))
                continue

            result.entities_copied += copied
            result.entities_skipped += skipped
            result.relations_copied += relations
            result.merged_zones.append(source)

            if delete_source_zones:
                try:
                    self.zones.delete(source)
                except Exception as e:
                    logger.warning(f"Merged zone {source} but could not delete it: {e}")
        return result

    def _merge_renaming(self, names: list[str], source: str, target: str) -> tuple[int, int, int]:
        copied = skipped = 0
        destination: dict[str, str] = {}
        for name in names:
            entity = self.entities.get_untracked(name, source)
            if entity is None:
                skipped += 1
                continue
            new_name = renamed(name, source) if self._resolves(target, name) else name
            self.entities.save(_reset_copy(entity, new_name), target)
            destination[name] = new_name
            copied += 1

        relations = 0
        for relation in self.relations.list_for_entities(list(destination), source):
            candidate = Relation(
                from_name=self._endpoint(relation.from_name, relation.from_zone, source, target, destination),
                from_zone=target if relation.from_zone == source else relation.from_zone,
                to_name=self._endpoint(relation.to_name, relation.to_zone, source, target, destination),
                to_zone=target if relation.to_zone == source else relation.to_zone,
                relation_type=relation.relation_type,
            )
            if self._write_if_resolvable(candidate):
                relations += 1
        return copied, skipped, relations

    def _endpoint(self, name: str, zone: str, source: str, target: str, destination: dict[str, str]) -> str:
        """Prefer the original name when it exists in the target, else the renamed copy."""
        if zone != source:
            return name
        if self._resolves(target, name):
            return name
        return destination.get(name, name)


def _reset_copy(entity: Entity, name: str) -> Entity:
    return Entity(
        name=name,
        entity_type=entity.entity_type,
        observations=list(entity.observations),
        relevance_score=entity.relevance_score,
        is_important=entity.is_important,
    )
