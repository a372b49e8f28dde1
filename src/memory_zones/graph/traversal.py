from __future__ import annotations

import logging
from collections import deque

from ..errors import InvalidArgumentError
from .entities import EntityStore
from .models import Entity, Neighborhood, Relation
from .relations import RelationStore

logger = logging.getLogger(__name__)


class GraphTraversal:
    """Bounded breadth-first expansion around a root entity.

    Every entity reached is fetched tracked, so exploring a neighbourhood
    counts as reading it.
    """

    def __init__(self, entities: EntityStore, relations: RelationStore):
        self.entities = entities
        self.relations = relations

    def expand(self, root_name: str, zone: str, max_depth: int = 2) -> Neighborhood:
        if max_depth < 0:
            raise InvalidArgumentError("max_depth must be >= 0")

        root = self.entities.get_tracked(root_name, zone)
        if root is None:
            logger.debug(f"Traversal root {zone}:{root_name} not found")
            return Neighborhood()

        found: dict[tuple[str, str], Entity] = {root.key: root}
        edges: dict[tuple[str, str, str, str, str], Relation] = {}
        visited: set[tuple[str, str]] = set()
        queue: deque[tuple[str, str, int]] = deque([(root_name, zone, 0)])

        while queue:
            name, entity_zone, depth = queue.popleft()
            if (entity_zone, name) in visited or depth >= max_depth:
                continue
            visited.add((entity_zone, name))

            outgoing = self.relations.outgoing(name, entity_zone)
            incoming = self.relations.incoming(name, entity_zone)
            for relation in [*outgoing, *incoming]:
                if relation.key in edges:
                    continue
                edges[relation.key] = relation

                if (relation.from_zone, relation.from_name) == (entity_zone, name):
                    other_name, other_zone = relation.to_name, relation.to_zone
                else:
                    other_name, other_zone = relation.from_name, relation.from_zone
                if (other_zone, other_name) in found:
                    continue
                other = self.entities.get_tracked(other_name, other_zone)
                if other is None:
                    continue
                found[other.key] = other
                if depth < max_depth - 1:
                    queue.append((other_name, other_zone, depth + 1))

        return Neighborhood(entities=list(found.values()), relations=list(edges.values()))
