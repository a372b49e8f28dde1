"""Zoned knowledge-graph engine."""

from .client import BatchFailure, BatchResult, KnowledgeGraph, build_knowledge_graph
from .models import DEFAULT_ZONE, Entity, Namespaces, Neighborhood, Relation, ZoneMetadata
from .search import SearchResponse, classify_query
from .transfer import ImportResult, read_ndjson, write_ndjson
from .zone_ops import CopyResult, FailedZone, MergeResult, MoveResult, SkippedEntity
from .zones import ZoneStats, validate_zone_name

__all__ = [
    "DEFAULT_ZONE",
    "BatchFailure",
    "BatchResult",
    "CopyResult",
    "Entity",
    "FailedZone",
    "ImportResult",
    "KnowledgeGraph",
    "MergeResult",
    "MoveResult",
    "Namespaces",
    "Neighborhood",
    "Relation",
    "SearchResponse",
    "SkippedEntity",
    "ZoneMetadata",
    "ZoneStats",
    "build_knowledge_graph",
    "classify_query",
    "read_ndjson",
    "validate_zone_name",
    "write_ndjson",
]
