from __future__ import annotations

import os
from dataclasses import asdict
from typing import Any, Literal

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..errors import (
    ConflictError,
    InvalidArgumentError,
    KnowledgeGraphError,
    MissingEndpointsError,
    NotFoundError,
    UpstreamUnavailableError,
)
from ..graph.client import BatchResult, KnowledgeGraph
from ..graph.models import Entity, Neighborhood, Relation
from ..graph.search import SearchResponse
from .auth import require_api_key

ERROR_STATUS: list[tuple[type[KnowledgeGraphError], int]] = [
    (InvalidArgumentError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (MissingEndpointsError, 422),
    (UpstreamUnavailableError, 503),
]


class EntityIn(BaseModel):
    # None means "not sent": creates use the defaults, updates keep the stored value
    name: str
    entityType: str | None = None
    observations: list[str] | None = None
    relevanceScore: float | None = None
    isImportant: bool | None = None


class EntitiesIn(BaseModel):
    entities: list[EntityIn]
    zone: str | None = None


class NamesIn(BaseModel):
    names: list[str]
    zone: str | None = None
    cascade_relations: bool = True


class ObservationsIn(BaseModel):
    observations: list[str]
    zone: str | None = None


class ImportanceIn(BaseModel):
    important: bool = True
    zone: str | None = None
    auto_create: bool = False


class RelationIn(BaseModel):
    model_config = {"populate_by_name": True}

    from_: str = Field(alias="from")
    to: str
    relationType: str
    fromZone: str | None = None
    toZone: str | None = None


class RelationsIn(BaseModel):
    relations: list[RelationIn]
    zone: str | None = None
    auto_create: bool = True


class SearchIn(BaseModel):
    query: str
    zone: str | None = None
    entity_types: list[str] | None = None
    sort_by: str = "relevance"
    limit: int = 10
    offset: int = 0
    information_needed: str | None = None
    reason: str | None = None


class ZoneIn(BaseModel):
    name: str
    description: str | None = None
    config: dict[str, Any] | None = None


class DescribeZoneIn(BaseModel):
    user_hint: str | None = None


class TransferIn(BaseModel):
    names: list[str]
    source_zone: str
    target_zone: str
    relations: bool = True
    overwrite: bool = False


class MergeIn(BaseModel):
    source_zones: list[str]
    target_zone: str
    delete_source_zones: bool = False
    overwrite_conflicts: Literal["skip", "overwrite", "rename"] = "skip"


class ImportIn(BaseModel):
    records: list[dict[str, Any]]


def _entity_out(entity: Entity) -> dict[str, Any]:
    doc = entity.to_document()
    doc.pop("type", None)
    return doc


def _relation_out(relation: Relation) -> dict[str, Any]:
    doc = relation.to_document()
    doc.pop("type", None)
    return doc


def _item_out(item: Any) -> Any:
    if isinstance(item, Entity):
        return _entity_out(item)
    if isinstance(item, Relation):
        return _relation_out(item)
    return item


def _batch_out(result: BatchResult) -> dict[str, Any]:
    return {
        "succeeded": [_item_out(i) for i in result.succeeded],
        "failed": [asdict(f) for f in result.failed],
    }


def _graph_out(result: SearchResponse | Neighborhood) -> dict[str, Any]:
    out: dict[str, Any] = {
        "entities": [_entity_out(e) for e in result.entities],
        "relations": [_relation_out(r) for r in result.relations],
    }
    if isinstance(result, SearchResponse):
        out["total"] = result.total
    return out


def create_app(graph: KnowledgeGraph) -> FastAPI:
    app = FastAPI(title="memory-zones", version=__version__)

    @app.exception_handler(KnowledgeGraphError)
    async def knowledge_graph_error(_request: Request, exc: KnowledgeGraphError):
        status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
        body: dict[str, Any] = {"detail": str(exc)}
        if isinstance(exc, MissingEndpointsError):
            body["missing"] = [{"zone": zone, "name": name} for zone, name in exc.missing]
        return JSONResponse(status_code=status, content=body)

    @app.get("/health")
    def health():
        return {"ok": True, "host": os.uname().nodename}

    # Entities

    @app.post("/v1/entities")
    def create_entities(payload: EntitiesIn, _auth: None = Depends(require_api_key)):
        items = [e.model_dump() for e in payload.entities]
        return _batch_out(graph.create_entities(items, payload.zone))

    @app.put("/v1/entities")
    def update_entities(payload: EntitiesIn, _auth: None = Depends(require_api_key)):
        items = [e.model_dump() for e in payload.entities]
        return _batch_out(graph.update_entities(items, payload.zone))

    @app.post("/v1/entities/delete")
    def delete_entities(payload: NamesIn, _auth: None = Depends(require_api_key)):
        return _batch_out(
            graph.delete_entities(payload.names, payload.zone, cascade_relations=payload.cascade_relations)
        )

    @app.post("/v1/entities/open")
    def open_entities(payload: NamesIn, _auth: None = Depends(require_api_key)):
        return _graph_out(graph.open_entities(payload.names, payload.zone))

    @app.get("/v1/entities/{name}")
    def get_entity(
        name: str, zone: str | None = None, track: bool = True, _auth: None = Depends(require_api_key)
    ):
        entity = graph.get_entity(name, zone, track=track)
        if entity is None:
            raise HTTPException(status_code=404, detail="not found")
        return _entity_out(entity)

    @app.post("/v1/entities/{name}/observations")
    def add_observations(name: str, payload: ObservationsIn, _auth: None = Depends(require_api_key)):
        return _entity_out(graph.add_observations(name, payload.observations, payload.zone))

    @app.post("/v1/entities/{name}/importance")
    def mark_important(name: str, payload: ImportanceIn, _auth: None = Depends(require_api_key)):
        entity = graph.mark_important(name, payload.important, payload.zone, auto_create=payload.auto_create)
        return _entity_out(entity)

    @app.get("/v1/entities/{name}/related")
    def related(name: str, zone: str | None = None, depth: int = 1, _auth: None = Depends(require_api_key)):
        return _graph_out(graph.related(name, zone, depth))

    @app.get("/v1/recent")
    def recent(zone: str | None = None, limit: int = 20, _auth: None = Depends(require_api_key)):
        return {"entities": [_entity_out(e) for e in graph.recent(zone, limit)]}

    # Relations

    @app.post("/v1/relations")
    def create_relations(payload: RelationsIn, _auth: None = Depends(require_api_key)):
        items = [r.model_dump(by_alias=True) for r in payload.relations]
        return _batch_out(graph.create_relations(items, payload.zone, auto_create=payload.auto_create))

    @app.post("/v1/relations/delete")
    def delete_relations(payload: RelationsIn, _auth: None = Depends(require_api_key)):
        items = [r.model_dump(by_alias=True) for r in payload.relations]
        return _batch_out(graph.delete_relations(items, payload.zone))

    # Search

    @app.post("/v1/search")
    def search(payload: SearchIn, _auth: None = Depends(require_api_key)):
        result = graph.search(
            payload.query,
            payload.zone,
            entity_types=payload.entity_types,
            sort_by=payload.sort_by,
            limit=payload.limit,
            offset=payload.offset,
            information_needed=payload.information_needed,
            reason=payload.reason,
        )
        return _graph_out(result)

    # Zones

    @app.get("/v1/zones")
    def list_zones(reason: str | None = None, _auth: None = Depends(require_api_key)):
        return {"zones": graph.list_zones(reason)}

    @app.post("/v1/zones")
    def add_zone(payload: ZoneIn, _auth: None = Depends(require_api_key)):
        return graph.add_zone(payload.name, payload.description, payload.config).to_document()

    @app.delete("/v1/zones/{name}")
    def delete_zone(name: str, _auth: None = Depends(require_api_key)):
        if not graph.delete_zone(name):
            raise HTTPException(status_code=404, detail="not found")
        return {"deleted": name}

    @app.get("/v1/zones/{name}/stats")
    def zone_stats(name: str, _auth: None = Depends(require_api_key)):
        return asdict(graph.zone_stats(name))

    @app.post("/v1/zones/{name}/describe")
    def describe_zone(name: str, payload: DescribeZoneIn, _auth: None = Depends(require_api_key)):
        return graph.describe_zone(name, payload.user_hint).to_document()

    @app.get("/v1/zones/{name}/export")
    def export_zone(name: str, _auth: None = Depends(require_api_key)):
        return {"records": graph.export_zone(name)}

    @app.post("/v1/zones/{name}/import")
    def import_zone(name: str, payload: ImportIn, _auth: None = Depends(require_api_key)):
        return asdict(graph.import_records(payload.records, name))

    @app.post("/v1/zones/copy")
    def copy_entities(payload: TransferIn, _auth: None = Depends(require_api_key)):
        result = graph.copy_entities(
            payload.names,
            payload.source_zone,
            payload.target_zone,
            copy_relations=payload.relations,
            overwrite=payload.overwrite,
        )
        return asdict(result)

    @app.post("/v1/zones/move")
    def move_entities(payload: TransferIn, _auth: None = Depends(require_api_key)):
        result = graph.move_entities(
            payload.names,
            payload.source_zone,
            payload.target_zone,
            move_relations=payload.relations,
            overwrite=payload.overwrite,
        )
        return asdict(result)

    @app.post("/v1/zones/merge")
    def merge_zones(payload: MergeIn, _auth: None = Depends(require_api_key)):
        result = graph.merge_zones(
            payload.source_zones,
            payload.target_zone,
            delete_source_zones=payload.delete_source_zones,
            overwrite_conflicts=payload.overwrite_conflicts,
        )
        return asdict(result)

    return app
