"""Exception taxonomy shared by the engine, the service and the CLI."""

from __future__ import annotations


class KnowledgeGraphError(Exception):
    """Base class for every error raised by memory-zones."""


class InvalidArgumentError(KnowledgeGraphError, ValueError):
    """Empty or malformed identifiers. Never auto-corrected."""


class NotFoundError(KnowledgeGraphError, LookupError):
    """An entity, zone or relation required by the operation does not exist."""


class ConflictError(KnowledgeGraphError):
    """The target already holds an entity of the same name."""


class MissingEndpointsError(KnowledgeGraphError):
    """A relation write found one or both endpoints absent and auto-create was off."""

    def __init__(self, missing: list[tuple[str, str]]):
        self.missing = missing
        sides = ", ".join(f"'{name}' in zone '{zone}'" for zone, name in missing)
        super().__init__(f"Missing relation endpoint(s): {sides}")


class UpstreamUnavailableError(KnowledgeGraphError):
    """The document store or the relevance filter failed or could not be reached."""
