from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass
class ZoneDescription:
    description: str
    short_description: str


class RelevanceFilter(Protocol):
    """Optional collaborator that judges how useful candidates are for a need.

    Every method returns None when the filter cannot answer; callers then fall
    back to unfiltered results.
    """

    @property
    def enabled(self) -> bool: ...

    def score(
        self, candidates: list[dict[str, Any]], need: str, reason: str | None = None
    ) -> dict[str, int] | None: ...

    def describe_zone(
        self,
        zone: str,
        current_description: str | None,
        sample_entities: list[dict[str, Any]],
        user_hint: str | None = None,
    ) -> ZoneDescription | None: ...

    def classify_zones(self, zones: list[dict[str, Any]], reason: str) -> dict[str, int] | None: ...
