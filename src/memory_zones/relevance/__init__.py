"""Optional AI relevance filtering for search results and zone listings."""

from .base import RelevanceFilter, ZoneDescription
from .groq import ChatRelevanceFilter
from .state import ModelRotation, RotationState

__all__ = [
    "ChatRelevanceFilter",
    "ModelRotation",
    "RelevanceFilter",
    "RotationState",
    "ZoneDescription",
]
