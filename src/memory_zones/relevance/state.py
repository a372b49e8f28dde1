"""
Model rotation for rate-limited chat backends.

    HEALTHY(model 0) --429--> DEGRADED(model i, upgrade_at)
    DEGRADED --429 on last model--> DISABLED(until)
    DEGRADED --upgrade_at passed--> one model back up
    DISABLED --until passed--> HEALTHY(model 0)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum

logger = logging.getLogger(__name__)


class RotationState(Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DISABLED = "disabled"


class ModelRotation:
    def __init__(
        self,
        models: list[str],
        cooldown_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not models:
            raise ValueError("At least one model is required")
        self.models = list(models)
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._index = 0
        self._upgrade_at: float | None = None
        self._disabled_until: float | None = None

    def _refresh(self) -> None:
        now = self._clock()
        if self._disabled_until is not None and now >= self._disabled_until:
            self._disabled_until = None
            self._index = 0
            self._upgrade_at = None
            logger.info(f"Relevance filter re-enabled with model {self.models[0]}")
        if self._index > 0 and self._upgrade_at is not None and now >= self._upgrade_at:
            self._index -= 1
            self._upgrade_at = now + self.cooldown_seconds if self._index > 0 else None
            logger.info(f"Attempting upgrade to model {self.models[self._index]}")

    @property
    def state(self) -> RotationState:
        self._refresh()
        if self._disabled_until is not None:
            return RotationState.DISABLED
        if self._index > 0:
            return RotationState.DEGRADED
        return RotationState.HEALTHY

    def current(self) -> str | None:
        """Model to use now, or None while disabled."""
        if self.state is RotationState.DISABLED:
            return None
        return self.models[self._index]

    def rate_limited(self) -> bool:
        """Fall back to the next model. Returns False once every model is exhausted."""
        now = self._clock()
        if self._index < len(self.models) - 1:
            self._index += 1
            self._upgrade_at = now + self.cooldown_seconds
            logger.warning(f"Switching to model {self.models[self._index]} for {self.cooldown_seconds:.0f}s")
            return True
        self._disabled_until = now + self.cooldown_seconds
        logger.warning(f"All models rate limited; relevance filter disabled for {self.cooldown_seconds:.0f}s")
        return False
