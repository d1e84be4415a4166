"""Decision caches for the access engine.

Two maps share a single expiry: a flat ``permission -> bool`` cache and an
``evaluation key -> EvaluationResult`` cache. The expiry is set by the first
insert after a clear; once it passes, both maps are dropped together.
Stale hits within the TTL window are accepted, and any context or
configuration change clears everything.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from .permissions.models import EvaluationResult


class DecisionCache:
    """Thread-safe pair of caches with one shared TTL.

    Args:
        ttl_seconds: Lifetime of a cache generation.
        enabled: When False every lookup misses and inserts are dropped.
        clock: Monotonic time source (seconds).
    """

    def __init__(
        self,
        ttl_seconds: float,
        *,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.enabled = enabled
        self._clock = clock
        self._lock = threading.Lock()
        self._permissions: dict[str, bool] = {}
        self._evaluations: dict[str, EvaluationResult] = {}
        self._expires_at: Optional[float] = None

    @property
    def is_valid(self) -> bool:
        with self._lock:
            return self._valid_locked()

    def get_permission(self, permission: str) -> Optional[bool]:
        if not self.enabled:
            return None
        with self._lock:
            if not self._valid_locked():
                self._clear_locked()
                return None
            return self._permissions.get(permission)

    def set_permission(self, permission: str, granted: bool) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._start_generation_locked()
            self._permissions[permission] = granted

    def get_evaluation(self, key: str) -> Optional[EvaluationResult]:
        if not self.enabled:
            return None
        with self._lock:
            if not self._valid_locked():
                self._clear_locked()
                return None
            return self._evaluations.get(key)

    def set_evaluation(self, key: str, result: EvaluationResult) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._start_generation_locked()
            self._evaluations[key] = result

    def clear(self) -> None:
        with self._lock:
            self._clear_locked()

    def __len__(self) -> int:
        with self._lock:
            return len(self._permissions) + len(self._evaluations)

    def _valid_locked(self) -> bool:
        return self._expires_at is not None and self._clock() < self._expires_at

    def _start_generation_locked(self) -> None:
        if not self._valid_locked():
            self._clear_locked()
            self._expires_at = self._clock() + self.ttl_seconds

    def _clear_locked(self) -> None:
        self._permissions.clear()
        self._evaluations.clear()
        self._expires_at = None


__all__ = ["DecisionCache"]
