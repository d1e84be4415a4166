"""Audit events for access decisions and grant changes.

Provides:
- ``AuditEvent`` — wire shape consumed by audit sinks.
- ``AuditDispatcher`` — thread-safe handler registry with best-effort,
  synchronous delivery.
- ``LoggingAuditHandler`` — sink writing events to a stdlib logger.

Transport and storage of events are up to the registered handlers.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from .permissions.constants import AuditEventType, SubjectType
from .permissions.models import AccessRequest, EvaluationResult

logger = logging.getLogger(__name__)


class AuditSubject(BaseModel):
    model_config = {"frozen": True}

    id: str
    type: str = SubjectType.USER.value


class AuditResource(BaseModel):
    model_config = {"frozen": True}

    type: str
    id: Optional[str] = None


class AuditEvent(BaseModel):
    """One audit record.

    ``result`` is ``allowed`` or ``denied``; ``reason`` carries the engine's
    reason code (e.g. ``super_admin_bypass``, ``matrix_deny``).
    """

    model_config = {"frozen": True}

    id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    type: AuditEventType
    subject: AuditSubject
    resource: Optional[AuditResource] = None
    action: Optional[str] = None
    result: Literal["allowed", "denied"]
    reason: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def for_access_check(cls, request: AccessRequest, result: EvaluationResult) -> AuditEvent:
        return cls(
            type=AuditEventType.ACCESS_CHECK,
            subject=AuditSubject(id=request.subject.id, type=request.subject.type.value),
            resource=AuditResource(type=request.resource.type, id=request.resource.id),
            action=request.action,
            result="allowed" if result.allowed else "denied",
            reason=result.reason,
            metadata={
                "decision": result.decision.value,
                "matching_policies": list(result.matching_policies),
            },
        )


AuditHandler = Callable[[AuditEvent], None]


class AuditDispatcher:
    """Delivers events to every registered handler, in registration order.

    A failing handler is logged and skipped; it never affects the caller or
    the remaining handlers.
    """

    def __init__(self) -> None:
        self._handlers: list[AuditHandler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: AuditHandler) -> Callable[[], None]:
        """Register ``handler``; returns a callable that unregisters it."""
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return unsubscribe

    def emit(self, event: AuditEvent) -> None:
        with self._lock:
            handlers = tuple(self._handlers)

        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Audit handler %r failed for event %s", handler, event.id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)


class LoggingAuditHandler:
    """Audit sink that writes each event as JSON to a logger."""

    def __init__(self, target: logging.Logger | None = None, level: int = logging.INFO) -> None:
        self._logger = target or logging.getLogger("contextaccess.audit.events")
        self._level = level

    def __call__(self, event: AuditEvent) -> None:
        self._logger.log(
            self._level,
            "audit %s",
            event.model_dump_json(),
            extra={"subject_id": event.subject.id},
        )


__all__ = [
    "AuditDispatcher",
    "AuditEvent",
    "AuditHandler",
    "AuditResource",
    "AuditSubject",
    "LoggingAuditHandler",
]
