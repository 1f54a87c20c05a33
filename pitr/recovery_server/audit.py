"""
Audit trail collaborator.

Restore attempts and their outcomes are reported to an AuditSink. The sink
is an external concern (a database table, a SIEM forwarder); the default
writes to the logging tree under `pitr.audit`.

Invariants:
    - emit_audit() never raises and never blocks the caller
    - Audit details are JSON-serialisable
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from .txlog.dispatcher import fire_and_forget

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEvent:
    """One audit record.

    Attributes:
        action: What happened (e.g. restore_started, restore_failed)
        entity: Kind of entity acted on
        entity_id: Id of the entity
        user_id: Acting user
        details: Additional context
    """

    action: str
    entity: str
    entity_id: int | None = None
    user_id: int | None = None
    details: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class AuditSink(Protocol):
    """Destination for audit events."""

    async def log(self, event: AuditEvent) -> None:
        ...


class LoggingAuditSink:
    """Writes audit events as structured log records."""

    def __init__(self, logger_name: str = "pitr.audit") -> None:
        self._logger = logging.getLogger(logger_name)

    async def log(self, event: AuditEvent) -> None:
        self._logger.info(
            f"audit: {event.action}",
            extra={
                "action": event.action,
                "entity": event.entity,
                "entity_id": event.entity_id,
                "user_id": event.user_id,
                "details": event.details,
            },
        )


def emit_audit(
    sink: AuditSink | None,
    event: AuditEvent,
    tasks: set | None = None,
) -> None:
    """Send an event to the sink in the background. Never raises."""
    if sink is None:
        return
    try:
        fire_and_forget(sink.log(event), f"audit {event.action}", tasks)
    except Exception as e:
        logger.error(f"Failed to schedule audit event: {e}", extra={"action": event.action})
