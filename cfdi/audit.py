from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from django.db import DatabaseError, transaction

from cfdi.models import AuditLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEvent:
    business: Any
    action: str
    resource_type: str
    resource_id: str = ""
    success: bool = True
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> None:
        ...


class DatabaseAuditSink:
    """Writes audit events to `cfdi.AuditLog`. A failed write never fails the operation."""

    def record(self, event: AuditEvent) -> None:
        try:
            with transaction.atomic():
                AuditLog.objects.create(
                    business=event.business,
                    action=event.action,
                    resource_type=event.resource_type,
                    resource_id=str(event.resource_id or ""),
                    success=event.success,
                    message=event.message[:2000],
                    details=event.details,
                )
        except DatabaseError:
            logger.warning(
                "Audit write failed for %s %s:%s", event.action, event.resource_type, event.resource_id,
                exc_info=True,
            )
