"""
Collaborator interfaces the lifecycle service depends on.

Persistence, time, notification delivery and audit logging all live outside
the lifecycle core.  Each is described by a ``Protocol`` so any
implementation (SQL store, in-memory test double, message-bus sink) can be
injected interchangeably.

Default implementations provided here:
- ``SystemClock``                -- wall-clock UTC time
- ``LoggingNotificationSink``    -- logs events until a delivery channel is wired
- ``LoggingAuditSink``           -- logs audit entries until an audit store is wired
"""

from __future__ import annotations

import enum
import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Optional, Protocol, Sequence

from carecompliance.events.credentialEvents import CredentialEvent
from carecompliance.models.credential import (
    CredentialRecord,
    CredentialStatus,
    CredentialType,
)

logger = logging.getLogger(__name__)


class SaveStatus(str, enum.Enum):
    OK = "ok"
    CONCURRENT_MODIFICATION = "concurrent_modification"


class CredentialStore(Protocol):
    """Versioned record persistence.

    ``save`` with ``expected_version=None`` inserts a new record.  Otherwise
    it must only write when the stored version still equals
    ``expected_version`` and report ``CONCURRENT_MODIFICATION`` when it does
    not.  The record passed in already carries its new version number.
    """

    async def load(self, record_id: uuid.UUID) -> Optional[CredentialRecord]:
        ...

    async def save(
        self,
        record: CredentialRecord,
        expected_version: Optional[int],
    ) -> SaveStatus:
        ...

    async def query(
        self,
        *,
        subject_id: Optional[uuid.UUID] = None,
        organization_id: Optional[uuid.UUID] = None,
        statuses: Optional[Sequence[CredentialStatus]] = None,
        credential_type: Optional[CredentialType] = None,
        expires_before: Optional[date] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[CredentialRecord]:
        ...


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class NotificationSink(Protocol):
    async def notify(self, event: CredentialEvent) -> None:
        ...


class AuditSink(Protocol):
    async def record(
        self,
        action: str,
        actor_id: Optional[uuid.UUID],
        record_id: uuid.UUID,
        before_state: Optional[dict[str, Any]],
        after_state: dict[str, Any],
    ) -> None:
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class LoggingNotificationSink:
    """Stand-in sink that logs each event payload.

    In production this would hand the payload to the email/SMS/push
    delivery service.
    """

    async def notify(self, event: CredentialEvent) -> None:
        logger.info(
            "NOTIFICATION: %s for credential %s (subject %s) data=%s",
            event.event_type,
            event.record_id,
            event.subject_id,
            event.data,
        )


class LoggingAuditSink:
    """Stand-in audit sink that writes entries to the application log."""

    async def record(
        self,
        action: str,
        actor_id: Optional[uuid.UUID],
        record_id: uuid.UUID,
        before_state: Optional[dict[str, Any]],
        after_state: dict[str, Any],
    ) -> None:
        logger.info(
            "AUDIT: action=%s actor=%s record=%s status=%s -> %s",
            action,
            actor_id,
            record_id,
            before_state.get("status") if before_state else None,
            after_state.get("status"),
        )
