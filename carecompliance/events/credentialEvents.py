"""
Credential lifecycle events and side-effect descriptions.

The state machine never performs I/O.  Instead, each successful transition
returns a tuple of effects for the caller to execute:

  - ``NotifyEffect``  -> ``NotificationSink.notify(event)`` (fire-and-forget)
  - ``AuditEffect``   -> ``AuditSink.record(...)`` (best-effort)

Event types:
  - credential.created
  - credential.application_started
  - credential.submitted
  - credential.processing_started
  - credential.cleared
  - credential.rejected
  - credential.cancelled
  - credential.expired
  - credential.role_reassessed
  - credential.ce_recorded
  - credential.renewal_started
  - credential.expiry_reminder
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from carecompliance.models.credential import CredentialRecord


@dataclass(frozen=True)
class CredentialEvent:
    event_type: str
    record_id: uuid.UUID
    subject_id: uuid.UUID
    occurred_at: datetime
    actor_id: Optional[uuid.UUID] = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """Construct a standardised event payload."""
        return {
            "event_type": self.event_type,
            "record_id": str(self.record_id),
            "subject_id": str(self.subject_id),
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "timestamp": self.occurred_at.isoformat(),
            "data": dict(self.data),
        }


@dataclass(frozen=True)
class NotifyEffect:
    event: CredentialEvent


@dataclass(frozen=True)
class AuditEffect:
    action: str
    actor_id: Optional[uuid.UUID]
    record_id: uuid.UUID
    before_state: Optional[dict[str, Any]]
    after_state: dict[str, Any]


def build_event(
    event_type: str,
    record: CredentialRecord,
    occurred_at: datetime,
    *,
    actor_id: Optional[uuid.UUID] = None,
    data: Optional[dict[str, Any]] = None,
) -> CredentialEvent:
    return CredentialEvent(
        event_type=f"credential.{event_type}",
        record_id=record.id,
        subject_id=record.subject_id,
        occurred_at=occurred_at,
        actor_id=actor_id,
        data={
            "credential_type": record.credential_type.value,
            "check_level": record.check_level.value,
            "status": record.status.value,
            **(data or {}),
        },
    )


def transition_effects(
    action: str,
    event_type: str,
    before: Optional[CredentialRecord],
    after: CredentialRecord,
    occurred_at: datetime,
    actor_id: Optional[uuid.UUID],
    data: Optional[dict[str, Any]] = None,
) -> tuple[NotifyEffect | AuditEffect, ...]:
    """Standard effect pair for a successful mutation: audit, then notify."""
    return (
        AuditEffect(
            action=action,
            actor_id=actor_id,
            record_id=after.id,
            before_state=before.snapshot() if before is not None else None,
            after_state=after.snapshot(),
        ),
        NotifyEffect(
            build_event(event_type, after, occurred_at, actor_id=actor_id, data=data),
        ),
    )


def expiry_reminder_event(
    record: CredentialRecord,
    occurred_at: datetime,
    days_remaining: int,
) -> CredentialEvent:
    """Warning about an upcoming expiry, emitted by the sweep job."""
    return build_event(
        "expiry_reminder",
        record,
        occurred_at,
        data={
            "expiry_date": record.expiry_date.isoformat() if record.expiry_date else None,
            "days_remaining": days_remaining,
        },
    )
