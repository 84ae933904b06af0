"""
Shared pytest fixtures for the credential lifecycle unit tests.

Provides a fixed clock, an in-memory versioned ``CredentialStore``,
recording notification/audit sinks, a mock ``AsyncSession`` and a factory
for sample credential records, so no test needs a live database.
"""

import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence
from unittest.mock import AsyncMock, MagicMock

import pytest

from carecompliance.events.credentialEvents import CredentialEvent
from carecompliance.models.credential import (
    CheckLevel,
    CredentialRecord,
    CredentialStatus,
    CredentialType,
    RoleSensitivity,
)
from carecompliance.services.collaborators import SaveStatus


NOW = datetime(2025, 6, 25, 9, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Collaborator test doubles
# ---------------------------------------------------------------------------


class FixedClock:
    """Clock pinned to a settable instant."""

    def __init__(self, now: datetime = NOW) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, days: int) -> None:
        self.current = self.current + timedelta(days=days)


class InMemoryCredentialStore:
    """Versioned dict-backed store.

    ``before_save`` is a one-shot async hook run at the start of the next
    ``save`` call, used to interleave a competing writer.
    """

    def __init__(self, records: Sequence[CredentialRecord] = ()) -> None:
        self.records: dict[uuid.UUID, CredentialRecord] = {r.id: r for r in records}
        self.save_calls = 0
        self.before_save: Optional[Callable[[], Awaitable[Any]]] = None

    async def load(self, record_id: uuid.UUID) -> Optional[CredentialRecord]:
        return self.records.get(record_id)

    async def save(
        self,
        record: CredentialRecord,
        expected_version: Optional[int],
    ) -> SaveStatus:
        self.save_calls += 1
        hook, self.before_save = self.before_save, None
        if hook is not None:
            await hook()

        current = self.records.get(record.id)
        if expected_version is None:
            if current is not None:
                return SaveStatus.CONCURRENT_MODIFICATION
        elif current is None or current.version != expected_version:
            return SaveStatus.CONCURRENT_MODIFICATION
        self.records[record.id] = record
        return SaveStatus.OK

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
        matches = [
            r
            for r in self.records.values()
            if (subject_id is None or r.subject_id == subject_id)
            and (organization_id is None or r.organization_id == organization_id)
            and (not statuses or r.status in statuses)
            and (credential_type is None or r.credential_type == credential_type)
            and (
                expires_before is None
                or (r.expiry_date is not None and r.expiry_date <= expires_before)
            )
        ]
        matches.sort(key=lambda r: (r.created_at or NOW, str(r.id)))
        end = None if limit is None else offset + limit
        return matches[offset:end]


class RecordingNotificationSink:
    def __init__(self) -> None:
        self.events: list[CredentialEvent] = []

    async def notify(self, event: CredentialEvent) -> None:
        self.events.append(event)

    @property
    def event_types(self) -> list[str]:
        return [e.event_type for e in self.events]


class RecordingAuditSink:
    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []

    async def record(self, action, actor_id, record_id, before_state, after_state) -> None:
        self.entries.append(
            {
                "action": action,
                "actor_id": actor_id,
                "record_id": record_id,
                "before_state": before_state,
                "after_state": after_state,
            }
        )

    @property
    def actions(self) -> list[str]:
        return [e["action"] for e in self.entries]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def notifications() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def audit() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def mock_db() -> AsyncMock:
    """Async mock of ``AsyncSession``.

    Tests configure ``mock_db.execute.return_value`` to control results.
    """
    session = AsyncMock()
    session.add = MagicMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


@pytest.fixture
def make_record() -> Callable[..., CredentialRecord]:
    """Factory for credential records.

    Defaults to a basic criminal-record check awaiting review; any field can
    be overridden.  ``cleared_on`` / ``expires_on`` fill in a cleared record's
    dates without going through the state machine.
    """

    def _make(
        credential_type: CredentialType = CredentialType.CRIMINAL_RECORD_CHECK,
        check_level: CheckLevel = CheckLevel.BASIC,
        status: CredentialStatus = CredentialStatus.UNDER_REVIEW,
        *,
        cleared_on: Optional[datetime] = None,
        expires_on: Optional[date] = None,
        **overrides: Any,
    ) -> CredentialRecord:
        fields: dict[str, Any] = {
            "id": uuid.uuid4(),
            "subject_id": uuid.uuid4(),
            "credential_type": credential_type,
            "check_level": check_level,
            "status": status,
            "role_sensitivity": RoleSensitivity(),
            "created_at": NOW - timedelta(days=60),
            "application_date": NOW - timedelta(days=60),
        }
        if status != CredentialStatus.NOT_STARTED:
            fields["application_reference"] = "APP-001"
        if cleared_on is not None:
            fields["application_date"] = cleared_on - timedelta(days=14)
            fields["completion_date"] = cleared_on
            fields["certificate_number"] = "CERT-001"
        if expires_on is not None:
            fields["expiry_date"] = expires_on
        fields.update(overrides)
        return CredentialRecord(**fields)

    return _make
