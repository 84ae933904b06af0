"""
Credential Lifecycle Service.

Orchestrates the pure lifecycle core against the injected collaborators:

- loads the record from the ``CredentialStore``
- applies the event through the state machine using the injected ``Clock``
- saves with an optimistic version check, re-reading and re-validating on
  ``CONCURRENT_MODIFICATION`` (guards always run against fresh state)
- executes the returned effects: audit first, then notification

Audit and notification are best-effort: a failing sink is logged and never
undoes a saved transition.

Every expected failure comes back as a ``TransitionOutcome`` with an error;
nothing in the normal business flow raises.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, AsyncIterator, Iterable, Optional, Sequence

from carecompliance.core.config import settings
from carecompliance.core.errors import LifecycleError, TransitionOutcome
from carecompliance.events.credentialEvents import AuditEffect, NotifyEffect
from carecompliance.models.credential import (
    CheckLevel,
    CredentialRecord,
    CredentialStatus,
    CredentialType,
    RoleSensitivity,
)
from carecompliance.services import credentialStateManager
from carecompliance.services.collaborators import (
    AuditSink,
    Clock,
    CredentialStore,
    LoggingAuditSink,
    LoggingNotificationSink,
    NotificationSink,
    SaveStatus,
)
from carecompliance.services.complianceAggregator import ComplianceSnapshot, ComplianceTally
from carecompliance.services.credentialStateManager import SYSTEM_ACTOR, Actor, LifecycleEvent
from carecompliance.services.riskClassifier import EXPIRY_WARNING_DAYS, Classification, classify

logger = logging.getLogger(__name__)


@dataclass
class BulkTransitionResult:
    """Outcome of applying one event to many records."""
    succeeded: list[uuid.UUID] = field(default_factory=list)
    failed: dict[uuid.UUID, LifecycleError] = field(default_factory=dict)

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded)


class CredentialLifecycleService:
    """Entry point for callers (HTTP controllers, jobs) mutating credentials."""

    def __init__(
        self,
        store: CredentialStore,
        clock: Clock,
        notifications: Optional[NotificationSink] = None,
        audit: Optional[AuditSink] = None,
        *,
        max_attempts: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._notifications = notifications or LoggingNotificationSink()
        self._audit = audit or LoggingAuditSink()
        self._max_attempts = max_attempts or settings.max_transition_attempts
        self._page_size = page_size or settings.default_page_size

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def notifications(self) -> NotificationSink:
        return self._notifications

    # -----------------------------------------------------------------------
    # Mutations
    # -----------------------------------------------------------------------

    async def create_credential(
        self,
        subject_id: uuid.UUID,
        credential_type: CredentialType,
        check_level: CheckLevel,
        *,
        actor: Actor = SYSTEM_ACTOR,
        organization_id: Optional[uuid.UUID] = None,
        role_sensitivity: Optional[RoleSensitivity] = None,
        renewal_required: bool = True,
        grace_period_days: Optional[int] = None,
        ce_hours_required: int = 0,
        audit_due_date: Optional[date] = None,
        penalty_points: int = 0,
        record_id: Optional[uuid.UUID] = None,
    ) -> TransitionOutcome:
        """Create a ``not_started`` credential for a subject whose role needs it."""
        outcome = credentialStateManager.new_record(
            record_id or uuid.uuid4(),
            subject_id,
            credential_type,
            check_level,
            self._clock.now(),
            actor=actor,
            organization_id=organization_id,
            role_sensitivity=role_sensitivity,
            renewal_required=renewal_required,
            grace_period_days=grace_period_days,
            ce_hours_required=ce_hours_required,
            audit_due_date=audit_due_date,
            penalty_points=penalty_points,
        )
        if not outcome.ok:
            logger.warning(
                "Credential creation refused: subject=%s, type=%s, level=%s, error=%s",
                subject_id,
                credential_type.value,
                check_level.value,
                outcome.error.message,
            )
            return outcome
        return await self._insert(outcome)

    async def apply(
        self,
        record_id: uuid.UUID,
        event: LifecycleEvent,
        actor: Actor,
    ) -> TransitionOutcome:
        """Apply a lifecycle event, retrying on version conflicts.

        Each attempt re-reads the record and re-runs every guard, so a retry
        can legitimately fail (e.g. the record was cancelled meanwhile).
        """
        event_name = type(event).__name__
        for attempt in range(1, self._max_attempts + 1):
            record = await self._store.load(record_id)
            if record is None:
                return TransitionOutcome.failure(
                    LifecycleError.not_found(f"Credential not found: {record_id}")
                )

            outcome = credentialStateManager.apply(record, event, actor, self._clock.now())
            if not outcome.ok:
                logger.warning(
                    "Transition refused: id=%s, event=%s, status=%s, kind=%s, reason=%s",
                    record_id,
                    event_name,
                    record.status.value,
                    outcome.error.kind.value,
                    outcome.error.message,
                )
                return outcome

            saved = replace(outcome.record, version=record.version + 1)
            status = await self._store.save(saved, expected_version=record.version)
            if status == SaveStatus.OK:
                logger.info(
                    "Credential transition applied: id=%s, event=%s, %s -> %s, actor=%s",
                    record_id,
                    event_name,
                    record.status.value,
                    saved.status.value,
                    actor.actor_id,
                )
                await self._perform_effects(outcome.effects)
                return TransitionOutcome.success(saved, outcome.effects)

            logger.warning(
                "Concurrent modification on credential %s (event=%s, attempt %d/%d); "
                "re-reading",
                record_id,
                event_name,
                attempt,
                self._max_attempts,
            )

        return TransitionOutcome.failure(
            LifecycleError.concurrent_modification(
                f"Credential {record_id} kept changing; gave up after "
                f"{self._max_attempts} attempts."
            )
        )

    async def renew(
        self,
        record_id: uuid.UUID,
        actor: Actor,
        new_record_id: Optional[uuid.UUID] = None,
    ) -> TransitionOutcome:
        """Start a renewal cycle as a new record; the old record is kept as-is."""
        record = await self._store.load(record_id)
        if record is None:
            return TransitionOutcome.failure(
                LifecycleError.not_found(f"Credential not found: {record_id}")
            )
        outcome = credentialStateManager.start_renewal(
            record, new_record_id or uuid.uuid4(), actor, self._clock.now()
        )
        if not outcome.ok:
            logger.warning(
                "Renewal refused: id=%s, status=%s, reason=%s",
                record_id,
                record.status.value,
                outcome.error.message,
            )
            return outcome
        return await self._insert(outcome)

    async def bulk_apply(
        self,
        record_ids: Iterable[uuid.UUID],
        event: LifecycleEvent,
        actor: Actor,
    ) -> BulkTransitionResult:
        """Apply the same event to each record; one failure never stops the batch."""
        result = BulkTransitionResult()
        for record_id in record_ids:
            outcome = await self.apply(record_id, event, actor)
            if outcome.ok:
                result.succeeded.append(record_id)
            else:
                result.failed[record_id] = outcome.error
        logger.info(
            "Bulk %s: succeeded=%d, failed=%d",
            type(event).__name__,
            len(result.succeeded),
            len(result.failed),
        )
        return result

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def get(self, record_id: uuid.UUID) -> Optional[CredentialRecord]:
        return await self._store.load(record_id)

    async def classify_record(self, record_id: uuid.UUID) -> Optional[Classification]:
        record = await self._store.load(record_id)
        if record is None:
            return None
        return classify(record, self._clock.now())

    async def subject_credentials(
        self,
        subject_id: uuid.UUID,
    ) -> list[tuple[CredentialRecord, Classification]]:
        """Every record held by a subject with its current classification."""
        now = self._clock.now()
        records = await self.load_all(subject_id=subject_id)
        return [(record, classify(record, now)) for record in records]

    async def compliance_report(
        self,
        *,
        organization_id: Optional[uuid.UUID] = None,
        subject_id: Optional[uuid.UUID] = None,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
        expiring_within_days: int = EXPIRY_WARNING_DAYS,
    ) -> ComplianceSnapshot:
        tally = ComplianceTally(
            self._clock.now(),
            expiring_within_days=expiring_within_days,
            period_start=period_start,
            period_end=period_end,
        )
        async for page in self.iter_pages(organization_id=organization_id, subject_id=subject_id):
            tally.add_all(page)
        snapshot = tally.snapshot()
        logger.info(
            "Compliance report: org=%s, total=%d, rate=%.3f, expired=%d, expiring=%d",
            organization_id,
            snapshot.total,
            snapshot.compliance_rate,
            snapshot.expired_count,
            snapshot.expiring_soon_count,
        )
        return snapshot

    async def iter_pages(
        self,
        *,
        organization_id: Optional[uuid.UUID] = None,
        subject_id: Optional[uuid.UUID] = None,
        statuses: Optional[Sequence[CredentialStatus]] = None,
    ) -> AsyncIterator[list[CredentialRecord]]:
        """Yield matching records one store page at a time.

        The next page is only queried once the caller has finished with the
        current one.
        """
        offset = 0
        while True:
            page = await self._store.query(
                organization_id=organization_id,
                subject_id=subject_id,
                statuses=statuses,
                limit=self._page_size,
                offset=offset,
            )
            if page:
                yield page
            if len(page) < self._page_size:
                return
            offset += self._page_size

    async def load_all(
        self,
        *,
        organization_id: Optional[uuid.UUID] = None,
        subject_id: Optional[uuid.UUID] = None,
        statuses: Optional[Sequence[CredentialStatus]] = None,
    ) -> list[CredentialRecord]:
        """Every matching record in one list."""
        records: list[CredentialRecord] = []
        async for page in self.iter_pages(
            organization_id=organization_id,
            subject_id=subject_id,
            statuses=statuses,
        ):
            records.extend(page)
        return records

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    async def _insert(self, outcome: TransitionOutcome) -> TransitionOutcome:
        record = outcome.record
        status = await self._store.save(record, expected_version=None)
        if status != SaveStatus.OK:
            return TransitionOutcome.failure(
                LifecycleError.concurrent_modification(
                    f"Credential {record.id} already exists."
                )
            )
        logger.info(
            "Credential created: id=%s, subject=%s, type=%s, level=%s, supersedes=%s",
            record.id,
            record.subject_id,
            record.credential_type.value,
            record.check_level.value,
            record.supersedes_id,
        )
        await self._perform_effects(outcome.effects)
        return outcome

    async def _perform_effects(self, effects: Sequence[Any]) -> None:
        for effect in effects:
            if isinstance(effect, AuditEffect):
                try:
                    await self._audit.record(
                        effect.action,
                        effect.actor_id,
                        effect.record_id,
                        effect.before_state,
                        effect.after_state,
                    )
                except Exception:
                    logger.exception(
                        "Audit write failed for credential %s (action=%s); "
                        "transition kept",
                        effect.record_id,
                        effect.action,
                    )
            elif isinstance(effect, NotifyEffect):
                try:
                    await self._notifications.notify(effect.event)
                except Exception:
                    logger.exception(
                        "Notification failed for credential %s (event=%s)",
                        effect.event.record_id,
                        effect.event.event_type,
                    )
            else:
                raise TypeError(f"Unknown lifecycle effect: {type(effect).__name__}")
