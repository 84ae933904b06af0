"""
Compliance aggregation over a population of credential records.

``summarize`` produces a ``ComplianceSnapshot`` from whatever records the
caller hands it (one organisation, one care home, one reporting page).
``ComplianceTally`` builds the same snapshot incrementally for callers that
read the store a page at a time. Each record is judged on its own; a subject
holding several credential types is simply several records. Snapshots are
derived values and are never stored or mutated.
"""

from __future__ import annotations

import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Optional, Union

from carecompliance.models.credential import CredentialRecord, CredentialStatus
from carecompliance.services import expiryCalculator
from carecompliance.services.riskClassifier import (
    EXPIRY_WARNING_DAYS,
    Priority,
    classify,
    is_record_expired,
)

DateLike = Union[date, datetime]


@dataclass(frozen=True)
class ComplianceSnapshot:
    """Aggregate counts for a record population at a point in time."""
    generated_at: DateLike
    total: int
    by_status: dict[str, int]
    by_credential_type: dict[str, int]
    by_check_level: dict[str, int]
    by_priority: dict[str, int]
    expired_count: int
    expiring_soon_count: int
    in_grace_period_count: int
    renewal_due_count: int
    verified_and_current: int
    compliance_rate: float
    average_processing_days: Optional[float]
    expiring_soon_ids: tuple[uuid.UUID, ...] = field(default_factory=tuple)
    overdue_ids: tuple[uuid.UUID, ...] = field(default_factory=tuple)


def is_verified_and_current(record: CredentialRecord, now: DateLike) -> bool:
    return record.status == CredentialStatus.CLEARED and not expiryCalculator.is_expired(
        now, record.expiry_date
    )


def is_record_expiring_soon(
    record: CredentialRecord,
    now: DateLike,
    within_days: int = EXPIRY_WARNING_DAYS,
) -> bool:
    return record.status == CredentialStatus.CLEARED and expiryCalculator.is_expiring_soon(
        now, record.expiry_date, within_days
    )


def is_record_overdue(record: CredentialRecord, now: DateLike) -> bool:
    """Expired, or a required renewal whose start date has passed."""
    if is_record_expired(record, now):
        return True
    if record.status != CredentialStatus.CLEARED:
        return False
    return expiryCalculator.is_renewal_due(
        now, record.next_renewal_date, record.renewal_required
    )


def expiring_soon(
    records: Iterable[CredentialRecord],
    now: DateLike,
    within_days: int = EXPIRY_WARNING_DAYS,
) -> list[CredentialRecord]:
    """Cleared records expiring within the window, soonest first."""
    matches = [r for r in records if is_record_expiring_soon(r, now, within_days)]
    return sorted(matches, key=lambda r: (r.expiry_date, str(r.id)))


def overdue(records: Iterable[CredentialRecord], now: DateLike) -> list[CredentialRecord]:
    """Expired or renewal-overdue records, longest overdue first."""
    matches = [r for r in records if is_record_overdue(r, now)]
    return sorted(matches, key=lambda r: (r.expiry_date or date.max, str(r.id)))



def _period_bounds(
    period_start: Optional[DateLike],
    period_end: Optional[DateLike],
) -> tuple[Optional[date], Optional[date]]:
    start = expiryCalculator.as_date(period_start) if period_start is not None else None
    end = expiryCalculator.as_date(period_end) if period_end is not None else None
    return start, end


def _in_period(
    record: CredentialRecord,
    start: Optional[date],
    end: Optional[date],
) -> bool:
    if start is None and end is None:
        return True
    if record.created_at is None:
        return False
    created = expiryCalculator.as_date(record.created_at)
    if start is not None and created < start:
        return False
    if end is not None and created > end:
        return False
    return True


def filter_by_period(
    records: Iterable[CredentialRecord],
    period_start: Optional[DateLike] = None,
    period_end: Optional[DateLike] = None,
) -> list[CredentialRecord]:
    """Keep records created within ``[period_start, period_end]`` (inclusive,
    by calendar day). Records without a creation time are kept only when no
    bound is given."""
    start, end = _period_bounds(period_start, period_end)
    return [r for r in records if _in_period(r, start, end)]


class ComplianceTally:
    """Running aggregate that accepts records a page at a time.

    Only counters and the ids of expiring or overdue records are kept, so a
    scan over a large organisation never holds the whole population.
    """

    def __init__(
        self,
        now: DateLike,
        *,
        expiring_within_days: int = EXPIRY_WARNING_DAYS,
        period_start: Optional[DateLike] = None,
        period_end: Optional[DateLike] = None,
    ) -> None:
        self.now = now
        self.expiring_within_days = expiring_within_days
        self._start, self._end = _period_bounds(period_start, period_end)

        self.total = 0
        self._by_status: Counter[str] = Counter()
        self._by_type: Counter[str] = Counter()
        self._by_level: Counter[str] = Counter()
        self._by_priority: Counter[str] = Counter()
        self._expired = 0
        self._in_grace = 0
        self._renewal_due = 0
        self._current = 0
        self._processing_days_total = 0.0
        self._processed = 0
        self._expiring: list[tuple[date, str, uuid.UUID]] = []
        self._overdue: list[tuple[date, str, uuid.UUID]] = []

    def add(self, record: CredentialRecord) -> None:
        if not _in_period(record, self._start, self._end):
            return
        now = self.now
        self.total += 1
        self._by_status[record.status.value] += 1
        self._by_type[record.credential_type.value] += 1
        self._by_level[record.check_level.value] += 1
        self._by_priority[classify(record, now).priority.value] += 1

        if is_record_expired(record, now):
            self._expired += 1
        if is_verified_and_current(record, now):
            self._current += 1
        if record.status == CredentialStatus.CLEARED:
            grace_end = expiryCalculator.grace_period_end(
                record.expiry_date, record.grace_period_days
            )
            if expiryCalculator.is_in_grace_period(now, grace_end, record.expiry_date):
                self._in_grace += 1
            if expiryCalculator.is_renewal_due(
                now, record.next_renewal_date, record.renewal_required
            ):
                self._renewal_due += 1

        if is_record_expiring_soon(record, now, self.expiring_within_days):
            self._expiring.append((record.expiry_date, str(record.id), record.id))
        if is_record_overdue(record, now):
            self._overdue.append((record.expiry_date or date.max, str(record.id), record.id))

        if record.completion_date is not None and record.application_date is not None:
            elapsed = record.completion_date - record.application_date
            self._processing_days_total += elapsed.total_seconds() / 86400
            self._processed += 1

    def add_all(self, records: Iterable[CredentialRecord]) -> None:
        for record in records:
            self.add(record)

    def snapshot(self) -> ComplianceSnapshot:
        """Freeze the counts seen so far.

        ``compliance_rate`` is ``verified_and_current / total`` as a fraction
        in ``[0, 1]`` and is ``0.0`` for an empty population.
        """
        total = self.total
        average = (
            round(self._processing_days_total / self._processed, 2)
            if self._processed
            else None
        )
        return ComplianceSnapshot(
            generated_at=self.now,
            total=total,
            by_status={s.value: self._by_status.get(s.value, 0) for s in CredentialStatus},
            by_credential_type=dict(self._by_type),
            by_check_level=dict(self._by_level),
            by_priority={p.value: self._by_priority.get(p.value, 0) for p in Priority},
            expired_count=self._expired,
            expiring_soon_count=len(self._expiring),
            in_grace_period_count=self._in_grace,
            renewal_due_count=self._renewal_due,
            verified_and_current=self._current,
            compliance_rate=(self._current / total) if total else 0.0,
            average_processing_days=average,
            expiring_soon_ids=tuple(entry[2] for entry in sorted(self._expiring)),
            overdue_ids=tuple(entry[2] for entry in sorted(self._overdue)),
        )


def summarize(
    records: Iterable[CredentialRecord],
    now: DateLike,
    *,
    expiring_within_days: int = EXPIRY_WARNING_DAYS,
    period_start: Optional[DateLike] = None,
    period_end: Optional[DateLike] = None,
) -> ComplianceSnapshot:
    """Aggregate a record population into a ``ComplianceSnapshot``."""
    tally = ComplianceTally(
        now,
        expiring_within_days=expiring_within_days,
        period_start=period_start,
        period_end=period_end,
    )
    tally.add_all(records)
    return tally.snapshot()
