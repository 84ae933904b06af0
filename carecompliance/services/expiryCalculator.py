"""
Expiry and renewal date arithmetic.

Pure functions only: no clock, no I/O, deterministic for the same inputs.
Every function accepts ``date`` or ``datetime`` for its point-in-time
arguments and compares at calendar-day granularity.

Boundary convention: a credential is still valid *on* its expiry date and is
expired from the following day (``is_expired(now=expiry_date)`` is ``False``).
When no expiry applies (``expiry_date`` is ``None``) every predicate returns
``False`` and every derived date or count returns ``None``.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta
from typing import Optional, Union

from carecompliance.models.credential import CheckLevel, CredentialType
from carecompliance.services.credentialPolicy import get_policy

DateLike = Union[date, datetime]


def as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def add_months(start: date, months: int) -> date:
    """Add calendar months, clamping to the last day of a shorter month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def expiry_date(
    completion_date: DateLike,
    credential_type: CredentialType,
    check_level: CheckLevel,
    document_expiry_date: Optional[date] = None,
) -> Optional[date]:
    """Compute when a credential cleared on ``completion_date`` expires.

    Levels whose validity follows the underlying document (time-limited
    Right to Work) return ``document_expiry_date``; levels with no expiry
    return ``None``.

    Raises:
        ValueError: If the level does not belong to the credential type.
    """
    policy = get_policy(credential_type)
    if not policy.accepts(check_level):
        raise ValueError(
            f"Check level '{check_level.value}' is not valid for "
            f"'{credential_type.value}'."
        )
    if policy.uses_document_expiry(check_level):
        return document_expiry_date
    months = policy.validity_months.get(check_level)
    if months is None:
        return None
    return add_months(as_date(completion_date), months)


def days_until_expiry(now: DateLike, expiry: Optional[date]) -> Optional[int]:
    """Whole days from ``now`` to ``expiry``; negative once expired."""
    if expiry is None:
        return None
    return (expiry - as_date(now)).days


def is_expired(now: DateLike, expiry: Optional[date]) -> bool:
    if expiry is None:
        return False
    return as_date(now) > expiry


def is_expiring_soon(now: DateLike, expiry: Optional[date], within_days: int) -> bool:
    """True when the credential is still valid but expires within the window."""
    days = days_until_expiry(now, expiry)
    if days is None:
        return False
    return 0 <= days <= within_days


def is_renewal_due(
    now: DateLike,
    next_renewal_date: Optional[date],
    renewal_required: bool,
) -> bool:
    if not renewal_required or next_renewal_date is None:
        return False
    return as_date(now) >= next_renewal_date


def next_renewal_date(
    expiry: Optional[date],
    credential_type: CredentialType,
) -> Optional[date]:
    """Date from which renewal should be started (the policy lead time
    before expiry)."""
    if expiry is None:
        return None
    return expiry - timedelta(days=get_policy(credential_type).renewal_lead_days)


def grace_period_end(expiry: Optional[date], grace_period_days: int) -> Optional[date]:
    if expiry is None:
        return None
    return expiry + timedelta(days=max(grace_period_days, 0))


def is_in_grace_period(
    now: DateLike,
    grace_end: Optional[date],
    expiry: Optional[date],
) -> bool:
    """True from the day after ``expiry`` up to and including ``grace_end``.

    A credential that has not expired yet, or has no expiry date, is never in
    its grace period.
    """
    if grace_end is None or expiry is None:
        return False
    if not is_expired(now, expiry):
        return False
    return as_date(now) <= grace_end


def is_lapsed(now: DateLike, expiry: Optional[date], grace_period_days: int) -> bool:
    """True once both the expiry date and any grace window have passed."""
    end = grace_period_end(expiry, grace_period_days)
    if end is None:
        return False
    return as_date(now) > end


def is_audit_due(now: DateLike, audit_due_date: Optional[date]) -> bool:
    if audit_due_date is None:
        return False
    return as_date(now) >= audit_due_date