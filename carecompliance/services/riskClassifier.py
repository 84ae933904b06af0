"""
Risk / priority classification for a single credential record.

``classify`` is a pure function of ``(record, now)``: identical inputs always
produce an identical ``Classification`` so compliance reports are
reproducible.

Priority precedence (first match wins):

    1. expired                          -> critical, renew immediately
    2. expires within 7 days            -> critical, renew urgently
    3. expires within 30 days           -> high,     plan renewal
    4. cleared and renewal due          -> high,     complete renewal
    5. not cleared                      -> medium,   verify with issuing authority
    6. otherwise                        -> low,      no action

Independent actions appended after the precedence action, in this order:
schedule audit, complete CE requirements, upgrade check level, review
driving eligibility.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime
from typing import Union

from carecompliance.models.credential import (
    CredentialRecord,
    CredentialStatus,
    CredentialType,
)
from carecompliance.services import expiryCalculator
from carecompliance.services.credentialPolicy import (
    DRIVING_DISQUALIFICATION_POINTS,
    is_level_sufficient,
)

URGENT_EXPIRY_DAYS: int = 7
EXPIRY_WARNING_DAYS: int = 30


class Priority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ActionKind(str, enum.Enum):
    RENEW_IMMEDIATELY = "renew_immediately"
    RENEW_URGENTLY = "renew_urgently"
    PLAN_RENEWAL = "plan_renewal"
    COMPLETE_RENEWAL = "complete_renewal"
    VERIFY_WITH_ISSUING_AUTHORITY = "verify_with_issuing_authority"
    SCHEDULE_AUDIT = "schedule_audit"
    COMPLETE_CE_REQUIREMENTS = "complete_ce_requirements"
    UPGRADE_CHECK_LEVEL = "upgrade_check_level"
    REVIEW_DRIVING_ELIGIBILITY = "review_driving_eligibility"


@dataclass(frozen=True)
class Classification:
    priority: Priority
    required_actions: tuple[ActionKind, ...]


def is_record_expired(record: CredentialRecord, now: Union[date, datetime]) -> bool:
    """Expired by status, or cleared but past its expiry date."""
    if record.status == CredentialStatus.EXPIRED:
        return True
    return (
        record.status == CredentialStatus.CLEARED
        and expiryCalculator.is_expired(now, record.expiry_date)
    )


def _precedence(record: CredentialRecord, now: Union[date, datetime]) -> tuple[Priority, list[ActionKind]]:
    if is_record_expired(record, now):
        return Priority.CRITICAL, [ActionKind.RENEW_IMMEDIATELY]
    if record.status == CredentialStatus.CLEARED:
        if expiryCalculator.is_expiring_soon(now, record.expiry_date, URGENT_EXPIRY_DAYS):
            return Priority.CRITICAL, [ActionKind.RENEW_URGENTLY]
        if expiryCalculator.is_expiring_soon(now, record.expiry_date, EXPIRY_WARNING_DAYS):
            return Priority.HIGH, [ActionKind.PLAN_RENEWAL]
        # Renewal only applies to a live clearance.
        if expiryCalculator.is_renewal_due(now, record.next_renewal_date, record.renewal_required):
            return Priority.HIGH, [ActionKind.COMPLETE_RENEWAL]
        return Priority.LOW, []
    return Priority.MEDIUM, [ActionKind.VERIFY_WITH_ISSUING_AUTHORITY]


def classify(record: CredentialRecord, now: Union[date, datetime]) -> Classification:
    priority, actions = _precedence(record, now)

    if expiryCalculator.is_audit_due(now, record.audit_due_date):
        actions.append(ActionKind.SCHEDULE_AUDIT)
    if (
        record.credential_type == CredentialType.PROFESSIONAL_CERTIFICATION
        and record.ce_hours_completed < record.ce_hours_required
    ):
        actions.append(ActionKind.COMPLETE_CE_REQUIREMENTS)
    if not is_level_sufficient(record.credential_type, record.check_level, record.role_sensitivity):
        actions.append(ActionKind.UPGRADE_CHECK_LEVEL)
    if (
        record.credential_type == CredentialType.DRIVING_LICENCE
        and record.penalty_points >= DRIVING_DISQUALIFICATION_POINTS
    ):
        actions.append(ActionKind.REVIEW_DRIVING_ELIGIBILITY)

    return Classification(priority=priority, required_actions=tuple(actions))
