"""
Credential Lifecycle State Machine
===================================

Finite state machine governing every credential status change. Records are
immutable: ``apply`` returns a ``TransitionOutcome`` holding a *new* record
plus the audit/notification effects the caller must perform. Nothing here
reads a clock, touches a store, or logs.

State machine overview::

    not_started --> application_submitted --> under_review
        under_review --> in_progress
        under_review | in_progress --> cleared | rejected
        cleared --> expired

    (any non-terminal state) --> cancelled

Terminal states: ``rejected``, ``expired``, ``cancelled``. A terminal record
is never reopened; renewal creates a new record (``start_renewal``).

Each event's source statuses, target statuses and permitted actor types live
in one table, ``_EVENT_RULES``. ``apply`` enforces it, and
``VALID_TRANSITIONS``, ``validate_transition``, ``get_valid_transitions`` and
``available_events`` are all derived from it.

Handler guards add check-level sufficiency for the subject's *current* role,
per-type evidence rules, date ordering and the no-self-verification rule.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Callable, Optional, Union

from carecompliance.core.errors import LifecycleError, TransitionOutcome
from carecompliance.events.credentialEvents import transition_effects
from carecompliance.models.credential import (
    CheckLevel,
    CredentialRecord,
    CredentialStatus,
    CredentialType,
    RoleSensitivity,
    VerificationOutcome,
)
from carecompliance.services import expiryCalculator
from carecompliance.services.credentialPolicy import (
    get_policy,
    is_level_sufficient,
    missing_evidence,
    required_check_level,
)


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------

class ActorType(str, enum.Enum):
    EMPLOYEE = "employee"
    MANAGER = "manager"
    COMPLIANCE_OFFICER = "compliance_officer"
    SYSTEM = "system"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    actor_id: Optional[uuid.UUID] = None
    actor_type: ActorType = ActorType.SYSTEM


SYSTEM_ACTOR = Actor()


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StartApplication:
    reference: str


@dataclass(frozen=True)
class Submit:
    external_reference: str


@dataclass(frozen=True)
class BeginProcessing:
    pass


@dataclass(frozen=True)
class Complete:
    certificate_number: Optional[str]
    outcome: VerificationOutcome = VerificationOutcome.CLEARED
    check_level: Optional[CheckLevel] = None
    document_expiry_date: Optional[date] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class Reject:
    reason: str


@dataclass(frozen=True)
class Cancel:
    reason: str


@dataclass(frozen=True)
class Expire:
    pass


@dataclass(frozen=True)
class ReassessRole:
    role_sensitivity: RoleSensitivity


@dataclass(frozen=True)
class RecordContinuingEducation:
    hours: int


LifecycleEvent = Union[
    StartApplication,
    Submit,
    BeginProcessing,
    Complete,
    Reject,
    Cancel,
    Expire,
    ReassessRole,
    RecordContinuingEducation,
]


# ---------------------------------------------------------------------------
# Status groups
# ---------------------------------------------------------------------------

TERMINAL_STATUSES: frozenset[CredentialStatus] = frozenset({
    CredentialStatus.REJECTED,
    CredentialStatus.EXPIRED,
    CredentialStatus.CANCELLED,
})

NON_TERMINAL_STATUSES: frozenset[CredentialStatus] = frozenset(
    set(CredentialStatus) - TERMINAL_STATUSES
)

# Statuses a renewal may supersede
RENEWABLE_STATUSES: frozenset[CredentialStatus] = frozenset({
    CredentialStatus.CLEARED,
    CredentialStatus.EXPIRED,
})

_VERIFYING_ACTORS: frozenset[ActorType] = frozenset({
    ActorType.COMPLIANCE_OFFICER,
    ActorType.SYSTEM,
    ActorType.ADMIN,
})

_EXPIRING_ACTORS: frozenset[ActorType] = frozenset({
    ActorType.SYSTEM,
    ActorType.ADMIN,
})


# ---------------------------------------------------------------------------
# Record invariants
# ---------------------------------------------------------------------------

def check_date_order(record: CredentialRecord) -> Optional[LifecycleError]:
    """application_date <= completion_date <= expiry_date where present."""
    application = record.application_date
    completion = record.completion_date
    if application is not None and completion is not None and completion < application:
        return LifecycleError.validation(
            f"Completion ({completion.isoformat()}) precedes application "
            f"({application.isoformat()})."
        )
    if completion is not None and record.expiry_date is not None:
        if record.expiry_date <= expiryCalculator.as_date(completion):
            return LifecycleError.validation(
                f"Expiry date {record.expiry_date.isoformat()} must be after the "
                f"completion date {expiryCalculator.as_date(completion).isoformat()}."
            )
    return None


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def _guard_self_verification(record: CredentialRecord, actor: Actor) -> Optional[LifecycleError]:
    if actor.actor_id is not None and actor.actor_id == record.subject_id:
        return LifecycleError.illegal_transition(
            "The credential subject cannot verify their own credential."
        )
    return None


# ---------------------------------------------------------------------------
# Event handlers
# ---------------------------------------------------------------------------

_Handler = Callable[[CredentialRecord, object, Actor, datetime], TransitionOutcome]


def _start_application(
    record: CredentialRecord, event: StartApplication, actor: Actor, now: datetime
) -> TransitionOutcome:
    if _blank(event.reference):
        return TransitionOutcome.failure(
            LifecycleError.validation("An application reference is required."), record
        )
    updated = replace(
        record,
        status=CredentialStatus.APPLICATION_SUBMITTED,
        application_date=now,
        application_reference=event.reference.strip(),
    )
    return TransitionOutcome.success(
        updated,
        transition_effects(
            "APPLICATION_STARTED", "application_started", record, updated, now, actor.actor_id
        ),
    )


def _submit(
    record: CredentialRecord, event: Submit, actor: Actor, now: datetime
) -> TransitionOutcome:
    if _blank(event.external_reference):
        return TransitionOutcome.failure(
            LifecycleError.validation("An external reference is required."), record
        )
    updated = replace(
        record,
        status=CredentialStatus.UNDER_REVIEW,
        submission_date=now,
        external_reference=event.external_reference.strip(),
    )
    return TransitionOutcome.success(
        updated,
        transition_effects(
            "APPLICATION_SUBMITTED", "submitted", record, updated, now, actor.actor_id
        ),
    )


def _begin_processing(
    record: CredentialRecord, event: BeginProcessing, actor: Actor, now: datetime
) -> TransitionOutcome:
    updated = replace(record, status=CredentialStatus.IN_PROGRESS)
    return TransitionOutcome.success(
        updated,
        transition_effects(
            "PROCESSING_STARTED", "processing_started", record, updated, now, actor.actor_id
        ),
    )


def _complete(
    record: CredentialRecord, event: Complete, actor: Actor, now: datetime
) -> TransitionOutcome:
    error = _guard_self_verification(record, actor)
    if error is not None:
        return TransitionOutcome.failure(error, record)

    if event.outcome == VerificationOutcome.REJECTED:
        return _record_rejection(
            record,
            event.reason or "Check returned an adverse outcome.",
            actor,
            now,
            certificate_number=event.certificate_number,
        )

    level = event.check_level or record.check_level
    policy = get_policy(record.credential_type)
    if not policy.accepts(level):
        return TransitionOutcome.failure(
            LifecycleError.validation(
                f"Check level '{level.value}' is not valid for "
                f"'{record.credential_type.value}'."
            ),
            record,
        )

    # Role sensitivity is re-read at completion: it may have changed since
    # the record was created.
    if not is_level_sufficient(record.credential_type, level, record.role_sensitivity):
        required = required_check_level(record.credential_type, record.role_sensitivity)
        return TransitionOutcome.failure(
            LifecycleError.insufficient_check_level(
                f"Role requires at least '{required.value}' but the check is "
                f"'{level.value}'."
            ),
            record,
        )

    missing = missing_evidence(
        record.credential_type,
        level,
        certificate_number=event.certificate_number,
        document_expiry_date=event.document_expiry_date,
    )
    if missing:
        return TransitionOutcome.failure(
            LifecycleError.validation(f"Missing required evidence: {', '.join(missing)}."),
            record,
        )

    expiry = expiryCalculator.expiry_date(
        now, record.credential_type, level, event.document_expiry_date
    )
    updated = replace(
        record,
        status=CredentialStatus.CLEARED,
        check_level=level,
        certificate_number=event.certificate_number.strip() if event.certificate_number else None,
        completion_date=now,
        expiry_date=expiry,
        document_expiry_date=event.document_expiry_date,
        next_renewal_date=(
            expiryCalculator.next_renewal_date(expiry, record.credential_type)
            if record.renewal_required
            else None
        ),
        rejection_reason=None,
    )
    return TransitionOutcome.success(
        updated,
        transition_effects(
            "VERIFICATION_COMPLETED",
            "cleared",
            record,
            updated,
            now,
            actor.actor_id,
            data={"expiry_date": expiry.isoformat() if expiry else None},
        ),
    )


def _record_rejection(
    record: CredentialRecord,
    reason: str,
    actor: Actor,
    now: datetime,
    certificate_number: Optional[str] = None,
) -> TransitionOutcome:
    updated = replace(
        record,
        status=CredentialStatus.REJECTED,
        completion_date=now,
        certificate_number=certificate_number or record.certificate_number,
        rejection_reason=reason.strip(),
    )
    return TransitionOutcome.success(
        updated,
        transition_effects(
            "VERIFICATION_REJECTED",
            "rejected",
            record,
            updated,
            now,
            actor.actor_id,
            data={"reason": reason.strip()[:200]},
        ),
    )


def _reject(
    record: CredentialRecord, event: Reject, actor: Actor, now: datetime
) -> TransitionOutcome:
    if _blank(event.reason):
        return TransitionOutcome.failure(
            LifecycleError.validation("A rejection reason is required."), record
        )
    error = _guard_self_verification(record, actor)
    if error is not None:
        return TransitionOutcome.failure(error, record)
    return _record_rejection(record, event.reason, actor, now)


def _cancel(
    record: CredentialRecord, event: Cancel, actor: Actor, now: datetime
) -> TransitionOutcome:
    if _blank(event.reason):
        return TransitionOutcome.failure(
            LifecycleError.validation("A cancellation reason is required."), record
        )
    updated = replace(
        record,
        status=CredentialStatus.CANCELLED,
        cancellation_reason=event.reason.strip(),
    )
    return TransitionOutcome.success(
        updated,
        transition_effects(
            "CANCELLED",
            "cancelled",
            record,
            updated,
            now,
            actor.actor_id,
            data={"reason": event.reason.strip()[:200]},
        ),
    )


def _expire(
    record: CredentialRecord, event: Expire, actor: Actor, now: datetime
) -> TransitionOutcome:
    if record.expiry_date is None:
        return TransitionOutcome.failure(
            LifecycleError.illegal_transition(
                f"Credential {record.id} has no expiry date and cannot expire."
            ),
            record,
        )
    if not expiryCalculator.is_lapsed(now, record.expiry_date, record.grace_period_days):
        return TransitionOutcome.failure(
            LifecycleError.illegal_transition(
                f"Credential {record.id} is valid until "
                f"{expiryCalculator.grace_period_end(record.expiry_date, record.grace_period_days).isoformat()}."
            ),
            record,
        )
    updated = replace(record, status=CredentialStatus.EXPIRED)
    return TransitionOutcome.success(
        updated,
        transition_effects(
            "EXPIRED",
            "expired",
            record,
            updated,
            now,
            actor.actor_id,
            data={"expiry_date": record.expiry_date.isoformat()},
        ),
    )


def _reassess_role(
    record: CredentialRecord, event: ReassessRole, actor: Actor, now: datetime
) -> TransitionOutcome:
    updated = replace(record, role_sensitivity=event.role_sensitivity)
    required = required_check_level(record.credential_type, event.role_sensitivity)
    return TransitionOutcome.success(
        updated,
        transition_effects(
            "ROLE_REASSESSED",
            "role_reassessed",
            record,
            updated,
            now,
            actor.actor_id,
            data={
                "required_check_level": required.value if required else None,
                "level_sufficient": is_level_sufficient(
                    record.credential_type, record.check_level, event.role_sensitivity
                ),
            },
        ),
    )


def _record_continuing_education(
    record: CredentialRecord, event: RecordContinuingEducation, actor: Actor, now: datetime
) -> TransitionOutcome:
    if record.credential_type != CredentialType.PROFESSIONAL_CERTIFICATION:
        return TransitionOutcome.failure(
            LifecycleError.validation(
                "Continuing education applies to professional certifications only."
            ),
            record,
        )
    if event.hours <= 0:
        return TransitionOutcome.failure(
            LifecycleError.validation("Continuing education hours must be positive."), record
        )
    updated = replace(record, ce_hours_completed=record.ce_hours_completed + event.hours)
    return TransitionOutcome.success(
        updated,
        transition_effects(
            "CE_RECORDED",
            "ce_recorded",
            record,
            updated,
            now,
            actor.actor_id,
            data={"hours": event.hours, "total_hours": updated.ce_hours_completed},
        ),
    )


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EventRule:
    """When an event is legal and which statuses it can lead to.

    ``targets`` is empty for events that update a record in place, and
    ``actors`` is ``None`` when any actor type may raise the event.
    """
    sources: frozenset[CredentialStatus]
    targets: frozenset[CredentialStatus]
    handler: _Handler
    actors: Optional[frozenset[ActorType]] = None

    def admits(self, actor_type: ActorType) -> bool:
        return self.actors is None or actor_type in self.actors


_EVENT_RULES: dict[type, EventRule] = {
    StartApplication: EventRule(
        sources=frozenset({CredentialStatus.NOT_STARTED}),
        targets=frozenset({CredentialStatus.APPLICATION_SUBMITTED}),
        handler=_start_application,
    ),
    Submit: EventRule(
        sources=frozenset({CredentialStatus.APPLICATION_SUBMITTED}),
        targets=frozenset({CredentialStatus.UNDER_REVIEW}),
        handler=_submit,
    ),
    BeginProcessing: EventRule(
        sources=frozenset({CredentialStatus.UNDER_REVIEW}),
        targets=frozenset({CredentialStatus.IN_PROGRESS}),
        handler=_begin_processing,
    ),
    # An adverse Complete is how an in-progress check ends up rejected
    Complete: EventRule(
        sources=frozenset({CredentialStatus.UNDER_REVIEW, CredentialStatus.IN_PROGRESS}),
        targets=frozenset({CredentialStatus.CLEARED, CredentialStatus.REJECTED}),
        handler=_complete,
        actors=_VERIFYING_ACTORS,
    ),
    Reject: EventRule(
        sources=frozenset({CredentialStatus.UNDER_REVIEW}),
        targets=frozenset({CredentialStatus.REJECTED}),
        handler=_reject,
        actors=_VERIFYING_ACTORS,
    ),
    Cancel: EventRule(
        sources=NON_TERMINAL_STATUSES,
        targets=frozenset({CredentialStatus.CANCELLED}),
        handler=_cancel,
    ),
    Expire: EventRule(
        sources=frozenset({CredentialStatus.CLEARED}),
        targets=frozenset({CredentialStatus.EXPIRED}),
        handler=_expire,
        actors=_EXPIRING_ACTORS,
    ),
    ReassessRole: EventRule(
        sources=NON_TERMINAL_STATUSES,
        targets=frozenset(),
        handler=_reassess_role,
    ),
    RecordContinuingEducation: EventRule(
        sources=NON_TERMINAL_STATUSES,
        targets=frozenset(),
        handler=_record_continuing_education,
    ),
}

VALID_TRANSITIONS: dict[CredentialStatus, frozenset[CredentialStatus]] = {
    status: frozenset(
        target
        for rule in _EVENT_RULES.values()
        if status in rule.sources
        for target in rule.targets
    )
    for status in CredentialStatus
}


@dataclass(frozen=True)
class TransitionResult:
    """Result of a status-transition validation attempt."""
    allowed: bool
    reason: str | None = None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def transition_events(
    current_status: CredentialStatus,
    new_status: CredentialStatus,
    actor_type: ActorType = ActorType.SYSTEM,
) -> list[str]:
    """Names of the events the actor could use to move a record between two
    statuses."""
    return sorted(
        event_type.__name__
        for event_type, rule in _EVENT_RULES.items()
        if current_status in rule.sources
        and new_status in rule.targets
        and rule.admits(actor_type)
    )


def validate_transition(
    current_status: CredentialStatus,
    new_status: CredentialStatus,
    actor_type: ActorType = ActorType.SYSTEM,
) -> TransitionResult:
    """Validate whether a credential status transition is allowed.

    Checks the event table and its actor-type restrictions; record level
    guards (check level, evidence, dates) are applied by ``apply``.
    """
    allowed_targets = VALID_TRANSITIONS[current_status]
    if new_status not in allowed_targets:
        return TransitionResult(
            allowed=False,
            reason=(
                f"Invalid transition: '{current_status.value}' -> '{new_status.value}'. "
                f"Allowed transitions from '{current_status.value}': "
                f"{', '.join(sorted(s.value for s in allowed_targets)) or 'none'}."
            ),
        )
    if not transition_events(current_status, new_status, actor_type):
        return TransitionResult(
            allowed=False,
            reason=(
                f"Actor type '{actor_type.value}' cannot move a credential from "
                f"'{current_status.value}' to '{new_status.value}'."
            ),
        )
    return TransitionResult(allowed=True)


def get_valid_transitions(
    current_status: CredentialStatus,
    actor_type: ActorType = ActorType.SYSTEM,
) -> list[CredentialStatus]:
    """Statuses the given actor may move a credential to from ``current_status``."""
    valid = [
        target
        for target in VALID_TRANSITIONS[current_status]
        if transition_events(current_status, target, actor_type)
    ]
    return sorted(valid, key=lambda s: s.value)


def apply(
    record: CredentialRecord,
    event: LifecycleEvent,
    actor: Actor,
    now: datetime,
) -> TransitionOutcome:
    """Apply a lifecycle event to a record.

    Returns a successful ``TransitionOutcome`` carrying the new record and its
    effects, or a failed one carrying a ``LifecycleError`` and the unchanged
    record.

    Raises:
        ValueError: If ``now`` is missing (a caller wiring error).
        TypeError: If ``event`` is not a known lifecycle event.
    """
    if now is None:
        raise ValueError("apply() requires the current time from an injected clock.")
    rule = _EVENT_RULES.get(type(event))
    if rule is None:
        raise TypeError(f"Unsupported lifecycle event: {type(event).__name__}")

    if record.status not in rule.sources:
        return TransitionOutcome.failure(
            LifecycleError.illegal_transition(
                f"'{type(event).__name__}' is not allowed from status "
                f"'{record.status.value}'."
            ),
            record,
        )
    if not rule.admits(actor.actor_type):
        return TransitionOutcome.failure(
            LifecycleError.illegal_transition(
                f"Actor type '{actor.actor_type.value}' cannot apply "
                f"'{type(event).__name__}'."
            ),
            record,
        )

    outcome = rule.handler(record, event, actor, now)
    if not outcome.ok:
        return outcome

    invariant_error = check_date_order(outcome.record)
    if invariant_error is not None:
        return TransitionOutcome.failure(invariant_error, record)
    return outcome


def available_events(
    record: CredentialRecord,
    actor_type: Optional[ActorType] = None,
) -> list[str]:
    """Names of events the table admits for the record (and actor, if given).

    Useful for UI hints; record-level guards are still checked by ``apply``.
    """
    return sorted(
        event_type.__name__
        for event_type, rule in _EVENT_RULES.items()
        if record.status in rule.sources
        and (actor_type is None or rule.admits(actor_type))
    )


def new_record(
    record_id: uuid.UUID,
    subject_id: uuid.UUID,
    credential_type: CredentialType,
    check_level: CheckLevel,
    now: datetime,
    *,
    actor: Actor = SYSTEM_ACTOR,
    organization_id: Optional[uuid.UUID] = None,
    role_sensitivity: Optional[RoleSensitivity] = None,
    renewal_required: bool = True,
    grace_period_days: Optional[int] = None,
    ce_hours_required: int = 0,
    audit_due_date: Optional[date] = None,
    penalty_points: int = 0,
    supersedes_id: Optional[uuid.UUID] = None,
) -> TransitionOutcome:
    """Validate and build a ``not_started`` record for a subject whose role
    requires this credential."""
    if now is None:
        raise ValueError("new_record() requires the current time from an injected clock.")
    roles = role_sensitivity or RoleSensitivity()
    policy = get_policy(credential_type)

    if not policy.accepts(check_level):
        return TransitionOutcome.failure(
            LifecycleError.validation(
                f"Check level '{check_level.value}' is not valid for "
                f"'{credential_type.value}'."
            )
        )
    if not is_level_sufficient(credential_type, check_level, roles):
        required = required_check_level(credential_type, roles)
        return TransitionOutcome.failure(
            LifecycleError.insufficient_check_level(
                f"Role requires at least '{required.value}' but '{check_level.value}' "
                f"was requested."
            )
        )
    if grace_period_days is not None and grace_period_days < 0:
        return TransitionOutcome.failure(
            LifecycleError.validation("Grace period cannot be negative.")
        )
    if ce_hours_required < 0 or penalty_points < 0:
        return TransitionOutcome.failure(
            LifecycleError.validation("Hours and penalty points cannot be negative.")
        )

    record = CredentialRecord(
        id=record_id,
        subject_id=subject_id,
        credential_type=credential_type,
        check_level=check_level,
        status=CredentialStatus.NOT_STARTED,
        organization_id=organization_id,
        role_sensitivity=roles,
        created_at=now,
        renewal_required=renewal_required,
        grace_period_days=(
            policy.default_grace_period_days if grace_period_days is None else grace_period_days
        ),
        ce_hours_required=ce_hours_required,
        audit_due_date=audit_due_date,
        penalty_points=penalty_points,
        supersedes_id=supersedes_id,
    )
    return TransitionOutcome.success(
        record,
        transition_effects("CREATED", "created", None, record, now, actor.actor_id),
    )


def start_renewal(
    record: CredentialRecord,
    new_record_id: uuid.UUID,
    actor: Actor,
    now: datetime,
) -> TransitionOutcome:
    """Open a renewal cycle: a new record superseding ``record``.

    The prior record is left untouched so its history stays auditable. The
    new record's level is raised to whatever the subject's current role
    demands.
    """
    if record.status not in RENEWABLE_STATUSES:
        return TransitionOutcome.failure(
            LifecycleError.illegal_transition(
                f"Only cleared or expired credentials can be renewed; "
                f"{record.id} is '{record.status.value}'."
            ),
            record,
        )
    policy = get_policy(record.credential_type)
    level = record.check_level
    required = required_check_level(record.credential_type, record.role_sensitivity)
    if required is not None and policy.level_rank(required) > policy.level_rank(level):
        level = required

    outcome = new_record(
        new_record_id,
        record.subject_id,
        record.credential_type,
        level,
        now,
        actor=actor,
        organization_id=record.organization_id,
        role_sensitivity=record.role_sensitivity,
        renewal_required=record.renewal_required,
        grace_period_days=record.grace_period_days,
        ce_hours_required=record.ce_hours_required,
        penalty_points=record.penalty_points,
        supersedes_id=record.id,
    )
    if not outcome.ok:
        return outcome
    renewed = outcome.record
    return TransitionOutcome.success(
        renewed,
        transition_effects(
            "RENEWAL_STARTED",
            "renewal_started",
            None,
            renewed,
            now,
            actor.actor_id,
            data={"supersedes_id": str(record.id)},
        ),
    )
