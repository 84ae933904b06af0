"""
Unit tests for the Credential State Manager.

Tests the finite state machine governing credential status transitions,
guard conditions (check level, evidence, actor, dates), effect emission,
record immutability and the renewal cycle.
"""

import uuid
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

import pytest

from carecompliance.core.errors import LifecycleErrorKind
from carecompliance.events.credentialEvents import AuditEffect, NotifyEffect
from carecompliance.models.credential import (
    CheckLevel,
    CredentialStatus,
    CredentialType,
    RoleSensitivity,
    VerificationOutcome,
)
from carecompliance.services.credentialStateManager import (
    SYSTEM_ACTOR,
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    Actor,
    ActorType,
    BeginProcessing,
    Cancel,
    Complete,
    Expire,
    ReassessRole,
    RecordContinuingEducation,
    Reject,
    StartApplication,
    Submit,
    apply,
    available_events,
    get_valid_transitions,
    new_record,
    start_renewal,
    transition_events,
    validate_transition,
)


NOW = datetime(2025, 6, 25, 9, 0, tzinfo=timezone.utc)
OFFICER = Actor(actor_id=uuid.uuid4(), actor_type=ActorType.COMPLIANCE_OFFICER)
MANAGER = Actor(actor_id=uuid.uuid4(), actor_type=ActorType.MANAGER)
EMPLOYEE = Actor(actor_id=uuid.uuid4(), actor_type=ActorType.EMPLOYEE)

ALL_EVENTS = [
    StartApplication(reference="APP-9"),
    Submit(external_reference="EXT-9"),
    BeginProcessing(),
    Complete(certificate_number="CERT-9"),
    Reject(reason="adverse record"),
    Cancel(reason="left employment"),
    Expire(),
    ReassessRole(role_sensitivity=RoleSensitivity(child_facing_role=True)),
    RecordContinuingEducation(hours=5),
]


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------


class TestValidTransitions:

    def test_not_started_to_application_submitted(self):
        result = validate_transition(
            CredentialStatus.NOT_STARTED, CredentialStatus.APPLICATION_SUBMITTED
        )
        assert result.allowed is True

    def test_under_review_to_cleared_by_officer(self):
        result = validate_transition(
            CredentialStatus.UNDER_REVIEW,
            CredentialStatus.CLEARED,
            ActorType.COMPLIANCE_OFFICER,
        )
        assert result.allowed is True

    def test_cleared_to_expired_by_system(self):
        result = validate_transition(CredentialStatus.CLEARED, CredentialStatus.EXPIRED)
        assert result.allowed is True

    def test_table_matches_lifecycle(self):
        assert VALID_TRANSITIONS == {
            CredentialStatus.NOT_STARTED: {
                CredentialStatus.APPLICATION_SUBMITTED,
                CredentialStatus.CANCELLED,
            },
            CredentialStatus.APPLICATION_SUBMITTED: {
                CredentialStatus.UNDER_REVIEW,
                CredentialStatus.CANCELLED,
            },
            CredentialStatus.UNDER_REVIEW: {
                CredentialStatus.IN_PROGRESS,
                CredentialStatus.CLEARED,
                CredentialStatus.REJECTED,
                CredentialStatus.CANCELLED,
            },
            CredentialStatus.IN_PROGRESS: {
                CredentialStatus.CLEARED,
                CredentialStatus.REJECTED,
                CredentialStatus.CANCELLED,
            },
            CredentialStatus.CLEARED: {
                CredentialStatus.EXPIRED,
                CredentialStatus.CANCELLED,
            },
            CredentialStatus.REJECTED: set(),
            CredentialStatus.EXPIRED: set(),
            CredentialStatus.CANCELLED: set(),
        }


class TestInvalidTransitions:

    def test_not_started_to_cleared_rejected(self):
        result = validate_transition(CredentialStatus.NOT_STARTED, CredentialStatus.CLEARED)
        assert result.allowed is False
        assert result.reason is not None

    def test_employee_cannot_clear(self):
        result = validate_transition(
            CredentialStatus.UNDER_REVIEW, CredentialStatus.CLEARED, ActorType.EMPLOYEE
        )
        assert result.allowed is False
        assert "employee" in result.reason

    def test_manager_cannot_expire(self):
        result = validate_transition(
            CredentialStatus.CLEARED, CredentialStatus.EXPIRED, ActorType.MANAGER
        )
        assert result.allowed is False

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_statuses_have_no_exits(self, status):
        assert VALID_TRANSITIONS[status] == set()
        for target in CredentialStatus:
            assert validate_transition(status, target, ActorType.ADMIN).allowed is False


class TestTableAgreesWithApply:

    def test_in_progress_reaches_rejected_only_through_complete(self, make_record):
        record = make_record(status=CredentialStatus.IN_PROGRESS)

        assert validate_transition(
            CredentialStatus.IN_PROGRESS, CredentialStatus.REJECTED, ActorType.ADMIN
        ).allowed is True
        assert transition_events(
            CredentialStatus.IN_PROGRESS, CredentialStatus.REJECTED, ActorType.ADMIN
        ) == ["Complete"]
        assert "Reject" not in available_events(record)

        rejected = apply(record, Reject(reason="adverse record"), OFFICER, NOW)
        assert rejected.error.kind == LifecycleErrorKind.ILLEGAL_TRANSITION

        adverse = apply(
            record,
            Complete(
                certificate_number="C-1",
                outcome=VerificationOutcome.REJECTED,
                reason="adverse record",
            ),
            OFFICER,
            NOW,
        )
        assert adverse.ok
        assert adverse.record.status == CredentialStatus.REJECTED

    def test_under_review_reaches_rejected_two_ways(self):
        assert transition_events(
            CredentialStatus.UNDER_REVIEW, CredentialStatus.REJECTED, ActorType.COMPLIANCE_OFFICER
        ) == ["Complete", "Reject"]

    def test_actor_restriction_shared_with_apply(self, make_record):
        record = make_record()
        assert validate_transition(
            CredentialStatus.UNDER_REVIEW, CredentialStatus.REJECTED, ActorType.MANAGER
        ).allowed is False
        outcome = apply(record, Reject(reason="adverse record"), MANAGER, NOW)
        assert outcome.error.kind == LifecycleErrorKind.ILLEGAL_TRANSITION


class TestGetValidTransitions:

    def test_employee_under_review(self):
        assert get_valid_transitions(CredentialStatus.UNDER_REVIEW, ActorType.EMPLOYEE) == [
            CredentialStatus.CANCELLED,
            CredentialStatus.IN_PROGRESS,
        ]

    def test_terminal_status_has_none(self):
        assert get_valid_transitions(CredentialStatus.CANCELLED) == []

    def test_available_events_from_not_started(self, make_record):
        record = make_record(status=CredentialStatus.NOT_STARTED)
        assert available_events(record) == [
            "Cancel",
            "ReassessRole",
            "RecordContinuingEducation",
            "StartApplication",
        ]

    def test_available_events_for_actor(self, make_record):
        record = make_record(status=CredentialStatus.UNDER_REVIEW)
        assert available_events(record, ActorType.EMPLOYEE) == [
            "BeginProcessing",
            "Cancel",
            "ReassessRole",
            "RecordContinuingEducation",
        ]


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestLifecycle:

    def test_full_lifecycle_to_cleared(self, make_record):
        record = make_record(
            check_level=CheckLevel.ENHANCED,
            status=CredentialStatus.NOT_STARTED,
            role_sensitivity=RoleSensitivity(vulnerable_adult_role=True),
            application_date=None,
        )

        step = apply(record, StartApplication(reference=" APP-42 "), SYSTEM_ACTOR, NOW)
        assert step.ok
        assert step.record.status == CredentialStatus.APPLICATION_SUBMITTED
        assert step.record.application_reference == "APP-42"
        assert step.record.application_date == NOW

        step = apply(step.record, Submit(external_reference="DBS-123"), SYSTEM_ACTOR, NOW)
        assert step.record.status == CredentialStatus.UNDER_REVIEW
        assert step.record.submission_date == NOW

        step = apply(step.record, BeginProcessing(), SYSTEM_ACTOR, NOW)
        assert step.record.status == CredentialStatus.IN_PROGRESS

        completed_at = NOW + timedelta(days=14)
        step = apply(step.record, Complete(certificate_number="001234"), OFFICER, completed_at)
        assert step.ok
        assert step.record.status == CredentialStatus.CLEARED
        assert step.record.certificate_number == "001234"
        assert step.record.expiry_date == date(2027, 1, 9)
        assert step.record.next_renewal_date == date(2026, 11, 10)

    def test_basic_check_expires_after_six_months(self, make_record):
        record = make_record(application_date=datetime(2024, 12, 1, tzinfo=timezone.utc))
        completed_at = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

        outcome = apply(record, Complete(certificate_number="C-1"), OFFICER, completed_at)

        assert outcome.ok
        assert outcome.record.expiry_date == date(2025, 7, 1)
        assert outcome.record.completion_date == completed_at

    def test_expiry_strictly_after_completion(self, make_record):
        for credential_type, level in [
            (CredentialType.CRIMINAL_RECORD_CHECK, CheckLevel.BASIC),
            (CredentialType.DRIVING_LICENCE, CheckLevel.CATEGORY_D1),
            (CredentialType.PROFESSIONAL_CERTIFICATION, CheckLevel.FOUNDATION),
        ]:
            record = make_record(credential_type=credential_type, check_level=level)
            outcome = apply(record, Complete(certificate_number="C-1"), OFFICER, NOW)
            assert outcome.ok
            assert outcome.record.expiry_date > outcome.record.completion_date.date()

    def test_no_renewal_date_when_renewal_not_required(self, make_record):
        record = make_record(renewal_required=False)
        outcome = apply(record, Complete(certificate_number="C-1"), OFFICER, NOW)
        assert outcome.record.next_renewal_date is None

    def test_complete_can_upgrade_check_level(self, make_record):
        record = make_record(
            check_level=CheckLevel.STANDARD,
            role_sensitivity=RoleSensitivity(child_facing_role=True),
        )
        outcome = apply(
            record,
            Complete(
                certificate_number="C-1",
                check_level=CheckLevel.ENHANCED_WITH_BARRED_LISTS,
            ),
            OFFICER,
            NOW,
        )
        assert outcome.ok
        assert outcome.record.check_level == CheckLevel.ENHANCED_WITH_BARRED_LISTS

    def test_input_record_is_never_mutated(self, make_record):
        record = make_record()
        before = record.snapshot()
        apply(record, Complete(certificate_number="C-1"), OFFICER, NOW)
        assert record.snapshot() == before
        assert record.status == CredentialStatus.UNDER_REVIEW


class TestEffects:

    def test_completion_emits_audit_then_notification(self, make_record):
        record = make_record()
        outcome = apply(record, Complete(certificate_number="C-1"), OFFICER, NOW)

        audit, notify = outcome.effects
        assert isinstance(audit, AuditEffect)
        assert audit.action == "VERIFICATION_COMPLETED"
        assert audit.actor_id == OFFICER.actor_id
        assert audit.before_state["status"] == "under_review"
        assert audit.after_state["status"] == "cleared"

        assert isinstance(notify, NotifyEffect)
        assert notify.event.event_type == "credential.cleared"
        assert notify.event.record_id == record.id
        assert notify.event.data["expiry_date"] == "2025-12-25"

    def test_failure_emits_no_effects(self, make_record):
        record = make_record(status=CredentialStatus.NOT_STARTED)
        outcome = apply(record, Complete(certificate_number="C-1"), OFFICER, NOW)
        assert not outcome.ok
        assert outcome.effects == ()

    def test_event_payload_is_serialisable(self, make_record):
        outcome = apply(make_record(), Cancel(reason="withdrawn"), MANAGER, NOW)
        payload = outcome.effects[1].event.to_payload()
        assert payload["event_type"] == "credential.cancelled"
        assert payload["timestamp"] == NOW.isoformat()
        assert payload["data"]["reason"] == "withdrawn"


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


class TestCheckLevelGuard:

    def test_child_facing_role_rejects_standard_check(self, make_record):
        record = make_record(
            check_level=CheckLevel.STANDARD,
            role_sensitivity=RoleSensitivity(child_facing_role=True),
        )
        outcome = apply(record, Complete(certificate_number="C-1"), OFFICER, NOW)

        assert not outcome.ok
        assert outcome.error.kind == LifecycleErrorKind.INSUFFICIENT_CHECK_LEVEL
        assert outcome.error.caller_action == "escalate"
        assert outcome.record is record

    def test_role_change_after_creation_is_enforced(self, make_record):
        record = make_record(check_level=CheckLevel.STANDARD)
        reassessed = apply(
            record,
            ReassessRole(RoleSensitivity(vulnerable_adult_role=True)),
            MANAGER,
            NOW,
        )
        assert reassessed.ok
        assert reassessed.effects[1].event.data["level_sufficient"] is False

        outcome = apply(reassessed.record, Complete(certificate_number="C-1"), OFFICER, NOW)
        assert outcome.error.kind == LifecycleErrorKind.INSUFFICIENT_CHECK_LEVEL

    def test_adverse_outcome_recorded_regardless_of_level(self, make_record):
        record = make_record(
            check_level=CheckLevel.STANDARD,
            role_sensitivity=RoleSensitivity(child_facing_role=True),
        )
        outcome = apply(
            record,
            Complete(
                certificate_number="C-1",
                outcome=VerificationOutcome.REJECTED,
                reason="Barred list match",
            ),
            OFFICER,
            NOW,
        )
        assert outcome.ok
        assert outcome.record.status == CredentialStatus.REJECTED
        assert outcome.record.rejection_reason == "Barred list match"

    def test_level_from_wrong_type_is_validation_error(self, make_record):
        outcome = apply(
            make_record(),
            Complete(certificate_number="C-1", check_level=CheckLevel.CATEGORY_B),
            OFFICER,
            NOW,
        )
        assert outcome.error.kind == LifecycleErrorKind.VALIDATION_ERROR


class TestActorGuards:

    def test_employee_cannot_complete(self, make_record):
        outcome = apply(make_record(), Complete(certificate_number="C-1"), EMPLOYEE, NOW)
        assert outcome.error.kind == LifecycleErrorKind.ILLEGAL_TRANSITION

    def test_subject_cannot_verify_own_credential(self, make_record):
        subject_officer = Actor(actor_id=uuid.uuid4(), actor_type=ActorType.COMPLIANCE_OFFICER)
        record = make_record(subject_id=subject_officer.actor_id)
        outcome = apply(record, Complete(certificate_number="C-1"), subject_officer, NOW)
        assert outcome.error.kind == LifecycleErrorKind.ILLEGAL_TRANSITION

    def test_manager_cannot_expire(self, make_record):
        record = make_record(
            status=CredentialStatus.CLEARED,
            cleared_on=NOW - timedelta(days=200),
            expires_on=date(2025, 6, 1),
        )
        outcome = apply(record, Expire(), MANAGER, NOW)
        assert outcome.error.kind == LifecycleErrorKind.ILLEGAL_TRANSITION

    def test_employee_cannot_reject(self, make_record):
        outcome = apply(make_record(), Reject(reason="no"), EMPLOYEE, NOW)
        assert outcome.error.kind == LifecycleErrorKind.ILLEGAL_TRANSITION


class TestValidation:

    def test_blank_application_reference(self, make_record):
        record = make_record(status=CredentialStatus.NOT_STARTED)
        outcome = apply(record, StartApplication(reference="  "), SYSTEM_ACTOR, NOW)
        assert outcome.error.kind == LifecycleErrorKind.VALIDATION_ERROR
        assert outcome.error.caller_action == "fix_input"

    def test_blank_cancel_reason(self, make_record):
        outcome = apply(make_record(), Cancel(reason=""), MANAGER, NOW)
        assert outcome.error.kind == LifecycleErrorKind.VALIDATION_ERROR

    def test_blank_reject_reason(self, make_record):
        outcome = apply(make_record(), Reject(reason=" "), OFFICER, NOW)
        assert outcome.error.kind == LifecycleErrorKind.VALIDATION_ERROR

    def test_missing_certificate_number(self, make_record):
        outcome = apply(make_record(), Complete(certificate_number=None), OFFICER, NOW)
        assert outcome.error.kind == LifecycleErrorKind.VALIDATION_ERROR
        assert "certificate_number" in outcome.error.message

    def test_completion_before_application(self, make_record):
        record = make_record(application_date=NOW + timedelta(days=1))
        outcome = apply(record, Complete(certificate_number="C-1"), OFFICER, NOW)
        assert outcome.error.kind == LifecycleErrorKind.VALIDATION_ERROR

    def test_document_already_expired_at_completion(self, make_record):
        record = make_record(
            credential_type=CredentialType.RIGHT_TO_WORK,
            check_level=CheckLevel.LIST_B,
        )
        outcome = apply(
            record,
            Complete(certificate_number=None, document_expiry_date=date(2025, 6, 1)),
            OFFICER,
            NOW,
        )
        assert outcome.error.kind == LifecycleErrorKind.VALIDATION_ERROR

    def test_right_to_work_follows_document_expiry(self, make_record):
        record = make_record(
            credential_type=CredentialType.RIGHT_TO_WORK,
            check_level=CheckLevel.SHARE_CODE,
        )
        outcome = apply(
            record,
            Complete(certificate_number=None, document_expiry_date=date(2026, 3, 31)),
            OFFICER,
            NOW,
        )
        assert outcome.ok
        assert outcome.record.expiry_date == date(2026, 3, 31)
        assert outcome.record.document_expiry_date == date(2026, 3, 31)


# ---------------------------------------------------------------------------
# Cancellation, rejection and terminality
# ---------------------------------------------------------------------------


class TestTerminality:

    def test_cancel_then_complete_is_illegal(self, make_record):
        record = make_record(status=CredentialStatus.UNDER_REVIEW)

        cancelled = apply(record, Cancel(reason="Offer withdrawn"), MANAGER, NOW)
        assert cancelled.ok
        assert cancelled.record.status == CredentialStatus.CANCELLED
        assert cancelled.record.cancellation_reason == "Offer withdrawn"

        outcome = apply(cancelled.record, Complete(certificate_number="C-1"), OFFICER, NOW)
        assert not outcome.ok
        assert outcome.error.kind == LifecycleErrorKind.ILLEGAL_TRANSITION
        assert outcome.error.caller_action == "refresh"
        assert outcome.record.status == CredentialStatus.CANCELLED

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    @pytest.mark.parametrize("event", ALL_EVENTS, ids=lambda e: type(e).__name__)
    def test_no_event_leaves_a_terminal_status(self, make_record, status, event):
        record = make_record(
            status=status,
            cleared_on=NOW - timedelta(days=400),
            expires_on=date(2025, 1, 1),
        )
        outcome = apply(record, event, SYSTEM_ACTOR, NOW)
        assert not outcome.ok
        assert outcome.error.kind == LifecycleErrorKind.ILLEGAL_TRANSITION
        assert outcome.record.status == status

    def test_reject_from_under_review(self, make_record):
        outcome = apply(make_record(), Reject(reason="Identity mismatch"), OFFICER, NOW)
        assert outcome.record.status == CredentialStatus.REJECTED
        assert outcome.effects[0].action == "VERIFICATION_REJECTED"

    def test_reject_not_allowed_before_submission(self, make_record):
        record = make_record(status=CredentialStatus.APPLICATION_SUBMITTED)
        outcome = apply(record, Reject(reason="Identity mismatch"), OFFICER, NOW)
        assert outcome.error.kind == LifecycleErrorKind.ILLEGAL_TRANSITION

    def test_cancel_from_cleared(self, make_record):
        record = make_record(
            status=CredentialStatus.CLEARED,
            cleared_on=NOW - timedelta(days=30),
            expires_on=date(2026, 5, 26),
        )
        outcome = apply(record, Cancel(reason="Left employment"), MANAGER, NOW)
        assert outcome.record.status == CredentialStatus.CANCELLED


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


class TestExpire:

    def test_system_expires_lapsed_credential(self, make_record):
        record = make_record(
            status=CredentialStatus.CLEARED,
            cleared_on=NOW - timedelta(days=200),
            expires_on=date(2025, 6, 20),
        )
        outcome = apply(record, Expire(), SYSTEM_ACTOR, NOW)
        assert outcome.ok
        assert outcome.record.status == CredentialStatus.EXPIRED
        assert outcome.effects[1].event.event_type == "credential.expired"

    def test_cannot_expire_on_expiry_day(self, make_record):
        record = make_record(
            status=CredentialStatus.CLEARED,
            cleared_on=NOW - timedelta(days=200),
            expires_on=date(2025, 6, 25),
        )
        outcome = apply(record, Expire(), SYSTEM_ACTOR, NOW)
        assert outcome.error.kind == LifecycleErrorKind.ILLEGAL_TRANSITION

    def test_cannot_expire_within_grace_period(self, make_record):
        record = make_record(
            status=CredentialStatus.CLEARED,
            cleared_on=NOW - timedelta(days=200),
            expires_on=date(2025, 6, 20),
            grace_period_days=28,
        )
        outcome = apply(record, Expire(), SYSTEM_ACTOR, NOW)
        assert outcome.error.kind == LifecycleErrorKind.ILLEGAL_TRANSITION
        assert "2025-07-18" in outcome.error.message

    def test_cannot_expire_without_expiry_date(self, make_record):
        record = make_record(
            credential_type=CredentialType.RIGHT_TO_WORK,
            check_level=CheckLevel.LIST_A,
            status=CredentialStatus.CLEARED,
            cleared_on=NOW - timedelta(days=30),
        )
        outcome = apply(record, Expire(), SYSTEM_ACTOR, NOW)
        assert outcome.error.kind == LifecycleErrorKind.ILLEGAL_TRANSITION


# ---------------------------------------------------------------------------
# Continuing education
# ---------------------------------------------------------------------------


class TestContinuingEducation:

    def test_hours_accumulate(self, make_record):
        record = make_record(
            credential_type=CredentialType.PROFESSIONAL_CERTIFICATION,
            check_level=CheckLevel.PRACTITIONER,
            ce_hours_required=20,
            ce_hours_completed=5,
        )
        outcome = apply(record, RecordContinuingEducation(hours=6), EMPLOYEE, NOW)
        assert outcome.ok
        assert outcome.record.ce_hours_completed == 11
        assert outcome.effects[1].event.data["total_hours"] == 11

    def test_only_for_certifications(self, make_record):
        outcome = apply(make_record(), RecordContinuingEducation(hours=6), EMPLOYEE, NOW)
        assert outcome.error.kind == LifecycleErrorKind.VALIDATION_ERROR

    def test_hours_must_be_positive(self, make_record):
        record = make_record(
            credential_type=CredentialType.PROFESSIONAL_CERTIFICATION,
            check_level=CheckLevel.FOUNDATION,
        )
        outcome = apply(record, RecordContinuingEducation(hours=0), EMPLOYEE, NOW)
        assert outcome.error.kind == LifecycleErrorKind.VALIDATION_ERROR


# ---------------------------------------------------------------------------
# Contract violations
# ---------------------------------------------------------------------------


class TestContractViolations:

    def test_missing_clock_value_raises(self, make_record):
        with pytest.raises(ValueError):
            apply(make_record(), Cancel(reason="x"), SYSTEM_ACTOR, None)

    def test_unknown_event_raises(self, make_record):
        with pytest.raises(TypeError):
            apply(make_record(), object(), SYSTEM_ACTOR, NOW)


# ---------------------------------------------------------------------------
# Creation and renewal
# ---------------------------------------------------------------------------


class TestNewRecord:

    def test_creates_not_started_record(self):
        subject = uuid.uuid4()
        outcome = new_record(
            uuid.uuid4(),
            subject,
            CredentialType.RIGHT_TO_WORK,
            CheckLevel.SHARE_CODE,
            NOW,
        )
        assert outcome.ok
        assert outcome.record.status == CredentialStatus.NOT_STARTED
        assert outcome.record.created_at == NOW
        assert outcome.record.grace_period_days == 28
        assert outcome.effects[0].action == "CREATED"
        assert outcome.effects[0].before_state is None

    def test_explicit_grace_period_overrides_default(self):
        outcome = new_record(
            uuid.uuid4(),
            uuid.uuid4(),
            CredentialType.RIGHT_TO_WORK,
            CheckLevel.SHARE_CODE,
            NOW,
            grace_period_days=0,
        )
        assert outcome.record.grace_period_days == 0

    def test_insufficient_level_for_role(self):
        outcome = new_record(
            uuid.uuid4(),
            uuid.uuid4(),
            CredentialType.CRIMINAL_RECORD_CHECK,
            CheckLevel.BASIC,
            NOW,
            role_sensitivity=RoleSensitivity(vulnerable_adult_role=True),
        )
        assert outcome.error.kind == LifecycleErrorKind.INSUFFICIENT_CHECK_LEVEL
        assert outcome.record is None

    def test_level_must_match_type(self):
        outcome = new_record(
            uuid.uuid4(),
            uuid.uuid4(),
            CredentialType.PROFESSIONAL_CERTIFICATION,
            CheckLevel.LIST_A,
            NOW,
        )
        assert outcome.error.kind == LifecycleErrorKind.VALIDATION_ERROR

    def test_negative_grace_period(self):
        outcome = new_record(
            uuid.uuid4(),
            uuid.uuid4(),
            CredentialType.CRIMINAL_RECORD_CHECK,
            CheckLevel.BASIC,
            NOW,
            grace_period_days=-1,
        )
        assert outcome.error.kind == LifecycleErrorKind.VALIDATION_ERROR


class TestStartRenewal:

    def test_renewal_creates_superseding_record(self, make_record):
        old = make_record(
            status=CredentialStatus.CLEARED,
            cleared_on=NOW - timedelta(days=150),
            expires_on=date(2025, 7, 1),
        )
        new_id = uuid.uuid4()
        outcome = start_renewal(old, new_id, MANAGER, NOW)

        assert outcome.ok
        assert outcome.record.id == new_id
        assert outcome.record.supersedes_id == old.id
        assert outcome.record.subject_id == old.subject_id
        assert outcome.record.status == CredentialStatus.NOT_STARTED
        assert outcome.effects[0].action == "RENEWAL_STARTED"
        assert old.status == CredentialStatus.CLEARED

    def test_renewal_raises_level_to_current_role(self, make_record):
        old = make_record(
            check_level=CheckLevel.ENHANCED,
            status=CredentialStatus.EXPIRED,
            cleared_on=NOW - timedelta(days=600),
            expires_on=date(2025, 1, 1),
            role_sensitivity=RoleSensitivity(child_facing_role=True),
        )
        outcome = start_renewal(old, uuid.uuid4(), MANAGER, NOW)
        assert outcome.record.check_level == CheckLevel.ENHANCED_WITH_BARRED_LISTS

    def test_renewal_keeps_stronger_level(self, make_record):
        old = make_record(
            check_level=CheckLevel.ENHANCED_WITH_BARRED_LISTS,
            status=CredentialStatus.CLEARED,
            cleared_on=NOW - timedelta(days=600),
            expires_on=date(2025, 7, 1),
            role_sensitivity=RoleSensitivity(vulnerable_adult_role=True),
        )
        outcome = start_renewal(old, uuid.uuid4(), MANAGER, NOW)
        assert outcome.record.check_level == CheckLevel.ENHANCED_WITH_BARRED_LISTS

    def test_cannot_renew_pending_credential(self, make_record):
        outcome = start_renewal(make_record(), uuid.uuid4(), MANAGER, NOW)
        assert outcome.error.kind == LifecycleErrorKind.ILLEGAL_TRANSITION

    def test_cannot_renew_rejected_credential(self, make_record):
        record = replace(make_record(), status=CredentialStatus.REJECTED)
        outcome = start_renewal(record, uuid.uuid4(), MANAGER, NOW)
        assert outcome.error.kind == LifecycleErrorKind.ILLEGAL_TRANSITION
