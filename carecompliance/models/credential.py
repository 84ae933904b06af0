"""
Credential record model.

``CredentialRecord`` is the immutable value the lifecycle functions operate
on: every transition returns a *new* record via ``dataclasses.replace`` and
never assigns fields in place.  ``CredentialRecordRow`` is its SQLAlchemy
mapping, used only by the SQL store.

Records are never deleted.  A withdrawn credential is ``cancelled`` and a
renewal is a new record whose ``supersedes_id`` points at its predecessor.
"""

import enum
import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import Boolean, Date, DateTime, Enum, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class CredentialType(str, enum.Enum):
    CRIMINAL_RECORD_CHECK = "criminal_record_check"
    RIGHT_TO_WORK = "right_to_work"
    DRIVING_LICENCE = "driving_licence"
    PROFESSIONAL_CERTIFICATION = "professional_certification"


class CheckLevel(str, enum.Enum):
    # Criminal record (DBS) checks
    BASIC = "basic"
    STANDARD = "standard"
    ENHANCED = "enhanced"
    ENHANCED_WITH_BARRED_LISTS = "enhanced_with_barred_lists"
    # Right to Work
    LIST_A = "list_a"              # permanent right, no follow-up check
    LIST_B = "list_b"              # time-limited, follows the document expiry
    SHARE_CODE = "share_code"      # online Home Office check, time-limited
    # Driving licence entitlement
    CATEGORY_B = "category_b"      # cars
    CATEGORY_D1 = "category_d1"    # minibuses (resident transport)
    # Professional certification
    FOUNDATION = "foundation"
    PRACTITIONER = "practitioner"
    ADVANCED = "advanced"


class CredentialStatus(str, enum.Enum):
    NOT_STARTED = "not_started"
    APPLICATION_SUBMITTED = "application_submitted"
    UNDER_REVIEW = "under_review"
    IN_PROGRESS = "in_progress"
    CLEARED = "cleared"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class VerificationOutcome(str, enum.Enum):
    CLEARED = "cleared"
    REJECTED = "rejected"


@dataclass(frozen=True)
class RoleSensitivity:
    """Flags describing the subject's current role that constrain check level."""
    vulnerable_adult_role: bool = False
    child_facing_role: bool = False
    passenger_transport_role: bool = False


@dataclass(frozen=True)
class CredentialRecord:
    id: uuid.UUID
    subject_id: uuid.UUID
    credential_type: CredentialType
    check_level: CheckLevel
    status: CredentialStatus = CredentialStatus.NOT_STARTED
    organization_id: Optional[uuid.UUID] = None
    role_sensitivity: RoleSensitivity = field(default_factory=RoleSensitivity)

    # References
    application_reference: Optional[str] = None
    external_reference: Optional[str] = None
    certificate_number: Optional[str] = None

    # Lifecycle timestamps
    created_at: Optional[datetime] = None
    application_date: Optional[datetime] = None
    submission_date: Optional[datetime] = None
    completion_date: Optional[datetime] = None

    # Validity
    expiry_date: Optional[date] = None
    document_expiry_date: Optional[date] = None

    # Renewal policy
    renewal_required: bool = True
    grace_period_days: int = 0
    next_renewal_date: Optional[date] = None

    # Certification upkeep
    audit_due_date: Optional[date] = None
    ce_hours_required: int = 0
    ce_hours_completed: int = 0

    # Driving licence endorsements
    penalty_points: int = 0

    # Outcome notes
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None

    supersedes_id: Optional[uuid.UUID] = None
    version: int = 0

    def snapshot(self) -> dict[str, Any]:
        """JSON-friendly view used for audit before/after states."""
        data = asdict(self)
        data.pop("version", None)
        for key, value in data.items():
            if isinstance(value, enum.Enum):
                data[key] = value.value
            elif isinstance(value, (uuid.UUID, date, datetime)):
                data[key] = str(value) if isinstance(value, uuid.UUID) else value.isoformat()
        return data

    def __repr__(self) -> str:
        return (
            f"<CredentialRecord(id={self.id}, subject={self.subject_id}, "
            f"type={self.credential_type.value}, status={self.status.value})>"
        )


class CredentialRecordRow(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "credential_records"

    subject_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    organization_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True, index=True
    )
    credential_type: Mapped[CredentialType] = mapped_column(
        Enum(CredentialType, name="credential_type"),
        nullable=False,
    )
    check_level: Mapped[CheckLevel] = mapped_column(
        Enum(CheckLevel, name="check_level"),
        nullable=False,
    )
    status: Mapped[CredentialStatus] = mapped_column(
        Enum(CredentialStatus, name="credential_status"),
        nullable=False,
        index=True,
    )

    # Role sensitivity
    vulnerable_adult_role: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    child_facing_role: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    passenger_transport_role: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # References
    application_reference: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    external_reference: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    certificate_number: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Lifecycle timestamps
    application_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    submission_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completion_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Validity
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)
    document_expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Renewal policy
    renewal_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    grace_period_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_renewal_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Certification upkeep
    audit_due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    ce_hours_required: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ce_hours_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    penalty_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    supersedes_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)

    # Optimistic concurrency token, bumped on every save
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return (
            f"<CredentialRecordRow(id={self.id}, subject={self.subject_id}, "
            f"type={self.credential_type}, status={self.status}, version={self.version})>"
        )
