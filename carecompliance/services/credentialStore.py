"""
SQLAlchemy-backed ``CredentialStore``.

Rows carry an integer ``version``.  Updates are issued as
``UPDATE ... WHERE id = :id AND version = :expected`` so a concurrent writer
is detected by a zero row count rather than by locking.  Statements run on
the caller's session and are never committed here: the caller owns the
transaction (and must roll it back after a failed insert).
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Any, Optional, Sequence

from sqlalchemy import and_, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from carecompliance.models.credential import (
    CredentialRecord,
    CredentialRecordRow,
    CredentialStatus,
    CredentialType,
    RoleSensitivity,
)
from carecompliance.services.collaborators import SaveStatus

logger = logging.getLogger(__name__)

# Record fields persisted one-to-one as columns
_COLUMN_FIELDS: tuple[str, ...] = (
    "subject_id",
    "organization_id",
    "credential_type",
    "check_level",
    "status",
    "application_reference",
    "external_reference",
    "certificate_number",
    "application_date",
    "submission_date",
    "completion_date",
    "expiry_date",
    "document_expiry_date",
    "renewal_required",
    "grace_period_days",
    "next_renewal_date",
    "audit_due_date",
    "ce_hours_required",
    "ce_hours_completed",
    "penalty_points",
    "rejection_reason",
    "cancellation_reason",
    "supersedes_id",
    "version",
)


def record_to_values(record: CredentialRecord) -> dict[str, Any]:
    values = {name: getattr(record, name) for name in _COLUMN_FIELDS}
    values["vulnerable_adult_role"] = record.role_sensitivity.vulnerable_adult_role
    values["child_facing_role"] = record.role_sensitivity.child_facing_role
    values["passenger_transport_role"] = record.role_sensitivity.passenger_transport_role
    return values


def row_to_record(row: CredentialRecordRow) -> CredentialRecord:
    return CredentialRecord(
        id=row.id,
        created_at=row.created_at,
        role_sensitivity=RoleSensitivity(
            vulnerable_adult_role=row.vulnerable_adult_role,
            child_facing_role=row.child_facing_role,
            passenger_transport_role=row.passenger_transport_role,
        ),
        **{name: getattr(row, name) for name in _COLUMN_FIELDS},
    )


class SqlAlchemyCredentialStore:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def load(self, record_id: uuid.UUID) -> Optional[CredentialRecord]:
        stmt = select(CredentialRecordRow).where(CredentialRecordRow.id == record_id)
        result = await self._db.execute(stmt)
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return row_to_record(row)

    async def save(
        self,
        record: CredentialRecord,
        expected_version: Optional[int],
    ) -> SaveStatus:
        values = record_to_values(record)

        if expected_version is None:
            stmt = insert(CredentialRecordRow).values(
                id=record.id,
                **({"created_at": record.created_at} if record.created_at else {}),
                **values,
            )
            try:
                await self._db.execute(stmt)
            except IntegrityError:
                logger.warning("Credential insert conflicted: id=%s", record.id)
                return SaveStatus.CONCURRENT_MODIFICATION
            return SaveStatus.OK

        stmt = (
            update(CredentialRecordRow)
            .where(
                and_(
                    CredentialRecordRow.id == record.id,
                    CredentialRecordRow.version == expected_version,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        if result.rowcount == 0:
            logger.info(
                "Stale credential write rejected: id=%s, expected_version=%d",
                record.id,
                expected_version,
            )
            return SaveStatus.CONCURRENT_MODIFICATION
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
        stmt = select(CredentialRecordRow)

        if subject_id is not None:
            stmt = stmt.where(CredentialRecordRow.subject_id == subject_id)
        if organization_id is not None:
            stmt = stmt.where(CredentialRecordRow.organization_id == organization_id)
        if statuses:
            stmt = stmt.where(CredentialRecordRow.status.in_(list(statuses)))
        if credential_type is not None:
            stmt = stmt.where(CredentialRecordRow.credential_type == credential_type)
        if expires_before is not None:
            stmt = stmt.where(
                and_(
                    CredentialRecordRow.expiry_date.isnot(None),
                    CredentialRecordRow.expiry_date <= expires_before,
                )
            )

        # Stable ordering keeps offset pagination consistent between pages
        stmt = stmt.order_by(CredentialRecordRow.created_at, CredentialRecordRow.id)
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await self._db.execute(stmt)
        return [row_to_record(row) for row in result.scalars().all()]
