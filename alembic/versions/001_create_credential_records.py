"""Create credential_records table.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "001"
down_revision = None
branch_labels = None
depends_on = None

credential_type = sa.Enum(
    "CRIMINAL_RECORD_CHECK",
    "RIGHT_TO_WORK",
    "DRIVING_LICENCE",
    "PROFESSIONAL_CERTIFICATION",
    name="credential_type",
)
check_level = sa.Enum(
    "BASIC",
    "STANDARD",
    "ENHANCED",
    "ENHANCED_WITH_BARRED_LISTS",
    "LIST_A",
    "LIST_B",
    "SHARE_CODE",
    "CATEGORY_B",
    "CATEGORY_D1",
    "FOUNDATION",
    "PRACTITIONER",
    "ADVANCED",
    name="check_level",
)
credential_status = sa.Enum(
    "NOT_STARTED",
    "APPLICATION_SUBMITTED",
    "UNDER_REVIEW",
    "IN_PROGRESS",
    "CLEARED",
    "REJECTED",
    "EXPIRED",
    "CANCELLED",
    name="credential_status",
)


def upgrade() -> None:
    op.create_table(
        "credential_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("subject_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("credential_type", credential_type, nullable=False),
        sa.Column("check_level", check_level, nullable=False),
        sa.Column("status", credential_status, nullable=False),
        sa.Column("vulnerable_adult_role", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("child_facing_role", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("passenger_transport_role", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("application_reference", sa.String(200), nullable=True),
        sa.Column("external_reference", sa.String(200), nullable=True),
        sa.Column("certificate_number", sa.String(200), nullable=True),
        sa.Column("application_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("submission_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("document_expiry_date", sa.Date(), nullable=True),
        sa.Column("renewal_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("grace_period_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_renewal_date", sa.Date(), nullable=True),
        sa.Column("audit_due_date", sa.Date(), nullable=True),
        sa.Column("ce_hours_required", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ce_hours_completed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("penalty_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("supersedes_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_credential_records_subject_id", "credential_records", ["subject_id"])
    op.create_index("ix_credential_records_organization_id", "credential_records", ["organization_id"])
    op.create_index("ix_credential_records_status", "credential_records", ["status"])
    op.create_index("ix_credential_records_expiry_date", "credential_records", ["expiry_date"])


def downgrade() -> None:
    op.drop_index("ix_credential_records_expiry_date", table_name="credential_records")
    op.drop_index("ix_credential_records_status", table_name="credential_records")
    op.drop_index("ix_credential_records_organization_id", table_name="credential_records")
    op.drop_index("ix_credential_records_subject_id", table_name="credential_records")
    op.drop_table("credential_records")
    credential_status.drop(op.get_bind(), checkfirst=True)
    check_level.drop(op.get_bind(), checkfirst=True)
    credential_type.drop(op.get_bind(), checkfirst=True)
