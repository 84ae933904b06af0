"""
Credential compliance models
=============================

Central import point for the record value type, its enums, and the ORM
mapping. Import ``Base`` from here for Alembic auto-generation.

Usage::

    from carecompliance.models import CredentialRecord, CredentialStatus
"""

# -- Base & Mixins --
from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# -- Credentials --
from .credential import (
    CheckLevel,
    CredentialRecord,
    CredentialRecordRow,
    CredentialStatus,
    CredentialType,
    RoleSensitivity,
    VerificationOutcome,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "CheckLevel",
    "CredentialRecord",
    "CredentialRecordRow",
    "CredentialStatus",
    "CredentialType",
    "RoleSensitivity",
    "VerificationOutcome",
]
