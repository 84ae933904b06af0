"""
Per-credential-type policy table.

Each credential type is described by data rather than by its own copy of the
lifecycle: which check levels it accepts (weakest first), how long a cleared
credential stays valid at each level, which evidence must be present when it
is cleared, and which level a sensitive role demands.

Validity periods (months from completion):

    criminal record   basic 6 / standard 12 / enhanced 18 / enhanced+barred 24
    right to work     list A: no expiry; list B and share code: document expiry
    driving licence   category B 12 / category D1 6
    certification     foundation 12 / practitioner 24 / advanced 36
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from carecompliance.models.credential import CheckLevel, CredentialType, RoleSensitivity


# Evidence field names checked when a credential is cleared
EVIDENCE_CERTIFICATE_NUMBER = "certificate_number"
EVIDENCE_DOCUMENT_EXPIRY = "document_expiry_date"


@dataclass(frozen=True)
class CredentialPolicy:
    """Immutable lifecycle parameters for one credential type."""
    credential_type: CredentialType
    levels: tuple[CheckLevel, ...]
    validity_months: dict[CheckLevel, Optional[int]]
    document_expiry_levels: frozenset[CheckLevel]
    required_evidence: tuple[str, ...]
    renewal_lead_days: int
    default_grace_period_days: int

    def level_rank(self, level: CheckLevel) -> int:
        return self.levels.index(level)

    def accepts(self, level: CheckLevel) -> bool:
        return level in self.levels

    def uses_document_expiry(self, level: CheckLevel) -> bool:
        return level in self.document_expiry_levels


CREDENTIAL_POLICIES: dict[CredentialType, CredentialPolicy] = {
    CredentialType.CRIMINAL_RECORD_CHECK: CredentialPolicy(
        credential_type=CredentialType.CRIMINAL_RECORD_CHECK,
        levels=(
            CheckLevel.BASIC,
            CheckLevel.STANDARD,
            CheckLevel.ENHANCED,
            CheckLevel.ENHANCED_WITH_BARRED_LISTS,
        ),
        validity_months={
            CheckLevel.BASIC: 6,
            CheckLevel.STANDARD: 12,
            CheckLevel.ENHANCED: 18,
            CheckLevel.ENHANCED_WITH_BARRED_LISTS: 24,
        },
        document_expiry_levels=frozenset(),
        required_evidence=(EVIDENCE_CERTIFICATE_NUMBER,),
        renewal_lead_days=60,
        default_grace_period_days=0,
    ),
    CredentialType.RIGHT_TO_WORK: CredentialPolicy(
        credential_type=CredentialType.RIGHT_TO_WORK,
        levels=(CheckLevel.SHARE_CODE, CheckLevel.LIST_B, CheckLevel.LIST_A),
        validity_months={
            CheckLevel.LIST_A: None,
            CheckLevel.LIST_B: None,
            CheckLevel.SHARE_CODE: None,
        },
        document_expiry_levels=frozenset({CheckLevel.LIST_B, CheckLevel.SHARE_CODE}),
        required_evidence=(EVIDENCE_DOCUMENT_EXPIRY,),
        renewal_lead_days=30,
        default_grace_period_days=28,
    ),
    CredentialType.DRIVING_LICENCE: CredentialPolicy(
        credential_type=CredentialType.DRIVING_LICENCE,
        levels=(CheckLevel.CATEGORY_B, CheckLevel.CATEGORY_D1),
        validity_months={
            CheckLevel.CATEGORY_B: 12,
            CheckLevel.CATEGORY_D1: 6,
        },
        document_expiry_levels=frozenset(),
        required_evidence=(EVIDENCE_CERTIFICATE_NUMBER,),
        renewal_lead_days=30,
        default_grace_period_days=0,
    ),
    CredentialType.PROFESSIONAL_CERTIFICATION: CredentialPolicy(
        credential_type=CredentialType.PROFESSIONAL_CERTIFICATION,
        levels=(CheckLevel.FOUNDATION, CheckLevel.PRACTITIONER, CheckLevel.ADVANCED),
        validity_months={
            CheckLevel.FOUNDATION: 12,
            CheckLevel.PRACTITIONER: 24,
            CheckLevel.ADVANCED: 36,
        },
        document_expiry_levels=frozenset(),
        required_evidence=(EVIDENCE_CERTIFICATE_NUMBER,),
        renewal_lead_days=90,
        default_grace_period_days=30,
    ),
}

# UK penalty-point threshold at which a driver faces disqualification
DRIVING_DISQUALIFICATION_POINTS: int = 12


def get_policy(credential_type: CredentialType) -> CredentialPolicy:
    return CREDENTIAL_POLICIES[credential_type]


def required_check_level(
    credential_type: CredentialType,
    roles: RoleSensitivity,
) -> Optional[CheckLevel]:
    """Return the weakest check level the given role demands, or ``None``
    when the role places no constraint on this credential type."""
    if credential_type == CredentialType.CRIMINAL_RECORD_CHECK:
        if roles.child_facing_role:
            return CheckLevel.ENHANCED_WITH_BARRED_LISTS
        if roles.vulnerable_adult_role:
            return CheckLevel.ENHANCED
        return None
    if credential_type == CredentialType.DRIVING_LICENCE:
        if roles.passenger_transport_role:
            return CheckLevel.CATEGORY_D1
        return None
    return None


def is_level_sufficient(
    credential_type: CredentialType,
    level: CheckLevel,
    roles: RoleSensitivity,
) -> bool:
    required = required_check_level(credential_type, roles)
    if required is None:
        return True
    policy = get_policy(credential_type)
    return policy.level_rank(level) >= policy.level_rank(required)


def missing_evidence(
    credential_type: CredentialType,
    level: CheckLevel,
    *,
    certificate_number: Optional[str],
    document_expiry_date: object,
) -> list[str]:
    """List the evidence fields that must be supplied before clearing."""
    policy = get_policy(credential_type)
    missing: list[str] = []
    for evidence in policy.required_evidence:
        if evidence == EVIDENCE_CERTIFICATE_NUMBER:
            if not certificate_number or not certificate_number.strip():
                missing.append(evidence)
        elif evidence == EVIDENCE_DOCUMENT_EXPIRY:
            if policy.uses_document_expiry(level) and document_expiry_date is None:
                missing.append(evidence)
    return missing
