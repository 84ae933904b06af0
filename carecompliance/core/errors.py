"""
Error taxonomy for the credential lifecycle.

Every expected, recoverable condition is *returned* as a ``LifecycleError``
inside a ``TransitionOutcome`` rather than raised.  Only programming-contract
violations (a missing clock value, an unknown event type) raise.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from carecompliance.models.credential import CredentialRecord


class LifecycleErrorKind(str, enum.Enum):
    ILLEGAL_TRANSITION = "illegal_transition"
    INSUFFICIENT_CHECK_LEVEL = "insufficient_check_level"
    VALIDATION_ERROR = "validation_error"
    CONCURRENT_MODIFICATION = "concurrent_modification"
    NOT_FOUND = "not_found"


# What the caller is expected to do for each kind of failure.
CALLER_ACTIONS: dict[LifecycleErrorKind, str] = {
    LifecycleErrorKind.ILLEGAL_TRANSITION: "refresh",
    LifecycleErrorKind.INSUFFICIENT_CHECK_LEVEL: "escalate",
    LifecycleErrorKind.VALIDATION_ERROR: "fix_input",
    LifecycleErrorKind.CONCURRENT_MODIFICATION: "retry",
    LifecycleErrorKind.NOT_FOUND: "fix_input",
}


@dataclass(frozen=True)
class LifecycleError:
    """A recoverable failure reported to the caller; no mutation was applied."""
    kind: LifecycleErrorKind
    message: str

    @property
    def caller_action(self) -> str:
        return CALLER_ACTIONS[self.kind]

    @classmethod
    def illegal_transition(cls, message: str) -> "LifecycleError":
        return cls(LifecycleErrorKind.ILLEGAL_TRANSITION, message)

    @classmethod
    def insufficient_check_level(cls, message: str) -> "LifecycleError":
        return cls(LifecycleErrorKind.INSUFFICIENT_CHECK_LEVEL, message)

    @classmethod
    def validation(cls, message: str) -> "LifecycleError":
        return cls(LifecycleErrorKind.VALIDATION_ERROR, message)

    @classmethod
    def concurrent_modification(cls, message: str) -> "LifecycleError":
        return cls(LifecycleErrorKind.CONCURRENT_MODIFICATION, message)

    @classmethod
    def not_found(cls, message: str) -> "LifecycleError":
        return cls(LifecycleErrorKind.NOT_FOUND, message)


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of a lifecycle operation.

    On success ``record`` holds the new record value and ``effects`` lists the
    notifications and audit entries the caller must perform.  On failure
    ``error`` is set and ``record`` is the unchanged input (or ``None`` when
    the record could not be found).
    """
    record: Optional["CredentialRecord"]
    error: Optional[LifecycleError] = None
    effects: tuple[Any, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(
        cls,
        record: "CredentialRecord",
        effects: tuple[Any, ...] = (),
    ) -> "TransitionOutcome":
        return cls(record=record, error=None, effects=tuple(effects))

    @classmethod
    def failure(
        cls,
        error: LifecycleError,
        record: Optional["CredentialRecord"] = None,
    ) -> "TransitionOutcome":
        return cls(record=record, error=error, effects=())
