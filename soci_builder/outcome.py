"""
Invocation outcomes.

Exactly one Outcome is produced per invocation. Only failures carry an error;
the two skip outcomes report success so that a retrying caller does not retry
conditions that can never succeed.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import ERRORS_BY_KIND, FailureKind

BUILD_AND_PUSH_SUCCESS_MESSAGE = "Successfully built and pushed SOCI index"
MANIFEST_VALIDATION_SKIP_MESSAGE = "Exited early due to manifest validation error"
EMPTY_INDEX_SKIP_MESSAGE = "Skipping pushing SOCI index as it does not contain any zTOCs"


class OutcomeKind(Enum):
    SUCCESS = "success"
    SKIPPED_VALIDATION = "skipped_validation"
    SKIPPED_EMPTY_INDEX = "skipped_empty_index"
    FAILED = "failed"


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    message: str
    failure: Optional[FailureKind] = None
    error: Optional[BaseException] = None

    @classmethod
    def success(cls) -> "Outcome":
        return cls(OutcomeKind.SUCCESS, BUILD_AND_PUSH_SUCCESS_MESSAGE)

    @classmethod
    def skipped_validation(cls) -> "Outcome":
        return cls(OutcomeKind.SKIPPED_VALIDATION, MANIFEST_VALIDATION_SKIP_MESSAGE)

    @classmethod
    def skipped_empty_index(cls) -> "Outcome":
        return cls(OutcomeKind.SKIPPED_EMPTY_INDEX, EMPTY_INDEX_SKIP_MESSAGE)

    @classmethod
    def failed(cls, kind: FailureKind, cause: BaseException) -> "Outcome":
        """
        Build a failure outcome labelled by kind.

        A cause that is not already the error type for this kind is wrapped in
        it, keeping the original as __cause__.
        """
        error_class = ERRORS_BY_KIND[kind]
        if isinstance(cause, error_class):
            error = cause
        else:
            error = error_class(f"{kind.label}: {cause}")
            error.__cause__ = cause
        return cls(OutcomeKind.FAILED, kind.label, failure=kind, error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_result(self) -> tuple:
        """Return the (message, error) pair handed back to the caller."""
        return self.message, self.error

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "outcome": self.kind.value,
            "error": str(self.error) if self.error is not None else None,
        }
