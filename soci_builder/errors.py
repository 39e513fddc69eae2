"""
Error taxonomy for the SOCI index builder.

Every failure an invocation can report maps onto a FailureKind whose value is
the human-readable label returned to the caller.
"""

from enum import Enum


class FailureKind(Enum):
    MALFORMED_REFERENCE = "Malformed image reference"
    REGISTRY_INIT = "Registry initialization error"
    DIRECTORY = "Directory create error"
    STORE_INIT = "OCI storage initialization error"
    PULL = "Image pull error"
    BUILD = "SOCI index build error"
    PUSH = "SOCI index push error"

    @property
    def label(self) -> str:
        return self.value


class SociBuilderError(Exception):
    """Base class for all errors raised by this package."""

    kind = None


class MalformedReferenceError(SociBuilderError, ValueError):
    kind = FailureKind.MALFORMED_REFERENCE


class ManifestValidationError(SociBuilderError):
    """The referenced digest is not an image manifest or image index."""


class RegistryError(SociBuilderError):
    """Unexpected response from a registry."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class DigestMismatchError(RegistryError):
    pass


class RegistryInitError(SociBuilderError):
    kind = FailureKind.REGISTRY_INIT


class DirectoryError(SociBuilderError):
    kind = FailureKind.DIRECTORY


class StoreInitError(SociBuilderError):
    kind = FailureKind.STORE_INIT


class PullError(SociBuilderError):
    kind = FailureKind.PULL


class BuildError(SociBuilderError):
    kind = FailureKind.BUILD


class EmptyIndexError(BuildError):
    """No ztocs created, all layers either skipped or produced errors."""

    def __init__(self, message: str = "no ztocs created, all layers either skipped or produced errors"):
        super().__init__(message)


class ZtocError(BuildError):
    """A single layer could not be indexed."""


class IndexNotFoundError(BuildError):
    def __init__(self, message: str = "No SOCI indices found in OCI store"):
        super().__init__(message)


class PushError(SociBuilderError):
    kind = FailureKind.PUSH


ERRORS_BY_KIND = {
    FailureKind.MALFORMED_REFERENCE: MalformedReferenceError,
    FailureKind.REGISTRY_INIT: RegistryInitError,
    FailureKind.DIRECTORY: DirectoryError,
    FailureKind.STORE_INIT: StoreInitError,
    FailureKind.PULL: PullError,
    FailureKind.BUILD: BuildError,
    FailureKind.PUSH: PushError,
}


def is_empty_index(error: BaseException) -> bool:
    """
    Check whether an error, or anything it wraps, is an EmptyIndexError.

    Walks the explicit __cause__ chain (raise ... from ...) so that wrapping
    the builder's error does not hide the condition. An error merely raised
    while an EmptyIndexError was being handled is not an empty index.
    """
    seen = set()
    while error is not None and id(error) not in seen:
        if isinstance(error, EmptyIndexError):
            return True
        seen.add(id(error))
        error = error.__cause__
    return False
