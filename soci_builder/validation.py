"""
Input validation module for the SOCI index builder.

Provides digest helpers, validation functions and image reference parsing.
"""

import hashlib
import logging
import re

from .errors import MalformedReferenceError
from .models import ImageReference

logger = logging.getLogger(__name__)

_HOST_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_HOST = rf"{_HOST_COMPONENT}(?:\.{_HOST_COMPONENT})*(?::[0-9]+)?"
_PATH_COMPONENT = r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*"
_REPOSITORY = rf"{_PATH_COMPONENT}(?:/{_PATH_COMPONENT})*"
_TAG = r"[a-zA-Z0-9_][a-zA-Z0-9._-]{0,127}"
_DIGEST = r"[a-z0-9]+(?:[+._-][a-z0-9]+)*:[a-zA-Z0-9=_-]+"

# host, repository and digest are independent productions: a port in the host
# or a tag next to the digest cannot shift the other boundaries
REFERENCE_PATTERN = re.compile(
    rf"^(?P<host>{_HOST})/(?P<repository>{_REPOSITORY})"
    rf"(?:(?::(?P<tag>{_TAG}))?@|:)(?P<digest>{_DIGEST})$"
)

DIGEST_PATTERNS = {
    "sha256": re.compile(r"^sha256:[a-f0-9]{64}$"),
    "sha512": re.compile(r"^sha512:[a-f0-9]{128}$"),
}


def compute_sha256(data: bytes) -> str:
    """
    Compute SHA256 digest in OCI/Docker format.

    Args:
        data: Bytes to hash

    Returns:
        String in format "sha256:<64 hex chars>"

    Example:
        >>> compute_sha256(b"hello")
        'sha256:2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824'
    """
    h = hashlib.sha256()
    h.update(data)
    return "sha256:" + h.hexdigest()


def new_digester(digest: str):
    """Return a fresh hashlib object for the algorithm named by an OCI digest."""
    algorithm = digest.split(":", 1)[0]
    if algorithm not in DIGEST_PATTERNS:
        raise ValueError(f"Unsupported digest algorithm: {algorithm}")
    return hashlib.new(algorithm)


def validate_digest(digest: str) -> None:
    """
    Validate a digest per the OCI image specification.

    Raises:
        MalformedReferenceError: if the digest is not a supported algorithm
            followed by the right number of lowercase hex characters

    Format:
        sha256:<64 lowercase hex characters>
        sha512:<128 lowercase hex characters>
    """
    algorithm = digest.split(":", 1)[0]
    pattern = DIGEST_PATTERNS.get(algorithm)
    if pattern is None or not pattern.match(digest):
        logger.warning(f"Invalid digest format: {digest}")
        raise MalformedReferenceError(f"Invalid digest '{digest}': must be sha256:<64 hex> or sha512:<128 hex>")

    logger.debug(f"Digest validated: {digest}")


def parse_image_reference(image_uri: str) -> ImageReference:
    """
    Parse an image URI into registry host, repository and digest.

    Accepts "host[:port]/repository@<digest>", "host[:port]/repository:tag@<digest>"
    and the digest-after-colon form "host/repository:<digest>".

    Args:
        image_uri: Image URI, the digest includes its algorithm prefix

    Returns:
        ImageReference with the tag (if any) discarded

    Raises:
        MalformedReferenceError: if there is no registry host, no digest, or
            only a tag is given

    Examples:
        >>> parse_image_reference("registry.example.com:5000/team/app@sha256:" + "a" * 64)
        ImageReference(registry_host='registry.example.com:5000', repository='team/app', digest='sha256:aaa...')
    """
    uri = (image_uri or "").strip()
    if "/" not in uri:
        logger.warning(f"Image reference has no registry host: {uri!r}")
        raise MalformedReferenceError(f"Invalid image reference '{uri}': expected host/repository@digest")
    if ":" not in uri.split("/", 1)[1]:
        logger.warning(f"Image reference has no digest: {uri!r}")
        raise MalformedReferenceError(f"Invalid image reference '{uri}': missing digest")

    match = REFERENCE_PATTERN.match(uri)
    if not match:
        logger.warning(f"Image reference does not pin a digest: {uri!r}")
        raise MalformedReferenceError(
            f"Invalid image reference '{uri}': expected host/repository@<algorithm>:<hex>, tags are not supported"
        )

    validate_digest(match.group("digest"))
    reference = ImageReference(
        registry_host=match.group("host"),
        repository=match.group("repository"),
        digest=match.group("digest"),
    )
    logger.debug(f"Parsed image reference: {reference}")
    return reference
