"""
Registry client.

Validates, pulls and pushes images and SOCI indices over the OCI Distribution
API. Requests go through the ORAS provider so that bearer token challenges
are handled for us.
"""

import json
import logging
from typing import Optional
from urllib.parse import urljoin

import oras.provider
import requests

from .config import config
from .errors import (
    DigestMismatchError,
    ManifestValidationError,
    PullError,
    PushError,
    RegistryError,
    RegistryInitError,
)
from .models import (
    IMAGE_CONFIG_MEDIA_TYPES,
    IMAGE_MEDIA_TYPES,
    INDEX_MEDIA_TYPES,
    MANIFEST_MEDIA_TYPES,
    OCI_MANIFEST,
    Descriptor,
    Platform,
)
from .store import CHUNK_SIZE, OciStore
from .validation import new_digester

logger = logging.getLogger(__name__)

MANIFEST_ACCEPT = ",".join(IMAGE_MEDIA_TYPES)


def _media_type(response, document: dict) -> str:
    header = response.headers.get("Content-Type", "").split(";", 1)[0].strip()
    return document.get("mediaType") or header


def _verify_digest(data: bytes, digest: str) -> None:
    hasher = new_digester(digest)
    hasher.update(data)
    actual = f"{digest.split(':', 1)[0]}:{hasher.hexdigest()}"
    if actual != digest:
        raise DigestMismatchError(f"Digest mismatch: expected {digest}, got {actual}")


class RegistryClient:
    """
    Client bound to one registry host.

    Args:
        host: Registry host, optionally with port (e.g. "registry.example.com:5000")
        platform: Only manifests for this platform have their layers pulled;
            None pulls every platform
        insecure: Use plain HTTP
        provider: Pre-built oras.provider.Registry (mainly for tests)
    """

    def __init__(self, host: str, platform: Optional[Platform] = None, insecure: bool = False, provider=None):
        self.host = host
        self.platform = platform
        self.scheme = "http" if insecure else "https"
        self.provider = provider or oras.provider.Registry(hostname=host, insecure=insecure)

    @classmethod
    def init(cls, host: str, platform: Optional[Platform] = None, settings=None) -> "RegistryClient":
        """
        Create a client for host.

        Raises:
            RegistryInitError: if the client cannot be set up
        """
        settings = settings or config
        if not host:
            raise RegistryInitError("Registry host is empty")
        try:
            client = cls(host, platform=platform, insecure=settings.REGISTRY_INSECURE)
        except (ValueError, OSError, requests.RequestException) as e:
            raise RegistryInitError(f"Cannot initialize registry client for {host}: {e}") from e
        logger.debug(f"Registry client initialized for {client.scheme}://{host}")
        return client

    # -------------------------------
    # HTTP helpers
    # -------------------------------

    def _url(self, repo: str, kind: str, ref: str = "") -> str:
        return f"{self.scheme}://{self.host}/v2/{repo}/{kind}/{ref}"

    def _request(self, method: str, url: str, expected=(200,), **kwargs):
        try:
            response = self.provider.do_request(url, method, **kwargs)
        except requests.RequestException as e:
            raise RegistryError(f"{method} {url} failed: {e}") from e
        if response.status_code not in expected:
            raise RegistryError(
                f"{method} {url} returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    def fetch_manifest(self, repo: str, ref: str):
        """
        GET a manifest or index.

        Returns:
            Tuple of (raw bytes, media type, parsed document)
        """
        response = self._request("GET", self._url(repo, "manifests", ref), headers={"Accept": MANIFEST_ACCEPT})
        body = response.content
        try:
            document = json.loads(body)
        except ValueError as e:
            raise RegistryError(f"Manifest {repo}@{ref} is not valid JSON: {e}") from e
        return body, _media_type(response, document), document

    # -------------------------------
    # Validation
    # -------------------------------

    def validate_image_manifest(self, repo: str, digest: str) -> None:
        """
        Check that digest names an image manifest or image index in repo.

        Raises:
            ManifestValidationError: if the manifest cannot be fetched, does not
                match its digest, or is not an image (e.g. a non-image artifact)
        """
        try:
            body, media_type, document = self.fetch_manifest(repo, digest)
            _verify_digest(body, digest)
        except RegistryError as e:
            raise ManifestValidationError(f"Cannot fetch manifest {repo}@{digest}: {e}") from e

        if media_type not in IMAGE_MEDIA_TYPES:
            raise ManifestValidationError(f"Unsupported manifest media type {media_type!r} for {repo}@{digest}")

        if media_type in MANIFEST_MEDIA_TYPES:
            config_type = (document.get("config") or {}).get("mediaType")
            if document.get("artifactType") or config_type not in IMAGE_CONFIG_MEDIA_TYPES:
                raise ManifestValidationError(
                    f"{repo}@{digest} is an artifact, not an image (config media type {config_type!r})"
                )

        logger.info(f"Image manifest validated: {repo}@{digest} ({media_type})")

    # -------------------------------
    # Pull
    # -------------------------------

    def pull(self, repo: str, store: OciStore, digest: str) -> Descriptor:
        """
        Copy an image into store.

        For an index, every child manifest matching the client's platform is
        pulled together with its config and layers.

        Returns:
            Descriptor of the top-level manifest or index

        Raises:
            PullError: on any registry or storage failure
        """
        logger.info(f"Pulling image {repo}@{digest}")
        try:
            descriptor = self._pull_manifest(repo, store, digest)
            store.tag(descriptor, f"{repo}@{digest}")
        except (RegistryError, OSError, KeyError, ValueError) as e:
            raise PullError(f"Failed to pull {repo}@{digest}: {e}") from e
        logger.info(f"Pulled image {repo}@{digest}")
        return descriptor

    def _pull_manifest(self, repo: str, store: OciStore, digest: str, media_type: str = None) -> Descriptor:
        body, fetched_type, document = self.fetch_manifest(repo, digest)
        store.ingest([body], digest, len(body))
        media_type = fetched_type or media_type
        descriptor = Descriptor(media_type=media_type, digest=digest, size=len(body))

        if media_type in INDEX_MEDIA_TYPES:
            for child in document.get("manifests", []):
                if self.platform is not None and not self.platform.matches(child.get("platform")):
                    continue
                self._pull_manifest(repo, store, child["digest"], child.get("mediaType"))
            return descriptor

        blobs = [document["config"]] + list(document.get("layers", []))
        for idx, blob in enumerate(blobs):
            self._pull_blob(repo, store, Descriptor.from_dict(blob))
            logger.debug(f"Blob {idx + 1}/{len(blobs)} of {digest} pulled")
        return descriptor

    def _pull_blob(self, repo: str, store: OciStore, descriptor: Descriptor) -> None:
        if store.exists(descriptor.digest):
            return
        response = self._request("GET", self._url(repo, "blobs", descriptor.digest), stream=True)
        try:
            store.ingest(response.iter_content(chunk_size=CHUNK_SIZE), descriptor.digest, descriptor.size)
        except requests.RequestException as e:
            raise RegistryError(f"Download of {descriptor.digest} failed: {e}") from e
        finally:
            response.close()

    # -------------------------------
    # Push
    # -------------------------------

    def push(self, store: OciStore, descriptor: Descriptor, repo: str) -> None:
        """
        Push a manifest and the blobs it references from store to repo.

        Raises:
            PushError: on any registry or storage failure
        """
        logger.info(f"Pushing {descriptor.digest} to {self.host}/{repo}")
        try:
            body = store.read(descriptor.digest)
            document = json.loads(body)
            blobs = [document["config"]] + list(document.get("layers", []))
            for blob in blobs:
                self._push_blob(repo, store, Descriptor.from_dict(blob))
            self._request(
                "PUT",
                self._url(repo, "manifests", descriptor.digest),
                expected=(200, 201, 202),
                data=body,
                headers={"Content-Type": descriptor.media_type or OCI_MANIFEST},
            )
        except (RegistryError, OSError, ValueError, KeyError) as e:
            raise PushError(f"Failed to push {descriptor.digest} to {repo}: {e}") from e
        logger.info(f"Pushed {descriptor.digest} to {self.host}/{repo}")

    def _push_blob(self, repo: str, store: OciStore, descriptor: Descriptor) -> None:
        exists = self._request("HEAD", self._url(repo, "blobs", descriptor.digest), expected=(200, 404))
        if exists.status_code == 200:
            logger.debug(f"Blob {descriptor.digest} already in {repo}")
            return

        started = self._request("POST", self._url(repo, "blobs", "uploads/"), expected=(202,))
        location = started.headers.get("Location")
        if not location:
            raise RegistryError(f"Upload for {descriptor.digest} returned no Location header")
        location = urljoin(f"{self.scheme}://{self.host}/", location)
        separator = "&" if "?" in location else "?"
        self._request(
            "PUT",
            f"{location}{separator}digest={descriptor.digest}",
            expected=(201,),
            data=store.read(descriptor.digest),
            headers={"Content-Type": "application/octet-stream"},
        )
        logger.debug(f"Blob {descriptor.digest} uploaded to {repo}")


