"""
Data model shared across the builder: image references, OCI descriptors and platforms.
"""

import platform as _host
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

# OCI media types
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
OCI_IMAGE_CONFIG = "application/vnd.oci.image.config.v1+json"
OCI_EMPTY = "application/vnd.oci.empty.v1+json"
OCI_LAYER_TAR = "application/vnd.oci.image.layer.v1.tar"
OCI_LAYER_GZIP = "application/vnd.oci.image.layer.v1.tar+gzip"
OCI_LAYER_ZSTD = "application/vnd.oci.image.layer.v1.tar+zstd"

# Docker media types
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
DOCKER_IMAGE_CONFIG = "application/vnd.docker.container.image.v1+json"
DOCKER_LAYER_GZIP = "application/vnd.docker.image.rootfs.diff.tar.gzip"

# SOCI media types and annotations
SOCI_INDEX_ARTIFACT_TYPE = "application/vnd.amazon.soci.index.v1+json"
SOCI_ZTOC_MEDIA_TYPE = "application/octet-stream"
SOCI_LAYER_DIGEST_ANNOTATION = "com.amazon.soci.image-layer-digest"
SOCI_LAYER_MEDIATYPE_ANNOTATION = "com.amazon.soci.image-layer-mediatype"
SOCI_BUILD_TOOL_ANNOTATION = "com.amazon.soci.build-tool-identifier"
OCI_CREATED_ANNOTATION = "org.opencontainers.image.created"
OCI_REF_NAME_ANNOTATION = "org.opencontainers.image.ref.name"

MANIFEST_MEDIA_TYPES = (OCI_MANIFEST, DOCKER_MANIFEST)
INDEX_MEDIA_TYPES = (OCI_INDEX, DOCKER_MANIFEST_LIST)
IMAGE_MEDIA_TYPES = MANIFEST_MEDIA_TYPES + INDEX_MEDIA_TYPES
IMAGE_CONFIG_MEDIA_TYPES = (OCI_IMAGE_CONFIG, DOCKER_IMAGE_CONFIG)

# sha256 of "{}"
EMPTY_JSON_DIGEST = "sha256:44136fa355b3678a1146ad16f7e8649e94fb4fc21fe77e8310c060f61caaff8a"


@dataclass(frozen=True)
class ImageReference:
    """A registry host, repository path and content digest parsed from an image URI."""

    registry_host: str
    repository: str
    digest: str

    @property
    def name(self) -> str:
        return f"{self.repository}@{self.digest}"

    def __str__(self):
        return f"{self.registry_host}/{self.name}"


_ARCH_ALIASES = {
    "x86_64": ("amd64", None),
    "amd64": ("amd64", None),
    "aarch64": ("arm64", None),
    "arm64": ("arm64", None),
    "armv7l": ("arm", "v7"),
    "armv6l": ("arm", "v6"),
    "i386": ("386", None),
    "i686": ("386", None),
    "ppc64le": ("ppc64le", None),
    "s390x": ("s390x", None),
}


@dataclass(frozen=True)
class Platform:
    os: str
    architecture: str
    variant: Optional[str] = None

    @classmethod
    def parse(cls, spec: str) -> "Platform":
        """Parse os/arch[/variant], e.g. "linux/arm64/v8"."""
        parts = spec.strip().lower().split("/")
        if len(parts) not in (2, 3) or not all(parts):
            raise ValueError(f"Invalid platform '{spec}': expected os/arch[/variant]")
        return cls(parts[0], parts[1], parts[2] if len(parts) == 3 else None)

    @classmethod
    def default(cls) -> "Platform":
        """The platform of the running host, linux/amd64 if unrecognised."""
        machine = _host.machine().lower()
        arch, variant = _ARCH_ALIASES.get(machine, ("amd64", None))
        return cls("linux", arch, variant)

    def matches(self, other: dict) -> bool:
        """Match against an OCI platform object; a missing variant matches any variant."""
        if not other:
            return False
        if other.get("os") != self.os or other.get("architecture") != self.architecture:
            return False
        if self.variant and other.get("variant") and other["variant"] != self.variant:
            return False
        return True

    def to_dict(self) -> dict:
        data = {"architecture": self.architecture, "os": self.os}
        if self.variant:
            data["variant"] = self.variant
        return data

    def __str__(self):
        return "/".join(p for p in (self.os, self.architecture, self.variant) if p)


@dataclass(frozen=True)
class Descriptor:
    """An OCI content descriptor."""

    media_type: str
    digest: str
    size: int
    annotations: dict = field(default_factory=dict, compare=False, hash=False)
    artifact_type: Optional[str] = None
    platform: Optional[dict] = field(default=None, compare=False, hash=False)

    @classmethod
    def from_dict(cls, data: dict) -> "Descriptor":
        return cls(
            media_type=data["mediaType"],
            digest=data["digest"],
            size=int(data["size"]),
            annotations=dict(data.get("annotations") or {}),
            artifact_type=data.get("artifactType"),
            platform=data.get("platform"),
        )

    def to_dict(self) -> dict:
        data = {"mediaType": self.media_type, "digest": self.digest, "size": self.size}
        if self.artifact_type:
            data["artifactType"] = self.artifact_type
        if self.annotations:
            data["annotations"] = dict(self.annotations)
        if self.platform:
            data["platform"] = dict(self.platform)
        return data


@dataclass(frozen=True)
class DescriptorInfo:
    descriptor: Descriptor
    created_at: datetime


@dataclass(frozen=True)
class Image:
    """A named image and the descriptor of its top-level manifest or index."""

    name: str
    target: Descriptor
