import gzip
import io
import json
import os
import tarfile

import pytest

from soci_builder.config import Config
from soci_builder.errors import ManifestValidationError, PushError
from soci_builder.models import (
    IMAGE_MEDIA_TYPES,
    INDEX_MEDIA_TYPES,
    OCI_IMAGE_CONFIG,
    OCI_INDEX,
    OCI_LAYER_GZIP,
    OCI_MANIFEST,
    Descriptor,
)
from soci_builder.validation import compute_sha256

REGISTRY = "registry.example.com"
REPOSITORY = "team/app"


def make_layer(files: dict) -> bytes:
    """A gzip compressed tar layer holding files (name -> bytes)."""
    raw = io.BytesIO()
    with tarfile.open(fileobj=raw, mode="w") as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mtime = 1700000000
            tar.addfile(info, io.BytesIO(data))
    return gzip.compress(raw.getvalue(), mtime=0)


def add_blob(blobs: dict, data: bytes, media_type: str, **extra) -> dict:
    digest = compute_sha256(data)
    blobs[digest] = data
    return {"mediaType": media_type, "digest": digest, "size": len(data), **extra}


def make_manifest(blobs: dict, layers: list, config_type: str = OCI_IMAGE_CONFIG, arch: str = "amd64") -> dict:
    config = add_blob(blobs, json.dumps({"architecture": arch, "os": "linux"}).encode(), config_type)
    manifest = {
        "schemaVersion": 2,
        "mediaType": OCI_MANIFEST,
        "config": config,
        "layers": [add_blob(blobs, layer, OCI_LAYER_GZIP) for layer in layers],
    }
    return add_blob(blobs, json.dumps(manifest).encode(), OCI_MANIFEST)


def make_index(blobs: dict, manifests: dict) -> dict:
    """An image index over manifests ({"linux/amd64": descriptor, ...})."""
    entries = []
    for platform, descriptor in manifests.items():
        os_name, arch = platform.split("/")
        entries.append({**descriptor, "platform": {"os": os_name, "architecture": arch}})
    index = {"schemaVersion": 2, "mediaType": OCI_INDEX, "manifests": entries}
    return add_blob(blobs, json.dumps(index).encode(), OCI_INDEX)


class FakeRegistry:
    """In-memory stand-in for RegistryClient."""

    def __init__(self, blobs: dict, fail_push: bool = False):
        self.blobs = blobs
        self.fail_push = fail_push
        self.validated = []
        self.pulled = []
        self.pushed = []

    def validate_image_manifest(self, repo, digest):
        self.validated.append((repo, digest))
        if digest not in self.blobs:
            raise ManifestValidationError(f"{repo}@{digest} not found")
        media_type = json.loads(self.blobs[digest]).get("mediaType")
        if media_type not in IMAGE_MEDIA_TYPES:
            raise ManifestValidationError(f"{repo}@{digest} is a {media_type}")

    def _copy(self, store, digest):
        body = self.blobs[digest]
        store.ingest([body], digest, len(body))
        document = json.loads(body)
        if document["mediaType"] in INDEX_MEDIA_TYPES:
            for child in document["manifests"]:
                self._copy(store, child["digest"])
        else:
            for blob in [document["config"]] + document["layers"]:
                store.ingest([self.blobs[blob["digest"]]], blob["digest"], blob["size"])
        return Descriptor(document["mediaType"], digest, len(body))

    def pull(self, repo, store, digest):
        self.pulled.append((repo, digest))
        return self._copy(store, digest)

    def push(self, store, descriptor, repo):
        if self.fail_push:
            raise PushError("registry said no")
        self.pushed.append((repo, descriptor, json.loads(store.read(descriptor.digest))))


@pytest.fixture
def settings(tmp_path, monkeypatch):
    root = tmp_path / "workspaces"
    root.mkdir()
    monkeypatch.setenv("WORKSPACE_ROOT", str(root))
    monkeypatch.setenv("PLATFORM", "linux/amd64")
    monkeypatch.setenv("MIN_FREE_SPACE_WARNING_BYTES", "0")
    monkeypatch.setenv("DEADLINE_SAFETY_MARGIN", "10")
    return Config()


@pytest.fixture
def workspace_root(settings):
    return settings.WORKSPACE_ROOT


@pytest.fixture
def blobs():
    return {}


@pytest.fixture
def fake_registry(blobs):
    return FakeRegistry(blobs)


@pytest.fixture
def registry_factory(fake_registry):
    def factory(host, platform=None, settings=None):
        return fake_registry

    return factory


def leftover_workspaces(root) -> list:
    return os.listdir(root)
