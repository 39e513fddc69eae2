import json
import os
from datetime import datetime, timedelta, timezone

import pytest

from soci_builder.artifacts_db import ArtifactsDb
from soci_builder.errors import DigestMismatchError, StoreInitError
from soci_builder.models import EMPTY_JSON_DIGEST, OCI_EMPTY, OCI_MANIFEST, Descriptor
from soci_builder.store import ArtifactStores, ContentStore, OciStore
from soci_builder.validation import compute_sha256
from soci_builder.workspace import Workspace


def test_ingest_verifies_digest(tmp_path):
    store = ContentStore(str(tmp_path / "store"))
    digest = compute_sha256(b"hello")

    with pytest.raises(DigestMismatchError):
        store.ingest([b"goodbye"], digest)

    assert not store.exists(digest)
    store.ingest([b"hel", b"lo"], digest, 5)
    assert store.read(digest) == b"hello"
    assert store.blob_path(digest).endswith(os.path.join("blobs", "sha256", digest.split(":")[1]))


def test_ingest_verifies_size(tmp_path):
    store = ContentStore(str(tmp_path / "store"))

    with pytest.raises(DigestMismatchError):
        store.ingest([b"hello"], compute_sha256(b"hello"), 6)


def test_write_returns_descriptor(tmp_path):
    store = ContentStore(str(tmp_path / "store"))

    descriptor = store.write(b"{}", OCI_EMPTY)

    assert descriptor.digest == EMPTY_JSON_DIGEST
    assert descriptor.size == 2
    assert store.read_json(EMPTY_JSON_DIGEST) == {}


def test_store_does_not_recreate_removed_workspace(tmp_path):
    root = tmp_path / "workspace"
    root.mkdir()
    store = ContentStore(str(root / "store"))
    os.rename(str(root), str(tmp_path / "gone"))

    with pytest.raises(OSError):
        store.ingest([b"hello"], compute_sha256(b"hello"))
    with pytest.raises(FileNotFoundError):
        ContentStore(str(root / "store"))
    assert not root.exists()


def test_oci_layout_and_tags(tmp_path):
    store = OciStore(str(tmp_path / "store"))
    first = store.write(b'{"a": 1}', OCI_MANIFEST)
    second = store.write(b'{"a": 2}', OCI_MANIFEST)

    store.tag(first, "latest")
    store.tag(second, "latest")

    with open(tmp_path / "store" / "oci-layout") as f:
        assert json.load(f) == {"imageLayoutVersion": "1.0.0"}
    assert store.resolve("latest").digest == second.digest
    assert [m.digest for m in store.manifests()] == [second.digest]
    with pytest.raises(KeyError):
        store.resolve("missing")


def test_artifact_stores_open_db_lazily(tmp_path):
    root = tmp_path / "workspace"
    root.mkdir()
    stores = ArtifactStores(Workspace(str(root)))

    assert not os.path.exists(stores.workspace.metadata_db_path)
    assert stores.db is stores.db
    assert os.path.exists(stores.workspace.metadata_db_path)
    stores.close()


def test_artifact_stores_init_error(tmp_path):
    with pytest.raises(StoreInitError):
        ArtifactStores(Workspace(str(tmp_path / "missing")))


def test_index_entries_filter_by_image_and_platform(tmp_path):
    db = ArtifactsDb(str(tmp_path / "artifacts.db"))
    created = datetime(2024, 1, 1, tzinfo=timezone.utc)
    first = Descriptor(OCI_MANIFEST, "sha256:" + "1" * 64, 10)
    second = Descriptor(OCI_MANIFEST, "sha256:" + "2" * 64, 20)
    other = Descriptor(OCI_MANIFEST, "sha256:" + "3" * 64, 30)
    image = "sha256:" + "f" * 64

    db.record_index(first, image, "linux/amd64", created)
    db.record_index(second, image, "linux/amd64", created + timedelta(seconds=1))
    db.record_index(other, image, "linux/arm64", created)

    entries = db.index_entries(image, "linux/amd64")
    assert [e["digest"] for e in entries] == [first.digest, second.digest]
    assert entries[1]["created_at"] == created + timedelta(seconds=1)
    assert db.index_entries("sha256:" + "e" * 64, "linux/amd64") == []
    db.close()
