"""
On-disk artifact stores rooted under an invocation workspace.

ContentStore is a plain content-addressable blob store; OciStore adds the OCI
image layout files (oci-layout, index.json) on top of the same directory.
ArtifactStores groups both with the artifacts database for one workspace.
"""

import json
import logging
import os
import tempfile
from typing import Iterable, Optional

from .artifacts_db import ArtifactsDb
from .errors import DigestMismatchError, StoreInitError
from .models import OCI_REF_NAME_ANNOTATION, Descriptor
from .validation import compute_sha256, new_digester, validate_digest
from .workspace import Workspace

logger = logging.getLogger(__name__)

OCI_LAYOUT_FILE = "oci-layout"
OCI_INDEX_FILE = "index.json"
OCI_LAYOUT_VERSION = "1.0.0"
CHUNK_SIZE = 1024 * 1024


class ContentStore:
    """Blobs stored at <root>/blobs/<algorithm>/<hex>, verified on ingest."""

    def __init__(self, root: str):
        self.root = root
        parent = os.path.dirname(os.path.abspath(root))
        if not os.path.isdir(parent):
            raise FileNotFoundError(f"Store parent directory does not exist: {parent}")
        os.makedirs(os.path.join(self.root, "blobs", "sha256"), exist_ok=True)

    def blob_path(self, digest: str) -> str:
        validate_digest(digest)
        algorithm, encoded = digest.split(":", 1)
        return os.path.join(self.root, "blobs", algorithm, encoded)

    def exists(self, digest: str) -> bool:
        return os.path.isfile(self.blob_path(digest))

    def size(self, digest: str) -> int:
        return os.path.getsize(self.blob_path(digest))

    def read(self, digest: str) -> bytes:
        with open(self.blob_path(digest), "rb") as f:
            return f.read()

    def read_json(self, digest: str) -> dict:
        return json.loads(self.read(digest))

    def open(self, digest: str):
        return open(self.blob_path(digest), "rb")

    def ingest(self, chunks: Iterable[bytes], digest: str, size: Optional[int] = None) -> int:
        """
        Stream chunks into the store under digest.

        The data is hashed while written to a temporary file and only moved
        into place when digest (and size, if given) match.

        Returns:
            Number of bytes written

        Raises:
            DigestMismatchError: if the content does not hash to digest or has the wrong size
        """
        target = self.blob_path(digest)
        if os.path.isfile(target):
            return os.path.getsize(target)

        # not makedirs: a reclaimed workspace must stay gone
        blob_dir = os.path.dirname(target)
        if not os.path.isdir(blob_dir):
            os.mkdir(blob_dir)
        hasher = new_digester(digest)
        written = 0
        fd, tmp_path = tempfile.mkstemp(prefix=".ingest-", dir=os.path.dirname(target))
        try:
            with os.fdopen(fd, "wb") as f:
                for chunk in chunks:
                    if not chunk:
                        continue
                    f.write(chunk)
                    hasher.update(chunk)
                    written += len(chunk)

            actual = f"{digest.split(':', 1)[0]}:{hasher.hexdigest()}"
            if actual != digest:
                raise DigestMismatchError(f"Digest mismatch: expected {digest}, got {actual}")
            if size is not None and written != size:
                raise DigestMismatchError(f"Size mismatch for {digest}: expected {size}, got {written}")
            os.replace(tmp_path, target)
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)

        logger.debug(f"Stored blob {digest} ({written} bytes)")
        return written

    def write(self, data: bytes, media_type: str, **kwargs) -> Descriptor:
        """Store bytes and return their descriptor."""
        digest = compute_sha256(data)
        self.ingest([data], digest, len(data))
        return Descriptor(media_type=media_type, digest=digest, size=len(data), **kwargs)

    def iter_chunks(self, digest: str, chunk_size: int = CHUNK_SIZE):
        with self.open(digest) as f:
            while True:
                chunk = f.read(chunk_size)
                if not chunk:
                    break
                yield chunk


class OciStore(ContentStore):
    """A ContentStore laid out as an OCI image layout with a tag index."""

    def __init__(self, root: str):
        super().__init__(root)
        layout_path = os.path.join(self.root, OCI_LAYOUT_FILE)
        if not os.path.exists(layout_path):
            with open(layout_path, "w") as f:
                json.dump({"imageLayoutVersion": OCI_LAYOUT_VERSION}, f)
        if not os.path.exists(self._index_path):
            self._write_index({"schemaVersion": 2, "manifests": []})

    @property
    def _index_path(self) -> str:
        return os.path.join(self.root, OCI_INDEX_FILE)

    def _read_index(self) -> dict:
        with open(self._index_path) as f:
            return json.load(f)

    def _write_index(self, index: dict) -> None:
        tmp_path = self._index_path + ".tmp"
        with open(tmp_path, "w") as f:
            json.dump(index, f)
        os.replace(tmp_path, self._index_path)

    def manifests(self) -> list:
        return [Descriptor.from_dict(m) for m in self._read_index().get("manifests", [])]

    def tag(self, descriptor: Descriptor, reference: str) -> None:
        """Point reference at descriptor in index.json, replacing any previous target."""
        if not self.exists(descriptor.digest):
            raise FileNotFoundError(f"Cannot tag missing blob {descriptor.digest}")
        index = self._read_index()
        manifests = [
            m for m in index.get("manifests", [])
            if (m.get("annotations") or {}).get(OCI_REF_NAME_ANNOTATION) != reference
        ]
        entry = descriptor.to_dict()
        entry.setdefault("annotations", {})[OCI_REF_NAME_ANNOTATION] = reference
        manifests.append(entry)
        index["manifests"] = manifests
        self._write_index(index)
        logger.debug(f"Tagged {descriptor.digest} as {reference}")

    def resolve(self, reference: str) -> Descriptor:
        for descriptor in self.manifests():
            if descriptor.annotations.get(OCI_REF_NAME_ANNOTATION) == reference:
                return descriptor
            if descriptor.digest == reference:
                return descriptor
        raise KeyError(f"Reference not found in OCI store: {reference}")


class ArtifactStores:
    """
    The content store, OCI store and artifacts database of one workspace.

    Both stores share the workspace's store/ directory. The database is
    opened on first use.
    """

    def __init__(self, workspace: Workspace):
        self.workspace = workspace
        try:
            self.oci_store = OciStore(workspace.blob_store_path)
            self.content_store = ContentStore(workspace.blob_store_path)
        except OSError as e:
            raise StoreInitError(f"Cannot initialize OCI store at {workspace.blob_store_path}: {e}") from e
        self._db: Optional[ArtifactsDb] = None

    @property
    def db(self) -> ArtifactsDb:
        if self._db is None:
            self._db = ArtifactsDb(self.workspace.metadata_db_path)
        return self._db

    def close(self) -> None:
        if self._db is not None:
            self._db.close()
            self._db = None
