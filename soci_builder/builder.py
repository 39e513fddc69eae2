"""
SOCI index builder.

Builds a SOCI index for an image already pulled into the workspace stores:
one ztoc per sufficiently large layer, bundled into an OCI manifest whose
subject is the image manifest.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .artifacts_db import ArtifactsDb
from .config import config
from .deadline import utcnow
from .errors import BuildError, EmptyIndexError, IndexNotFoundError, ZtocError
from .models import (
    INDEX_MEDIA_TYPES,
    MANIFEST_MEDIA_TYPES,
    OCI_CREATED_ANNOTATION,
    OCI_EMPTY,
    OCI_MANIFEST,
    SOCI_BUILD_TOOL_ANNOTATION,
    SOCI_INDEX_ARTIFACT_TYPE,
    SOCI_LAYER_DIGEST_ANNOTATION,
    SOCI_LAYER_MEDIATYPE_ANNOTATION,
    SOCI_ZTOC_MEDIA_TYPE,
    Descriptor,
    DescriptorInfo,
    Image,
    Platform,
)
from .store import ArtifactStores, ContentStore, OciStore
from .ztoc import build_ztoc

logger = logging.getLogger(__name__)


@dataclass
class SociIndex:
    manifest: Descriptor
    platform: Platform
    ztocs: List[Descriptor]
    build_tool: str
    annotations: dict = field(default_factory=dict)


def resolve_manifest(content_store: ContentStore, image: Image, platform: Platform):
    """
    Find the image manifest for platform, descending through an image index.

    Returns:
        Tuple of (manifest descriptor, parsed manifest)

    Raises:
        BuildError: if the target is neither a manifest nor an index, or the
            index has no manifest for platform
    """
    target = image.target
    document = content_store.read_json(target.digest)
    media_type = document.get("mediaType") or target.media_type

    if media_type in INDEX_MEDIA_TYPES:
        for child in document.get("manifests", []):
            if platform.matches(child.get("platform")):
                descriptor = Descriptor.from_dict(child)
                return descriptor, content_store.read_json(descriptor.digest)
        raise BuildError(f"Image {image.name} has no manifest for platform {platform}")

    if media_type in MANIFEST_MEDIA_TYPES:
        return target, document

    raise BuildError(f"Unsupported media type for {image.name}: {media_type}")


class IndexBuilder:
    def __init__(self, content_store: ContentStore, oci_store: OciStore, artifacts_db: ArtifactsDb,
                 platform: Optional[Platform] = None, min_layer_size: int = None, build_tool: str = None):
        self.content_store = content_store
        self.oci_store = oci_store
        self.artifacts_db = artifacts_db
        self.platform = platform or Platform.default()
        self.min_layer_size = config.DEFAULT_MIN_LAYER_SIZE if min_layer_size is None else min_layer_size
        self.build_tool = build_tool or config.BUILD_TOOL_IDENTIFIER

    def build(self, image: Image) -> SociIndex:
        """
        Create ztocs for every layer of image that is at least min_layer_size bytes.

        Layers that cannot be indexed are logged and skipped.

        Raises:
            EmptyIndexError: if no layer produced a ztoc
            BuildError: if the image manifest cannot be resolved
        """
        manifest_descriptor, manifest = resolve_manifest(self.content_store, image, self.platform)
        layers = [Descriptor.from_dict(layer) for layer in manifest.get("layers", [])]
        logger.info(f"Building SOCI index for {image.name} ({self.platform}): {len(layers)} layers")

        ztocs = []
        for idx, layer in enumerate(layers, 1):
            if layer.size < self.min_layer_size:
                logger.debug(
                    f"Layer {idx}/{len(layers)} {layer.digest} skipped: "
                    f"{layer.size} bytes < min layer size {self.min_layer_size}"
                )
                continue
            try:
                ztocs.append(self._layer_ztoc(layer))
            except ZtocError as e:
                logger.warning(f"Layer {idx}/{len(layers)} {layer.digest} skipped: {e}")
                continue
            logger.debug(f"Layer {idx}/{len(layers)} {layer.digest} indexed")

        if not ztocs:
            raise EmptyIndexError()

        logger.info(f"Built {len(ztocs)} ztocs for {image.name}")
        return SociIndex(manifest=manifest_descriptor, platform=self.platform, ztocs=ztocs,
                         build_tool=self.build_tool)

    def _layer_ztoc(self, layer: Descriptor) -> Descriptor:
        annotations = {
            SOCI_LAYER_DIGEST_ANNOTATION: layer.digest,
            SOCI_LAYER_MEDIATYPE_ANNOTATION: layer.media_type,
        }
        if not self.content_store.exists(layer.digest):
            raise ZtocError(f"Layer {layer.digest} is missing from the content store")

        existing = self.artifacts_db.ztoc_for_layer(layer.digest)
        if existing and self.oci_store.exists(existing):
            logger.debug(f"Reusing ztoc {existing} for layer {layer.digest}")
            return Descriptor(SOCI_ZTOC_MEDIA_TYPE, existing, self.oci_store.size(existing), annotations)

        with self.content_store.open(layer.digest) as f:
            data = build_ztoc(f, layer, self.build_tool)
        return self.oci_store.write(data, SOCI_ZTOC_MEDIA_TYPE, annotations=annotations)


def write_index(index: SociIndex, store: OciStore, db: ArtifactsDb, created_at: datetime = None) -> Descriptor:
    """
    Write the index manifest into the OCI store and record it in the artifacts database.

    Returns:
        Descriptor of the index manifest
    """
    created_at = created_at or utcnow()
    empty_config = store.write(b"{}", OCI_EMPTY)

    subject = Descriptor(index.manifest.media_type, index.manifest.digest, index.manifest.size)
    annotations = {
        SOCI_BUILD_TOOL_ANNOTATION: index.build_tool,
        OCI_CREATED_ANNOTATION: created_at.isoformat(),
        **index.annotations,
    }
    manifest = {
        "schemaVersion": 2,
        "mediaType": OCI_MANIFEST,
        "artifactType": SOCI_INDEX_ARTIFACT_TYPE,
        "config": empty_config.to_dict(),
        "layers": [ztoc.to_dict() for ztoc in index.ztocs],
        "subject": subject.to_dict(),
        "annotations": annotations,
    }
    manifest_bytes = json.dumps(manifest).encode("utf-8")
    descriptor = store.write(manifest_bytes, OCI_MANIFEST, artifact_type=SOCI_INDEX_ARTIFACT_TYPE)
    store.tag(descriptor, f"soci-index-{index.manifest.digest.split(':', 1)[1][:12]}-{index.platform.architecture}")

    for ztoc in index.ztocs:
        db.record_ztoc(ztoc, ztoc.annotations[SOCI_LAYER_DIGEST_ANNOTATION], created_at)
    db.record_index(descriptor, index.manifest.digest, str(index.platform), created_at)

    logger.info(f"Wrote SOCI index {descriptor.digest} ({descriptor.size} bytes)")
    return descriptor


def get_index_descriptors(store: ContentStore, db: ArtifactsDb, image: Image,
                          platforms: List[Platform]) -> List[DescriptorInfo]:
    """
    List the SOCI indices recorded for image on each of platforms.

    Entries whose manifest is no longer in the store are ignored.
    """
    infos = []
    for platform in platforms:
        manifest_descriptor, _ = resolve_manifest(store, image, platform)
        for row in db.index_entries(manifest_descriptor.digest, str(platform)):
            if not store.exists(row["digest"]):
                logger.warning(f"SOCI index {row['digest']} is recorded but missing from the store")
                continue
            descriptor = Descriptor(
                media_type=row["media_type"],
                digest=row["digest"],
                size=row["size"],
                artifact_type=row["artifact_type"],
            )
            infos.append(DescriptorInfo(descriptor=descriptor, created_at=row["created_at"]))
    return infos


def select_latest(infos: List[DescriptorInfo]) -> Descriptor:
    """
    Pick the most recently created descriptor; on equal timestamps the later entry wins.

    Raises:
        IndexNotFoundError: if infos is empty
    """
    if not infos:
        raise IndexNotFoundError()
    return sorted(infos, key=lambda info: info.created_at)[-1].descriptor


def build_index(stores: ArtifactStores, image: Image, platform: Platform, min_layer_size: int,
                build_tool: str = None) -> Descriptor:
    """
    Build a SOCI index for image, write it to the stores and return its descriptor.

    Raises:
        EmptyIndexError: if no layer qualified for a ztoc
        IndexNotFoundError: if the written index cannot be found again
        BuildError: for any other build failure
    """
    builder = IndexBuilder(stores.content_store, stores.oci_store, stores.db,
                           platform=platform, min_layer_size=min_layer_size, build_tool=build_tool)
    index = builder.build(image)
    write_index(index, stores.oci_store, stores.db)

    # earlier builds of the same manifest may be recorded too; the newest wins
    infos = get_index_descriptors(stores.content_store, stores.db, image, [platform])
    return select_latest(infos)
