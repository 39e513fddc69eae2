"""
Artifacts database: metadata about the SOCI indices and ztocs written into a workspace.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from .models import Descriptor

logger = logging.getLogger(__name__)

KIND_SOCI_INDEX = "soci_index"
KIND_ZTOC = "ztoc"


class ArtifactsDb:
    def __init__(self, path: str):
        self.path = path
        self._engine: Engine = create_engine(f"sqlite:///{path}", future=True)
        self._initialise()

    def _initialise(self) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                text(
                    """
                    CREATE TABLE IF NOT EXISTS artifacts (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        digest TEXT NOT NULL,
                        kind TEXT NOT NULL,
                        media_type TEXT NOT NULL,
                        artifact_type TEXT,
                        size INTEGER NOT NULL,
                        original_digest TEXT NOT NULL,
                        image_digest TEXT,
                        platform TEXT,
                        created_at TEXT NOT NULL
                    )
                    """
                )
            )
            conn.execute(
                text(
                    "CREATE INDEX IF NOT EXISTS artifacts_image_platform "
                    "ON artifacts (kind, image_digest, platform)"
                )
            )

    def _insert(self, descriptor: Descriptor, kind: str, original_digest: str,
                image_digest: Optional[str], platform: Optional[str], created_at: datetime) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                text(
                    """
                    INSERT INTO artifacts (digest, kind, media_type, artifact_type, size,
                                           original_digest, image_digest, platform, created_at)
                    VALUES (:digest, :kind, :media_type, :artifact_type, :size,
                            :original_digest, :image_digest, :platform, :created_at)
                    """
                ),
                {
                    "digest": descriptor.digest,
                    "kind": kind,
                    "media_type": descriptor.media_type,
                    "artifact_type": descriptor.artifact_type,
                    "size": descriptor.size,
                    "original_digest": original_digest,
                    "image_digest": image_digest,
                    "platform": platform,
                    "created_at": created_at.astimezone(timezone.utc).isoformat(),
                },
            )

    def record_ztoc(self, descriptor: Descriptor, layer_digest: str, created_at: datetime) -> None:
        self._insert(descriptor, KIND_ZTOC, layer_digest, None, None, created_at)

    def record_index(self, descriptor: Descriptor, image_digest: str, platform: str, created_at: datetime) -> None:
        """Record a SOCI index built for the manifest image_digest on platform."""
        self._insert(descriptor, KIND_SOCI_INDEX, image_digest, image_digest, platform, created_at)
        logger.debug(f"Recorded SOCI index {descriptor.digest} for {image_digest} ({platform})")

    def index_entries(self, image_digest: str, platform: str) -> list:
        """
        All indices recorded for a manifest digest and platform, oldest first.

        Returns:
            List of dicts with keys digest, media_type, artifact_type, size, created_at (datetime)
        """
        with self._engine.connect() as conn:
            result = conn.execute(
                text(
                    """
                    SELECT digest, media_type, artifact_type, size, created_at
                    FROM artifacts
                    WHERE kind = :kind AND image_digest = :image_digest AND platform = :platform
                    ORDER BY id ASC
                    """
                ),
                {"kind": KIND_SOCI_INDEX, "image_digest": image_digest, "platform": platform},
            )
            rows = result.fetchall()
        return [
            {
                "digest": row[0],
                "media_type": row[1],
                "artifact_type": row[2],
                "size": int(row[3]),
                "created_at": datetime.fromisoformat(row[4]),
            }
            for row in rows
        ]

    def ztoc_for_layer(self, layer_digest: str) -> Optional[str]:
        with self._engine.connect() as conn:
            result = conn.execute(
                text(
                    "SELECT digest FROM artifacts WHERE kind = :kind AND original_digest = :layer "
                    "ORDER BY id DESC LIMIT 1"
                ),
                {"kind": KIND_ZTOC, "layer": layer_digest},
            )
            return result.scalar_one_or_none()

    def close(self) -> None:
        self._engine.dispose()
