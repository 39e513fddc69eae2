"""
Ephemeral per-invocation workspace.

Each invocation gets its own directory under WORKSPACE_ROOT holding the OCI
blob store and the artifacts database. The directory is destroyed exactly
once, by whichever of the main flow or the deadline watcher gets there first.
"""

import logging
import os
import re
import shutil
import tempfile
import threading
from dataclasses import dataclass
from typing import Optional

from .config import config as default_config
from .context import InvocationContext
from .errors import DirectoryError

logger = logging.getLogger(__name__)

ARTIFACTS_STORE_NAME = "store"
ARTIFACTS_DB_NAME = "artifacts.db"


@dataclass(frozen=True)
class Workspace:
    root_dir: str

    @property
    def blob_store_path(self) -> str:
        return os.path.join(self.root_dir, ARTIFACTS_STORE_NAME)

    @property
    def metadata_db_path(self) -> str:
        return os.path.join(self.root_dir, ARTIFACTS_DB_NAME)


class WorkspaceManager:
    """
    Allocates and destroys the workspace of a single invocation.

    A manager is used for one invocation only: after destroy() it never
    removes anything again, even if create() were called a second time.
    """

    def __init__(self, context: InvocationContext = None, settings=None):
        self.settings = settings or default_config
        self.context = context or InvocationContext()
        self.log = self.context.logger(logger)
        self.workspace: Optional[Workspace] = None
        self._lock = threading.Lock()
        self._destroyed = False

    def free_space(self) -> int:
        """Bytes available to this process at WORKSPACE_ROOT."""
        return shutil.disk_usage(self.settings.WORKSPACE_ROOT).free

    def create(self) -> Workspace:
        """
        Create the workspace directory.

        Raises:
            DirectoryError: if free space cannot be measured or the directory cannot be created
        """
        root = self.settings.WORKSPACE_ROOT
        try:
            free = self.free_space()
        except OSError as e:
            raise DirectoryError(f"Cannot measure free space in {root}: {e}") from e

        self.log.info(f"There are {free} bytes of free space in {root}")
        if free < self.settings.MIN_FREE_SPACE_WARNING_BYTES:
            self.log.warning(
                f"Free space in {root} is only {free} bytes, "
                f"which is less than {self.settings.MIN_FREE_SPACE_WARNING_BYTES} bytes"
            )

        self.log.info("Creating a directory to store images and SOCI artifacts")
        request_id = re.sub(r"[^A-Za-z0-9._-]", "-", self.context.request_id)
        prefix = f"{self.settings.WORKSPACE_PREFIX}-{request_id}-"
        try:
            root_dir = tempfile.mkdtemp(prefix=prefix, dir=root)
        except OSError as e:
            raise DirectoryError(f"Cannot create workspace in {root}: {e}") from e

        self.workspace = Workspace(root_dir)
        self.log.debug(f"Workspace created: {root_dir}")
        return self.workspace

    def destroy(self) -> bool:
        """
        Remove the workspace tree.

        Runs at most once per manager; later calls are no-ops, but block
        until a removal in progress on another thread has finished. A
        directory that is already gone is not an error.

        Returns:
            True if this call performed the cleanup
        """
        with self._lock:
            if self._destroyed or self.workspace is None:
                return False
            self._destroyed = True

            root_dir = self.workspace.root_dir
            self.log.info(f"Removing all files in {root_dir}")
            try:
                shutil.rmtree(root_dir)
            except FileNotFoundError:
                self.log.debug(f"Workspace already removed: {root_dir}")
            except OSError as e:
                self.log.error(f"Clean up error: {e}")
            return True

    @property
    def destroyed(self) -> bool:
        return self._destroyed
