"""
SOCI index builder.

Builds a SOCI (Seekable OCI) index for a container image given only its
digest-pinned reference, and pushes the index back to the image's repository.
Each invocation runs in its own ephemeral workspace that is removed when the
invocation ends, or proactively shortly before its deadline.

Features:
    - Reference parsing with independent host / repository / digest productions
    - Manifest validation before any work is done
    - Per-layer ztocs for layers above a configurable size
    - Deadline watcher reclaiming the workspace before the hard deadline
    - Outcomes that tell skips apart from retryable failures
    - CLI and HTTP invocation endpoint
    - Configurable via environment variables

Outcomes:
    ("Successfully built and pushed SOCI index", None)
    ("Exited early due to manifest validation error", None)
    ("Skipping pushing SOCI index as it does not contain any zTOCs", None)
    ("<failure label>", error)
"""

__version__ = "0.1.0"

# Import key components for convenience
from .config import Config
from .deadline import Deadline, DeadlineWatcher
from .errors import FailureKind
from .handler import handle_request
from .models import ImageReference
from .outcome import Outcome, OutcomeKind
from .validation import compute_sha256, parse_image_reference, validate_digest
from .workspace import Workspace, WorkspaceManager

__all__ = [
    "Config",
    "Deadline",
    "DeadlineWatcher",
    "FailureKind",
    "handle_request",
    "ImageReference",
    "Outcome",
    "OutcomeKind",
    "compute_sha256",
    "parse_image_reference",
    "validate_digest",
    "Workspace",
    "WorkspaceManager",
]
