"""
Request dispatcher: builds and pushes the SOCI index for one image reference.

Steps run in strict order and the first terminal outcome ends the invocation:

    parse reference -> init registry -> validate manifest (skip)
    -> create workspace -> arm deadline watcher -> init stores -> pull
    -> build index (skip when empty) -> push

The workspace is destroyed and the watcher stood down on every exit path.
"""

import logging
from typing import Callable, Optional

from .builder import build_index
from .config import config
from .context import InvocationContext
from .deadline import Deadline, DeadlineWatcher
from .errors import FailureKind, MalformedReferenceError, is_empty_index
from .models import Image, Platform
from .outcome import Outcome
from .registry import RegistryClient
from .store import ArtifactStores
from .validation import parse_image_reference
from .workspace import WorkspaceManager

logger = logging.getLogger(__name__)


def _failed(log, kind: FailureKind, error: BaseException) -> Outcome:
    outcome = Outcome.failed(kind, error)
    log.error(f"{kind.label}: {error}")
    return outcome


def target_platform(settings) -> Platform:
    return Platform.parse(settings.PLATFORM) if settings.PLATFORM else Platform.default()


def handle_request(
    image_uri: str,
    min_layer_size: Optional[int] = None,
    deadline: Optional[Deadline] = None,
    *,
    settings=None,
    context: Optional[InvocationContext] = None,
    registry_factory: Optional[Callable] = None,
    workspace_manager: Optional[WorkspaceManager] = None,
) -> Outcome:
    """
    Build a SOCI index for image_uri and push it next to the image.

    Args:
        image_uri: "host/repository@sha256:..." (or "host/repository:sha256:...")
        min_layer_size: Layers smaller than this get no ztoc. Default: DEFAULT_MIN_LAYER_SIZE
        deadline: Hard deadline of the invocation. Default: INVOCATION_TIMEOUT from now
        settings: Config object. Default: the global config
        context: Logging context of this invocation
        registry_factory: Callable(host, platform=, settings=) returning a registry client
        workspace_manager: WorkspaceManager for this invocation

    Returns:
        Outcome; only failures carry an error
    """
    settings = settings or config
    context = context or InvocationContext()
    log = context.logger(logger)
    if min_layer_size is None:
        min_layer_size = settings.DEFAULT_MIN_LAYER_SIZE
    if deadline is None:
        deadline = Deadline.after(settings.INVOCATION_TIMEOUT, settings.DEADLINE_SAFETY_MARGIN)
    platform = target_platform(settings)
    registry_factory = registry_factory or RegistryClient.init

    try:
        reference = parse_image_reference(image_uri)
    except MalformedReferenceError as e:
        return _failed(log, FailureKind.MALFORMED_REFERENCE, e)
    context.registry_url = reference.registry_host
    log.info(f"Handling {reference} (min layer size {min_layer_size}, platform {platform})")

    try:
        registry = registry_factory(reference.registry_host, platform=platform, settings=settings)
    except Exception as e:
        return _failed(log, FailureKind.REGISTRY_INIT, e)

    try:
        registry.validate_image_manifest(reference.repository, reference.digest)
    except Exception as e:
        log.warning(f"Image manifest validation error: {e}")
        # not an error, so that the caller does not retry an input that can never succeed
        return Outcome.skipped_validation()

    workspace_manager = workspace_manager or WorkspaceManager(context, settings)
    try:
        workspace = workspace_manager.create()
    except Exception as e:
        return _failed(log, FailureKind.DIRECTORY, e)

    watcher = DeadlineWatcher(deadline, workspace_manager, context).start()
    stores = None
    try:
        try:
            stores = ArtifactStores(workspace)
        except Exception as e:
            return _failed(log, FailureKind.STORE_INIT, e)

        try:
            descriptor = registry.pull(reference.repository, stores.oci_store, reference.digest)
        except Exception as e:
            return _failed(log, FailureKind.PULL, e)

        image = Image(name=reference.name, target=descriptor)
        try:
            index_descriptor = build_index(stores, image, platform, min_layer_size, settings.BUILD_TOOL_IDENTIFIER)
        except Exception as e:
            if is_empty_index(e):
                outcome = Outcome.skipped_empty_index()
                log.warning(outcome.message)
                return outcome
            return _failed(log, FailureKind.BUILD, e)
        context.index_digest = index_descriptor.digest

        try:
            registry.push(stores.oci_store, index_descriptor, reference.repository)
        except Exception as e:
            return _failed(log, FailureKind.PUSH, e)

        outcome = Outcome.success()
        log.info(outcome.message)
        return outcome
    finally:
        watcher.cancel()
        watcher.join()
        if stores is not None:
            stores.close()
        workspace_manager.destroy()
