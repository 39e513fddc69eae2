"""
Flask application exposing the builder as an invocation endpoint.

Every request runs one independent invocation with its own workspace.
"""

import logging
from flask import Flask, abort, jsonify, request

from .config import config
from .context import InvocationContext
from .deadline import Deadline
from .handler import handle_request

logger = logging.getLogger(__name__)

DEADLINE_HEADER = "Lambda-Runtime-Deadline-Ms"
REQUEST_ID_HEADER = "Lambda-Runtime-Aws-Request-Id"

# Create Flask app
app = Flask(__name__)


@app.route("/healthz")
def healthz():
    """Liveness probe."""
    return jsonify({"status": "ok"})


def _deadline_from_request() -> Deadline:
    raw = request.headers.get(DEADLINE_HEADER)
    if raw is None:
        return Deadline.after(config.INVOCATION_TIMEOUT, config.DEADLINE_SAFETY_MARGIN)
    try:
        epoch_ms = int(raw)
    except ValueError:
        logger.warning(f"Invalid {DEADLINE_HEADER} header: {raw!r}")
        abort(400, f"Invalid {DEADLINE_HEADER} header: must be epoch milliseconds")
    return Deadline.from_epoch_ms(epoch_ms, config.DEADLINE_SAFETY_MARGIN)


@app.route("/invocations", methods=["POST"])
def invoke():
    """
    Build and push the SOCI index of one image.

    Request Body (JSON):
        {
            "repository": "registry.example.com/app@sha256:...",
            "minLayerSize": 10485760     (optional)
        }

    Request Headers:
        Lambda-Runtime-Deadline-Ms: Optional absolute deadline (epoch milliseconds).
            Default: INVOCATION_TIMEOUT seconds from now
        Lambda-Runtime-Aws-Request-Id: Optional request id used in logs and
            the workspace name

    Returns:
        200: {"message", "outcome", "error": null} for success or a skip
        500: {"message", "outcome", "error"} when the invocation failed and may be retried

    Raises:
        400: Missing repository or invalid minLayerSize / deadline header
    """
    payload = request.get_json(silent=True) or {}
    repository = payload.get("repository")
    if not isinstance(repository, str) or not repository:
        logger.warning("Invocation without repository")
        abort(400, "Invalid request: 'repository' is required")

    min_layer_size = payload.get("minLayerSize", config.DEFAULT_MIN_LAYER_SIZE)
    if isinstance(min_layer_size, bool) or not isinstance(min_layer_size, int) or min_layer_size < 0:
        logger.warning(f"Invalid minLayerSize: {min_layer_size!r}")
        abort(400, "Invalid request: 'minLayerSize' must be a non-negative integer")

    deadline = _deadline_from_request()
    context = InvocationContext()
    request_id = request.headers.get(REQUEST_ID_HEADER)
    if request_id:
        context.request_id = request_id

    logger.info(f"Invocation {context.request_id} requested for {repository}")
    outcome = handle_request(repository, min_layer_size, deadline, settings=config, context=context)

    status = 200 if outcome.ok else 500
    logger.info(f"Invocation {context.request_id} finished: {outcome.kind.value}")
    return jsonify(outcome.to_dict()), status
