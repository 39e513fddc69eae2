"""
SOCI index builder.

Builds a SOCI index for a container image and pushes it to the image's
repository, so that the image can be lazily loaded.

Usage:
    One-shot build (exit code 0 on success or skip, 1 on failure):
        $ python app.py --repository registry.example.com/app@sha256:<digest>
        $ python app.py --repository ... --min-layer-size 5242880 --timeout 600

    Invocation server (POST /invocations):
        $ python app.py --serve

Environment Variables:
    LOG_LEVEL, FLASK_HOST, FLASK_PORT, WORKSPACE_ROOT, WORKSPACE_PREFIX,
    MIN_FREE_SPACE_WARNING_BYTES, DEADLINE_SAFETY_MARGIN, DEFAULT_MIN_LAYER_SIZE,
    INVOCATION_TIMEOUT, PLATFORM, REGISTRY_INSECURE, BUILD_TOOL_IDENTIFIER
"""

import argparse
import logging
import sys

from soci_builder.config import config
from soci_builder.deadline import Deadline
from soci_builder.handler import handle_request

# Configure logging
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Build and push a SOCI index for a container image")
    parser.add_argument(
        "--repository",
        help="image URI pinned by digest, e.g. registry.example.com/app@sha256:<digest>",
    )
    parser.add_argument(
        "--min-layer-size",
        type=int,
        default=config.DEFAULT_MIN_LAYER_SIZE,
        help=f"minimum layer size in bytes to build a ztoc for (default {config.DEFAULT_MIN_LAYER_SIZE})",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=config.INVOCATION_TIMEOUT,
        help=f"seconds until the invocation deadline (default {config.INVOCATION_TIMEOUT:g})",
    )
    parser.add_argument("--serve", action="store_true", help="run the HTTP invocation server instead")
    args = parser.parse_args(argv)
    if not args.serve and not args.repository:
        parser.error("missing required --repository argument")
    if args.min_layer_size < 0:
        parser.error("--min-layer-size must not be negative")
    return args


def serve():
    """Run the invocation server."""
    from soci_builder.routes import app

    debug_mode = logger.getEffectiveLevel() == logging.DEBUG
    logger.info(f"Starting SOCI index builder service on {config.FLASK_HOST}:{config.FLASK_PORT}")
    logger.info(f"Configuration: {config}")
    logger.info(f"Log level: {logging.getLevelName(logger.getEffectiveLevel())}")
    app.run(host=config.FLASK_HOST, port=config.FLASK_PORT, debug=debug_mode, threaded=True)


def main(argv=None) -> int:
    """Main entry point for the SOCI index builder."""
    args = parse_args(argv)
    if args.serve:
        serve()
        return 0

    deadline = Deadline.after(args.timeout, config.DEADLINE_SAFETY_MARGIN)
    outcome = handle_request(args.repository, args.min_layer_size, deadline, settings=config)
    message, error = outcome.as_result()
    if error is not None:
        print(f"error building SOCI index for {args.repository!r}: {error}", file=sys.stderr)
        return 1
    print(message)
    return 0


if __name__ == "__main__":
    sys.exit(main())
