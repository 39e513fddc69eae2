"""
Configuration module for the SOCI index builder.

Loads all configuration from environment variables with sensible defaults.
"""

import os


def _getenv_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """
    Builder configuration from environment variables.

    Loads all configuration values from environment variables with sensible defaults.
    All settings can be overridden by setting the corresponding environment variable.
    """

    def __init__(self):
        """
        Initialize configuration from environment variables.

        Environment Variables:
            LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR). Default: INFO
            FLASK_HOST: Invocation server bind address. Default: 0.0.0.0
            FLASK_PORT: Invocation server bind port. Default: 8080
            WORKSPACE_ROOT: Directory holding per-invocation workspaces. Default: /tmp
            WORKSPACE_PREFIX: Prefix of workspace directory names. Default: soci-index-build
            MIN_FREE_SPACE_WARNING_BYTES: Warn below this much free space. Default: 6000000000
            DEADLINE_SAFETY_MARGIN: Seconds before the deadline to reclaim the workspace. Default: 10
            DEFAULT_MIN_LAYER_SIZE: Smallest layer (bytes) that gets a ztoc. Default: 10485760
            INVOCATION_TIMEOUT: Seconds allowed when the caller gives no deadline. Default: 300
            PLATFORM: Target platform as os/arch[/variant]. Default: host platform
            REGISTRY_INSECURE: Talk plain HTTP to registries. Default: false
            BUILD_TOOL_IDENTIFIER: Recorded in index annotations. Default: soci-index-builder
        """
        # Logging
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

        # Server
        self.FLASK_HOST = os.getenv("FLASK_HOST", "0.0.0.0")
        self.FLASK_PORT = int(os.getenv("FLASK_PORT", "8080"))

        # Workspace
        self.WORKSPACE_ROOT = os.getenv("WORKSPACE_ROOT", "/tmp")
        self.WORKSPACE_PREFIX = os.getenv("WORKSPACE_PREFIX", "soci-index-build")
        # supported images may be as big as 6GB
        self.MIN_FREE_SPACE_WARNING_BYTES = int(os.getenv("MIN_FREE_SPACE_WARNING_BYTES", "6000000000"))

        # Deadline
        self.DEADLINE_SAFETY_MARGIN = float(os.getenv("DEADLINE_SAFETY_MARGIN", "10"))  # seconds
        self.INVOCATION_TIMEOUT = float(os.getenv("INVOCATION_TIMEOUT", "300"))  # seconds

        # Index build
        self.DEFAULT_MIN_LAYER_SIZE = int(os.getenv("DEFAULT_MIN_LAYER_SIZE", "10485760"))
        self.PLATFORM = os.getenv("PLATFORM", "")
        self.BUILD_TOOL_IDENTIFIER = os.getenv("BUILD_TOOL_IDENTIFIER", "soci-index-builder")

        # Registry
        self.REGISTRY_INSECURE = _getenv_bool("REGISTRY_INSECURE", "false")

    def __repr__(self):
        """String representation for logging."""
        return (
            f"Config(LOG_LEVEL={self.LOG_LEVEL}, "
            f"FLASK_HOST={self.FLASK_HOST}, "
            f"FLASK_PORT={self.FLASK_PORT}, "
            f"WORKSPACE_ROOT={self.WORKSPACE_ROOT}, "
            f"DEADLINE_SAFETY_MARGIN={self.DEADLINE_SAFETY_MARGIN}, "
            f"DEFAULT_MIN_LAYER_SIZE={self.DEFAULT_MIN_LAYER_SIZE}, "
            f"PLATFORM={self.PLATFORM or 'default'})"
        )


# Global config instance
config = Config()
