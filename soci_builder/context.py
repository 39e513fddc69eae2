"""
Invocation-scoped logging context.

Carries the named fields of one invocation (request id, registry, resulting
index digest) and renders them into every log record written through it.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class InvocationContext:
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    registry_url: Optional[str] = None
    index_digest: Optional[str] = None

    def fields(self) -> dict:
        return {
            "request_id": self.request_id,
            "registry_url": self.registry_url,
            "index_digest": self.index_digest,
        }

    def logger(self, logger: logging.Logger) -> "ContextLogger":
        return ContextLogger(logger, self)


class ContextLogger(logging.LoggerAdapter):
    """LoggerAdapter reading its fields from a live InvocationContext."""

    def __init__(self, logger: logging.Logger, context: InvocationContext):
        super().__init__(logger, {})
        self.context = context

    def process(self, msg, kwargs):
        fields = {k: v for k, v in self.context.fields().items() if v is not None}
        extra = kwargs.setdefault("extra", {})
        extra.update(fields)
        prefix = " ".join(f"{k}={v}" for k, v in fields.items())
        return f"[{prefix}] {msg}", kwargs
