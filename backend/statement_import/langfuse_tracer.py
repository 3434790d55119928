"""
Langfuse tracing for statement imports.

Each preview or commit becomes one trace owned by the importing account, with
a child span per pipeline stage (decode, normalize, duplicates, upsert). When
no Langfuse credentials are configured every method is a no-op, and a tracing
failure is logged without affecting the import itself.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from langfuse import Langfuse
from langfuse.types import TraceContext

logger = logging.getLogger(__name__)

DEFAULT_HOST = "http://localhost:3001"


@dataclass
class TraceHandle:
    """An open import trace: its context, root span and the stages recorded so far."""

    trace_context: TraceContext
    root_span: Any
    stages: List[str] = field(default_factory=list)

    @property
    def trace_id(self) -> str:
        return self.trace_context["trace_id"]


class LangfuseTracer:
    """Records import runs in Langfuse."""

    def __init__(
        self,
        public_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        host: str = DEFAULT_HOST,
        debug: bool = False,
    ):
        self.client: Optional[Langfuse] = None
        if not public_key:
            return
        try:
            self.client = Langfuse(
                public_key=public_key, secret_key=secret_key, host=host, debug=debug
            )
            logger.info("Langfuse client initialized with host: %s", host)
        except Exception:
            logger.exception("Failed to initialize Langfuse, tracing disabled")

    @classmethod
    def from_env(cls) -> "LangfuseTracer":
        """Build from LANGFUSE_PUBLIC_KEY, LANGFUSE_SECRET_KEY, LANGFUSE_HOST, LANGFUSE_DEBUG."""
        return cls(
            public_key=os.getenv("LANGFUSE_PUBLIC_KEY"),
            secret_key=os.getenv("LANGFUSE_SECRET_KEY"),
            host=os.getenv("LANGFUSE_HOST", DEFAULT_HOST),
            debug=os.getenv("LANGFUSE_DEBUG", "false").lower() == "true",
        )

    def is_enabled(self) -> bool:
        return self.client is not None

    def start_import(
        self,
        operation: str,
        account_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[TraceHandle]:
        """
        Open a trace for one preview or commit.

        Args:
            operation: Trace name (e.g., "import_preview")
            account_id: Account the import belongs to
            metadata: Request details such as the filename

        Returns:
            TraceHandle, or None when tracing is disabled or the trace could not be created
        """
        if not self.client:
            return None
        try:
            trace_context = TraceContext(
                trace_id=self.client.create_trace_id(), user_id=account_id or "system"
            )
            root_span = self.client.start_span(
                trace_context=trace_context, name=operation, metadata=metadata or {}
            )
        except Exception:
            logger.exception("Failed to start trace %s", operation)
            return None
        handle = TraceHandle(trace_context=trace_context, root_span=root_span)
        logger.debug("Started trace %s (ID: %s)", operation, handle.trace_id)
        return handle

    def record_stage(self, trace: Optional[TraceHandle], stage: str, **counts: Any) -> None:
        """Attach a finished pipeline stage with its counters to the trace."""
        if not trace or not self.client:
            return
        try:
            span = self.client.start_span(
                trace_context=trace.trace_context, name=stage, metadata=counts
            )
            span.end()
            trace.stages.append(stage)
        except Exception:
            logger.exception("Failed to record stage %s", stage)

    def finish_import(self, trace: Optional[TraceHandle], error: Optional[str] = None) -> None:
        """Close the root span, marking it as failed when ``error`` is given, and flush."""
        if not trace or not self.client:
            return
        try:
            if error:
                trace.root_span.update(level="ERROR", status_message=error)
            trace.root_span.end()
            self.client.flush()
        except Exception:
            logger.exception("Failed to finish trace %s", trace.trace_id)
