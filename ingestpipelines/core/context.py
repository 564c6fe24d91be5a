"""
Ambient execution context shared with processors.

PipelineContext carries request headers propagated from the caller (for
example authentication or tracing headers) and an optional trace of step
executions. It is not part of the document itself.
"""

import json
import time
import logging
import threading
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class PipelineContext:
    """
    Header carrier and step trace for pipeline executions.

    Stores:
    - Headers propagated from the caller, readable by processors
    - Step logs (processor type, tag, document id, outcome, latency)

    Step logging is off by default since one context is usually shared by
    every execution of an executor. The trace is serializable to JSON.
    """

    def __init__(self, headers: Optional[Dict[str, str]] = None, trace: bool = False,
                 max_trace_entries: int = 1000):
        """
        Initialize a new pipeline context.

        Args:
            headers: Optional headers to expose to processors
            trace: Record a step log entry for each processor execution
            max_trace_entries: Oldest entries are discarded beyond this size
        """
        self.headers = dict(headers or {})
        self.trace = trace
        self.max_trace_entries = max_trace_entries
        self.step_logs: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

        logger.debug(f"Initialized PipelineContext with headers: {sorted(self.headers)}")

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Read a propagated header, case-insensitively."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default

    def with_headers(self, headers: Dict[str, str]) -> "PipelineContext":
        """Return a context with additional headers and the same trace settings."""
        merged = dict(self.headers)
        merged.update(headers)
        return PipelineContext(headers=merged, trace=self.trace,
                               max_trace_entries=self.max_trace_entries)

    def log_step(self, processor_type: str, tag: Optional[str], doc_id: Optional[str],
                 status: str, extra: Optional[Dict[str, Any]] = None) -> None:
        """
        Record the execution of a processor.

        Args:
            processor_type: Type name of the processor
            tag: Processor tag, if any
            doc_id: Id of the document processed
            status: One of ``succeeded``, ``skipped``, ``failed``, ``dropped``
            extra: Additional details such as latency or error message
        """
        if not self.trace:
            return
        log_entry = {
            "processor": processor_type,
            "tag": tag,
            "doc_id": doc_id,
            "status": status,
            "extra": extra or {},
            "timestamp": time.time()
        }
        with self._lock:
            self.step_logs.append(log_entry)
            if len(self.step_logs) > self.max_trace_entries:
                del self.step_logs[:len(self.step_logs) - self.max_trace_entries]

    def to_json(self) -> str:
        """Serialize headers and the step trace to JSON."""
        with self._lock:
            return json.dumps({
                "headers": self.headers,
                "step_logs": self.step_logs
            }, default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "PipelineContext":
        """Reconstruct a context from JSON."""
        data = json.loads(json_str)
        context = cls(headers=data.get("headers", {}), trace=True)
        context.step_logs = data.get("step_logs", [])
        return context
