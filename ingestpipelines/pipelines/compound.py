"""
Compound processor: the unit pipelines are assembled from.

A CompoundProcessor wraps exactly one processor with an optional guard
condition, an optional on-failure chain and an ``ignore_failure`` flag.
On-failure chains are themselves lists of CompoundProcessors, so recovery
can nest to any depth.
"""

import time
import logging
import threading
from typing import Any, Dict, List, Optional

from ..core.conditions import Condition
from ..core.context import PipelineContext
from ..core.document import IngestDocument, ON_FAILURE_KEY
from ..core.exceptions import ExecutionError, is_recoverable
from ..core.processor import (
    Handler,
    Processor,
    attribute_error,
    execute_inline,
    run_processor,
)
from .chain import run_chain

logger = logging.getLogger(__name__)

_MISSING = object()


class ProcessorStats:
    """Thread-safe execution counters for one processor."""

    def __init__(self):
        self._lock = threading.Lock()
        self.count = 0
        self.current = 0
        self.failed = 0
        self.skipped = 0
        self.time_in_millis = 0.0

    def pre_execute(self) -> None:
        with self._lock:
            self.current += 1

    def post_execute(self, elapsed: float, failed: bool) -> None:
        with self._lock:
            self.current -= 1
            self.count += 1
            self.time_in_millis += elapsed * 1000
            if failed:
                self.failed += 1

    def skip(self) -> None:
        with self._lock:
            self.skipped += 1

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "count": self.count,
                "current": self.current,
                "failed": self.failed,
                "skipped": self.skipped,
                "time_in_millis": round(self.time_in_millis, 3),
            }


class CompoundProcessor(Processor):
    """
    A processor with a guard condition and failure handling.

    Per document: the guard is evaluated first. If it is false the document
    passes through unchanged. Otherwise the wrapped processor runs. If it
    fails and an on-failure chain is present, the document is rolled back to
    its state before the step, the failure details are written to
    ``_ingest.on_failure`` and the chain runs. A chain that completes turns
    the failure into success.
    """

    def __init__(self, processor: Processor,
                 condition: Optional[Condition] = None,
                 on_failure: Optional[List["CompoundProcessor"]] = None,
                 ignore_failure: bool = False,
                 context: Optional[PipelineContext] = None,
                 relative_time=time.monotonic):
        """
        Initialize a compound processor.

        Args:
            processor: The processor to wrap
            condition: Optional guard evaluated against the document
            on_failure: Optional recovery chain run when the processor fails
            ignore_failure: Continue with the unchanged document on failure
            context: Optional context used to trace step executions
            relative_time: Clock used for stats
        """
        super().__init__(processor.tag, processor.description)
        self.processor = processor
        self.condition = condition
        self.on_failure = list(on_failure or [])
        self.ignore_failure = ignore_failure
        self.context = context
        self.relative_time = relative_time
        self.stats = ProcessorStats()
        self._is_async = processor.is_async or any(step.is_async for step in self.on_failure)

    @property
    def type(self) -> str:
        return self.processor.type

    @property
    def is_async(self) -> bool:
        return self._is_async

    def execute(self, document: IngestDocument) -> Optional[IngestDocument]:
        if self.is_async:
            return super().execute(document)
        return execute_inline(self.run, document, self.type)

    def execute_async(self, document: IngestDocument, handler: Handler) -> None:
        if not self.is_async:
            super().execute_async(document, handler)
            return
        self.run(document, handler)

    def run(self, document: IngestDocument, handler: Handler) -> None:
        """Run the guarded processor and its failure handling, completing through ``handler``."""
        if self.condition is not None:
            try:
                matches = self.condition(document)
            except Exception as e:
                error = ExecutionError(f"condition evaluation failed: {e}", self.type, self.tag)
                error.__cause__ = e
                self._handle_failure(document, None, error, handler)
                return
            if not matches:
                self.stats.skip()
                self._trace(document, "skipped")
                handler(document, None)
                return

        snapshot = document.snapshot() if self.on_failure else None
        start = self.relative_time()
        self.stats.pre_execute()

        def on_complete(result: Optional[IngestDocument], error: Optional[BaseException]) -> None:
            elapsed = self.relative_time() - start
            self.stats.post_execute(elapsed, failed=error is not None)
            if error is None:
                self._trace(document, "succeeded" if result is not None else "dropped",
                            {"latency": elapsed})
                handler(result, None)
                return
            self._trace(document, "failed", {"latency": elapsed, "error": str(error)})
            self._handle_failure(document, snapshot, error, handler)

        run_processor(self.processor, document, on_complete)

    def _handle_failure(self, document: IngestDocument, snapshot: Optional[Dict[str, Any]],
                        error: BaseException, handler: Handler) -> None:
        error = attribute_error(error, self.processor)
        if not is_recoverable(error):
            handler(None, error)
            return
        if self.ignore_failure:
            logger.warning(f"Ignoring failure of processor [{self.type}] "
                           f"(tag={self.tag}) on document {document.metadata.id}: {error}")
            handler(document, None)
            return
        if not self.on_failure:
            handler(None, error)
            return

        logger.warning(f"Processor [{self.type}] (tag={self.tag}) failed on document "
                       f"{document.metadata.id}, running {len(self.on_failure)} on-failure processors: {error}")
        if snapshot is not None:
            document.restore(snapshot)
        previous = push_failure_metadata(document, error)

        def on_recovered(result: Optional[IngestDocument], recovery_error: Optional[BaseException]) -> None:
            pop_failure_metadata(document, previous)
            handler(result, recovery_error)

        run_chain(self.on_failure, document, on_recovered)

    def _trace(self, document: IngestDocument, status: str, extra: Optional[Dict[str, Any]] = None) -> None:
        if self.context is not None:
            self.context.log_step(self.type, self.tag, document.metadata.id, status, extra)
        logger.debug(f"Processor [{self.type}] (tag={self.tag}) {status} for document {document.metadata.id}")


def push_failure_metadata(document: IngestDocument, error: BaseException) -> Any:
    """Expose failure details to recovery processors. Returns the value it replaced."""
    previous = document.metadata.ingest.get(ON_FAILURE_KEY, _MISSING)
    document.metadata.ingest[ON_FAILURE_KEY] = {
        "message": getattr(error, "message", None) or str(error),
        "processor_type": getattr(error, "processor_type", None),
        "processor_tag": getattr(error, "processor_tag", None),
        "pipeline": document.metadata.current_pipeline,
    }
    return previous


def pop_failure_metadata(document: IngestDocument, previous: Any) -> None:
    if previous is _MISSING:
        document.metadata.ingest.pop(ON_FAILURE_KEY, None)
    else:
        document.metadata.ingest[ON_FAILURE_KEY] = previous
