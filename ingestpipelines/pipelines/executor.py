"""
Pipeline executor.

The executor resolves a pipeline from the store, drives a document through
it and delivers exactly one outcome per document: Kept, Dropped or Failed.
Synchronous pipelines deliver the outcome before ``run`` returns;
pipelines with asynchronous processors deliver it from whichever thread
completes the last step.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from ..config import EngineSettings
from ..core.document import IngestDocument
from ..core.exceptions import (
    ContractViolation,
    ExecutionTimeout,
    PipelineCycle,
    PipelineNotFound,
)
from ..core.processor import Parameters
from ..core.scheduler import Scheduler
from .pipeline import Pipeline
from .store import PipelineStore

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
    """Terminal states of a document execution."""
    KEPT = "kept"
    DROPPED = "dropped"
    FAILED = "failed"


@dataclass
class Kept:
    """The document went through the pipeline and should be indexed."""
    document: IngestDocument
    status: OutcomeStatus = OutcomeStatus.KEPT


@dataclass
class Dropped:
    """A processor dropped the document; it must not be indexed."""
    document_id: Optional[str] = None
    status: OutcomeStatus = OutcomeStatus.DROPPED


@dataclass
class Failed:
    """The execution failed and no on-failure chain recovered it."""
    error: BaseException
    document_id: Optional[str] = None
    status: OutcomeStatus = OutcomeStatus.FAILED


Outcome = Union[Kept, Dropped, Failed]
OutcomeHandler = Callable[[Outcome], None]


class _OutcomeLatch:
    """Delivers at most one outcome to the caller."""

    def __init__(self, handler: OutcomeHandler, document: IngestDocument):
        self._handler = handler
        self._document = document
        self._lock = threading.Lock()
        self._delivered: Optional[Outcome] = None

    @property
    def delivered(self) -> bool:
        return self._delivered is not None

    def deliver(self, outcome: Outcome, if_pending: bool = False) -> bool:
        """
        Deliver an outcome.

        Args:
            outcome: The terminal outcome
            if_pending: Silently do nothing if an outcome was already delivered

        Returns:
            False if an outcome was already delivered
        """
        with self._lock:
            if self._delivered is not None:
                previous = self._delivered
            else:
                previous = None
                self._delivered = outcome
        if previous is not None:
            if if_pending:
                return False
            if previous.status == OutcomeStatus.FAILED and isinstance(previous.error, ExecutionTimeout):
                logger.info(f"Discarding {outcome.status.value} outcome of document "
                            f"{self._document.metadata.id} that arrived after its timeout")
                return False
            violation = ContractViolation(
                f"second outcome [{outcome.status.value}] for document {self._document.metadata.id} "
                f"after [{previous.status.value}] was delivered"
            )
            logger.error(str(violation))
            raise violation
        self._document.metadata.cancel_scheduled()
        self._handler(outcome)
        return True


class PipelineExecutor:
    """
    Runs documents through pipelines held by a PipelineStore.

    Features:
    - Sequential execution of sync and async processors per document
    - Exactly one outcome per document (Kept, Dropped or Failed)
    - Per-document timeout (``settings.default_timeout`` unless given per call)
    - Reroutes: a document routed to another index continues with that
      index's default pipeline
    - Aggregate ingest counters
    """

    def __init__(self, store: Optional[PipelineStore] = None,
                 parameters: Optional[Parameters] = None,
                 settings: Optional[EngineSettings] = None):
        """
        Initialize an executor.

        Args:
            store: Pipeline store (a new one is created if omitted)
            parameters: Runtime services; defaults to ``store.parameters``
            settings: Settings used when neither store nor parameters are given
        """
        if store is None:
            parameters = parameters or Parameters.create(settings)
            store = PipelineStore(parameters=parameters)
        self.store = store
        self.parameters = parameters or store.parameters
        self.settings = self.parameters.settings
        if self.parameters.scheduler is None:
            self.parameters.scheduler = Scheduler()
        self._stats_lock = threading.Lock()
        self._stats = {"count": 0, "current": 0, "kept": 0, "dropped": 0, "failed": 0}

        logger.info(f"Initialized PipelineExecutor with {len(store.ids())} pipelines")

    def run(self, document: IngestDocument, pipeline_id: str, handler: OutcomeHandler,
            timeout: Optional[float] = None) -> None:
        """
        Run a document through a pipeline and deliver its outcome to ``handler``.

        Args:
            document: Document to process; owned by this execution until the outcome is delivered
            pipeline_id: Id of the pipeline in the store
            handler: Called exactly once with Kept, Dropped or Failed
            timeout: Seconds before the execution fails with ExecutionTimeout
                (defaults to ``settings.default_timeout``)
        """
        timeout = timeout if timeout is not None else self.settings.default_timeout
        self._count_start()

        def on_outcome(outcome: Outcome) -> None:
            self._count_end(outcome)
            handler(outcome)

        latch = _OutcomeLatch(on_outcome, document)
        if document.metadata.closed:
            latch.deliver(Failed(ContractViolation(
                f"document {document.metadata.id} already has an outcome from a previous execution"
            ), document.metadata.id))
            return
        timer = self.parameters.scheduler.schedule(timeout, lambda: self._on_timeout(latch, document, timeout))

        def deliver(outcome: Outcome) -> None:
            timer.cancel()
            latch.deliver(outcome)

        try:
            self._run_pipeline(document, pipeline_id, deliver)
        except (ContractViolation, PipelineCycle) as e:
            if latch.delivered:
                raise
            deliver(Failed(e, document.metadata.id))

    def execute(self, document: IngestDocument, pipeline_id: str,
                timeout: Optional[float] = None) -> Outcome:
        """Run a document and block until its outcome is available."""
        done = threading.Event()
        box: List[Outcome] = []

        def on_outcome(outcome: Outcome) -> None:
            box.append(outcome)
            done.set()

        self.run(document, pipeline_id, on_outcome, timeout)
        done.wait()
        return box[0]

    def execute_bulk(self, documents: List[IngestDocument], pipeline_id: str,
                     timeout: Optional[float] = None) -> List[Outcome]:
        """
        Run many documents concurrently and wait for all of them.

        Returns:
            Outcomes in the order of ``documents``
        """
        outcomes: List[Optional[Outcome]] = [None] * len(documents)
        remaining = [len(documents)]
        lock = threading.Lock()
        done = threading.Event()
        if not documents:
            return []

        def collector(position: int) -> OutcomeHandler:
            def on_outcome(outcome: Outcome) -> None:
                outcomes[position] = outcome
                with lock:
                    remaining[0] -= 1
                    finished = remaining[0] == 0
                if finished:
                    done.set()
            return on_outcome

        for position, document in enumerate(documents):
            self.run(document, pipeline_id, collector(position), timeout)
        done.wait()
        logger.info(f"Bulk execution of {len(documents)} documents through '{pipeline_id}' completed")
        return outcomes

    def _run_pipeline(self, document: IngestDocument, pipeline_id: str,
                      deliver: Callable[[Outcome], None]) -> None:
        pipeline = self.store.get(pipeline_id)
        if pipeline is None:
            deliver(Failed(PipelineNotFound(pipeline_id), document.metadata.id))
            return
        logger.debug(f"Running document {document.metadata.id} through pipeline '{pipeline.id}'")

        def on_complete(result: Optional[IngestDocument], error: Optional[BaseException]) -> None:
            if error is not None:
                logger.error(f"Pipeline '{pipeline.id}' failed for document {document.metadata.id}: {error}")
                deliver(Failed(error, document.metadata.id))
            elif result is None:
                logger.debug(f"Document {document.metadata.id} dropped by pipeline '{pipeline.id}'")
                deliver(Dropped(document.metadata.id))
            elif result.metadata.rerouted:
                self._follow_reroute(result, pipeline, deliver)
            else:
                deliver(Kept(result))

        pipeline.run(document, on_complete)

    def _follow_reroute(self, document: IngestDocument, pipeline: Pipeline,
                        deliver: Callable[[Outcome], None]) -> None:
        metadata = document.metadata
        metadata.rerouted = False
        index = metadata.index
        if index in metadata.index_history:
            cycle = metadata.index_history + [index]
            error = PipelineCycle(f"index cycle detected while processing pipeline '{pipeline.id}': "
                                  f"{' -> '.join(cycle)}", cycle=cycle)
            logger.error(str(error))
            deliver(Failed(error, metadata.id))
            return
        metadata.index_history.append(index)
        next_pipeline = self.store.default_pipeline(index)
        if next_pipeline is None:
            deliver(Kept(document))
            return
        logger.info(f"Document {metadata.id} rerouted to index '{index}', continuing with '{next_pipeline}'")
        self._run_pipeline(document, next_pipeline, deliver)

    def _on_timeout(self, latch: _OutcomeLatch, document: IngestDocument, timeout: float) -> None:
        if latch.delivered:
            return
        cancelled = document.metadata.cancel_scheduled()
        logger.warning(f"Document {document.metadata.id} timed out after {timeout}s "
                       f"(cancelled {cancelled} pending callbacks)")
        latch.deliver(Failed(ExecutionTimeout(f"execution did not complete within {timeout}s"),
                             document.metadata.id), if_pending=True)

    def _count_start(self) -> None:
        with self._stats_lock:
            self._stats["count"] += 1
            self._stats["current"] += 1

    def _count_end(self, outcome: Outcome) -> None:
        with self._stats_lock:
            self._stats["current"] -= 1
            self._stats[outcome.status.value] += 1

    def stats(self) -> Dict[str, Any]:
        """Totals plus per-processor stats of every registered pipeline."""
        with self._stats_lock:
            totals = dict(self._stats)
        pipelines = {}
        for pipeline_id in self.store.ids():
            pipeline = self.store.get(pipeline_id)
            if pipeline is not None:
                pipelines[pipeline_id] = pipeline.processor_stats()
        return {"total": totals, "pipelines": pipelines}

    def close(self) -> None:
        """Shut down the services owned by the parameters."""
        self.parameters.close()
