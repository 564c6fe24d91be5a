"""
Sequential driver for chains of steps.

ChainRunner walks a document through a list of steps, each exposing
``run(document, handler)``. Steps that complete on the calling thread are
handled in a loop, so a long synchronous chain does not grow the stack.
A step that completes later suspends the chain; the chain resumes from the
thread that delivers the completion. Either way step N+1 only starts after
step N has completed, and sees the document step N produced.
"""

import logging
import threading
from typing import Any, List, Optional

from ..core.document import IngestDocument
from ..core.processor import Handler

logger = logging.getLogger(__name__)

_PENDING = 0
_SUSPENDED = 1
_DONE = 2


class _StepSlot:
    """Receives the completion of one step and tells the chain whether it arrived inline."""

    def __init__(self, runner: "ChainRunner", index: int):
        self._runner = runner
        self._index = index
        self._lock = threading.Lock()
        self._state = _PENDING
        self.result: Optional[IngestDocument] = None
        self.error: Optional[BaseException] = None

    def complete(self, result: Optional[IngestDocument], error: Optional[BaseException]) -> None:
        with self._lock:
            self.result, self.error = result, error
            suspended = self._state == _SUSPENDED
            self._state = _DONE
        if suspended:
            if self._runner._abandoned(self._index + 1):
                return
            if self._runner._accept(self.result, self.error):
                self._runner._run_from(self._index + 1)

    def suspend(self) -> bool:
        """Returns False if the step already completed inline."""
        with self._lock:
            if self._state == _DONE:
                return False
            self._state = _SUSPENDED
            return True


class ChainRunner:
    """
    Runs steps in order against one document and reports a single completion.

    The handler receives ``(document, None)`` when every step succeeded,
    ``(None, None)`` when a step dropped the document and ``(None, error)``
    on the first failure. A rerouted document stops the chain early and
    completes successfully.
    """

    def __init__(self, steps: List[Any], document: IngestDocument, handler: Handler):
        self.steps = steps
        self.document = document
        self._handler = handler

    def start(self) -> None:
        self._run_from(0)

    def _run_from(self, index: int) -> None:
        while index < len(self.steps):
            if self._abandoned(index):
                return
            if self.document.metadata.rerouted:
                logger.debug(f"Document {self.document.metadata.id} rerouted, "
                             f"skipping {len(self.steps) - index} remaining steps")
                break
            slot = _StepSlot(self, index)
            self.steps[index].run(self.document, slot.complete)
            if slot.suspend():
                return
            if not self._accept(slot.result, slot.error):
                return
            index += 1
        self._handler(self.document, None)

    def _abandoned(self, index: int) -> bool:
        """Whether the execution already ended; if so no further step may run."""
        if not self.document.metadata.closed:
            return False
        logger.info(f"Document {self.document.metadata.id} already has an outcome, "
                    f"not running {len(self.steps) - index} remaining steps")
        return True

    def _accept(self, result: Optional[IngestDocument], error: Optional[BaseException]) -> bool:
        """Record a step result. Returns True if the chain should continue."""
        if error is not None:
            self._handler(None, error)
            return False
        if result is None:
            self._handler(None, None)
            return False
        self.document = result
        return True


def run_chain(steps: List[Any], document: IngestDocument, handler: Handler) -> ChainRunner:
    runner = ChainRunner(steps, document, handler)
    runner.start()
    return runner
