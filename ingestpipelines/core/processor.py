"""
Processor abstraction for ingest pipelines.

A processor transforms a document. It implements one of two execute forms:

- ``execute(document)`` for synchronous processors: returns the resulting
  document, or None to drop it.
- ``execute_async(document, handler)`` for asynchronous processors: calls
  ``handler(result, error)`` exactly once, possibly from another thread.

``is_async`` states which form a processor implements. Calling the other
form is a ContractViolation. Processor instances are shared across all
documents running through a pipeline, so they must not keep per-document
state.
"""

import time
import logging
import threading
from abc import ABC
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict

from ..config import EngineSettings
from .conditions import ConditionCompiler
from .context import PipelineContext
from .document import IngestDocument
from .exceptions import (
    ContractViolation,
    ExecutionError,
    IngestError,
    InvalidConfigValue,
)
from .lookup import HttpLookupClient, LookupClient
from .scheduler import GenericExecutor, Scheduler

logger = logging.getLogger(__name__)

# handler(result, error): result None and error None means the document was dropped
Handler = Callable[[Optional[IngestDocument], Optional[BaseException]], None]


class Processor(ABC):
    """
    Base class for all processors.

    Subclasses set the ``TYPE`` class attribute and override ``execute``, or
    set ``is_async`` and override ``execute_async``.
    """

    TYPE: str = ""

    def __init__(self, tag: Optional[str] = None, description: Optional[str] = None):
        self.tag = tag
        self.description = description

    @property
    def type(self) -> str:
        return self.TYPE

    @property
    def is_async(self) -> bool:
        return False

    def execute(self, document: IngestDocument) -> Optional[IngestDocument]:
        """
        Introspect and potentially modify the document.

        Returns:
            The document to keep, or None to drop it
        """
        if self.is_async:
            raise ContractViolation(
                f"synchronous execute called on asynchronous processor [{self.type}]"
            )
        raise ContractViolation(f"processor [{self.type}] does not implement execute")

    def execute_async(self, document: IngestDocument, handler: Handler) -> None:
        """
        Introspect and potentially modify the document, completing through ``handler``.

        Only override this in processors that make asynchronous calls.
        A completion arriving after ``document.metadata.closed`` turned True
        (the execution timed out) must not write to the document; the engine
        ignores it and runs no further steps.
        """
        if not self.is_async:
            handler(None, ContractViolation(
                f"asynchronous execute called on synchronous processor [{self.type}]"
            ))
            return
        handler(None, ContractViolation(f"processor [{self.type}] does not implement execute_async"))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(type={self.type!r}, tag={self.tag!r})"


class ProcessorConfig(BaseModel):
    """
    Immutable processor definition.

    Built from a one-key mapping such as ``{"set": {"field": "x", "value": 1}}``.
    ``options`` holds the keys left after tag and description were taken out.
    """
    model_config = ConfigDict(frozen=True)

    type: str
    tag: Optional[str] = None
    description: Optional[str] = None
    options: Dict[str, Any] = {}

    @classmethod
    def from_definition(cls, definition: Dict[str, Any]) -> "ProcessorConfig":
        if not isinstance(definition, dict) or len(definition) != 1:
            raise InvalidConfigValue(
                f"processor definition must be an object with exactly one key, got {definition!r}"
            )
        processor_type, body = next(iter(definition.items()))
        if body is None:
            body = {}
        if not isinstance(body, dict):
            raise InvalidConfigValue("processor configuration must be an object",
                                     processor_type=processor_type)
        body = dict(body)
        tag = body.pop("tag", None)
        description = body.pop("description", None)
        for name, value in (("tag", tag), ("description", description)):
            if value is not None and not isinstance(value, str):
                raise InvalidConfigValue("must be a string", processor_type, None, name)
        return cls(type=processor_type, tag=tag, description=description, options=body)


@dataclass
class Parameters:
    """
    Runtime services shared with processor factories.

    One instance is shared by every processor built for an executor.
    ``store`` is filled in by the PipelineStore that owns these parameters.
    """
    settings: EngineSettings = field(default_factory=EngineSettings)
    context: PipelineContext = field(default_factory=PipelineContext)
    generic_executor: Optional[GenericExecutor] = None
    scheduler: Optional[Scheduler] = None
    lookup_client: Optional[LookupClient] = None
    condition_compiler: ConditionCompiler = field(default_factory=ConditionCompiler)
    relative_time: Callable[[], float] = time.monotonic
    store: Any = None

    @classmethod
    def create(cls, settings: Optional[EngineSettings] = None, **overrides) -> "Parameters":
        """Build parameters with default services for the given settings."""
        settings = settings or EngineSettings()
        values = {
            "settings": settings,
            "context": PipelineContext(trace=settings.trace_steps),
            "generic_executor": GenericExecutor(max_workers=settings.generic_workers),
            "scheduler": Scheduler(),
        }
        if settings.lookup_base_url:
            values["lookup_client"] = HttpLookupClient(settings.lookup_base_url,
                                                       timeout=settings.lookup_timeout)
        values.update(overrides)
        return cls(**values)

    def close(self) -> None:
        if self.scheduler is not None:
            self.scheduler.shutdown()
        if self.generic_executor is not None:
            self.generic_executor.shutdown(wait=False)
        if self.lookup_client is not None:
            self.lookup_client.close()


class CompletionLatch:
    """
    Single-fire wrapper around a completion handler.

    The first call is forwarded. Any further call is logged and raises
    ContractViolation in the caller, which is the processor that misbehaved.
    A call carrying both a result and an error is forwarded as a
    ContractViolation error.
    """

    def __init__(self, handler: Handler, processor: Optional[Processor] = None):
        self._handler = handler
        self._processor = processor
        self._lock = threading.Lock()
        self._fired = False

    @property
    def fired(self) -> bool:
        return self._fired

    def __call__(self, result: Optional[IngestDocument], error: Optional[BaseException]) -> None:
        with self._lock:
            already_fired = self._fired
            self._fired = True
        name = self._processor.type if self._processor is not None else "handler"
        if already_fired:
            violation = ContractViolation(f"completion handler of [{name}] invoked more than once")
            logger.error(str(violation))
            raise violation
        if result is not None and error is not None:
            error = ContractViolation(f"[{name}] completed with both a result and an error: {error!r}")
            logger.error(str(error))
            result = None
        self._handler(result, error)


def attribute_error(error: BaseException, processor: Processor) -> BaseException:
    """Wrap foreign exceptions as ExecutionError and fill in processor details."""
    if isinstance(error, ExecutionError):
        if error.processor_type is None:
            error.processor_type = processor.type
            error.processor_tag = processor.tag
        return error
    if isinstance(error, IngestError):
        return error
    wrapped = ExecutionError(f"{type(error).__name__}: {error}", processor.type, processor.tag)
    wrapped.__cause__ = error
    return wrapped


def run_processor(processor: Processor, document: IngestDocument, handler: Handler) -> None:
    """
    Invoke a processor through the execute form it implements.

    Errors raised by the processor are delivered to ``handler``; errors
    raised by ``handler`` itself propagate to the caller.
    """
    if processor.is_async:
        latch = CompletionLatch(lambda result, error: handler(
            result, attribute_error(error, processor) if error is not None else None
        ), processor)
        try:
            processor.execute_async(document, latch)
        except ContractViolation:
            raise
        except Exception as e:
            if latch.fired:
                logger.error(f"Processor [{processor.type}] raised after completing: {e!r}")
                raise ContractViolation(
                    f"processor [{processor.type}] raised after completing"
                ) from e
            latch(None, e)
        return

    try:
        result = processor.execute(document)
    except Exception as e:
        handler(None, attribute_error(e, processor))
        return
    handler(result, None)


def execute_inline(run: Callable[[IngestDocument, Handler], None],
                   document: IngestDocument, name: str) -> Optional[IngestDocument]:
    """
    Drive a callback-style run to completion on the calling thread.

    Used by composite processors to offer the synchronous execute form when
    all of their children are synchronous.
    """
    outcome = []
    run(document, lambda result, error: outcome.append((result, error)))
    if not outcome:
        raise ContractViolation(f"[{name}] did not complete synchronously")
    result, error = outcome[0]
    if error is not None:
        raise error
    return result
