"""
Exception hierarchy for the ingest pipeline engine.

Errors fall into four families:
- ConfigurationError: raised while building processors and pipelines.
  A pipeline that fails to build is never registered.
- ExecutionError: a processor failed on a particular document. These are
  offered to on-failure chains before they reach the caller.
- PipelineCycle: a pipeline invoked itself, directly or transitively.
- ContractViolation: a processor broke the execution contract (wrong execute
  form, completion handler called twice). This is an engine defect and is
  never handed to recovery chains.
"""

from typing import Iterable, Optional


class IngestError(Exception):
    """Base exception for all ingest pipeline errors."""
    pass


class ConfigurationError(IngestError):
    """
    A processor or pipeline definition could not be built.

    Carries the processor type, tag and offending property when known so the
    message points at the right place in a large pipeline definition.
    """

    def __init__(self, message: str,
                 processor_type: Optional[str] = None,
                 processor_tag: Optional[str] = None,
                 property_name: Optional[str] = None):
        self.processor_type = processor_type
        self.processor_tag = processor_tag
        self.property_name = property_name
        prefix = ""
        if processor_type:
            prefix = f"[{processor_type}"
            if processor_tag:
                prefix += f":{processor_tag}"
            prefix += "] "
        if property_name:
            prefix += f"[{property_name}] "
        super().__init__(f"{prefix}{message}")


class UnknownProcessorType(ConfigurationError):
    """No factory is registered under the requested type name."""

    def __init__(self, processor_type: str, available: Iterable[str] = ()):
        available = sorted(available)
        super().__init__(
            f"No processor type exists with name [{processor_type}]. "
            f"Available: {', '.join(available) if available else '(none)'}"
        )
        self.processor_type = processor_type


class MissingConfigField(ConfigurationError):
    """A required configuration key is absent."""

    def __init__(self, property_name: str, processor_type: Optional[str] = None,
                 processor_tag: Optional[str] = None):
        super().__init__("required property is missing", processor_type,
                         processor_tag, property_name)


class InvalidConfigValue(ConfigurationError):
    """A configuration key holds a value of the wrong type or shape."""
    pass


class UnconsumedConfigFields(ConfigurationError):
    """A factory left configuration keys it did not recognise."""

    def __init__(self, fields: Iterable[str], processor_type: Optional[str] = None,
                 processor_tag: Optional[str] = None):
        self.fields = sorted(fields)
        super().__init__(f"processor does not support the parameters {self.fields}",
                         processor_type, processor_tag)


class ExecutionError(IngestError):
    """
    A processor failed while handling a document.

    When the failure originates from an arbitrary exception inside a
    processor, the original exception is chained as ``__cause__``.
    """

    def __init__(self, message: str,
                 processor_type: Optional[str] = None,
                 processor_tag: Optional[str] = None,
                 pipeline_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.processor_type = processor_type
        self.processor_tag = processor_tag
        self.pipeline_id = pipeline_id


class DocumentError(ExecutionError):
    """Base class for field-tree access errors."""
    pass


class FieldNotFound(DocumentError):
    """A read or remove addressed a path that does not exist."""

    def __init__(self, path: str, detail: Optional[str] = None):
        self.path = path
        message = f"field [{path}] not present"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class TypeConflict(DocumentError):
    """A write would have to pass through a value that is not a container."""

    def __init__(self, path: str, detail: str):
        self.path = path
        super().__init__(f"cannot set [{path}]: {detail}")


class ProcessorFailure(ExecutionError):
    """Raised deliberately by a processor, e.g. the ``fail`` processor or a failed lookup."""
    pass


class PipelineNotFound(ExecutionError):
    """A pipeline id could not be resolved from the store."""

    def __init__(self, pipeline_id: str):
        super().__init__(f"pipeline with id [{pipeline_id}] does not exist",
                         pipeline_id=pipeline_id)


class ExecutionTimeout(ExecutionError):
    """An execution did not deliver an outcome within its deadline."""
    pass


class PipelineCycle(IngestError):
    """A pipeline (or index, for reroutes) was re-entered during one execution."""

    def __init__(self, message: str, cycle: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.cycle = list(cycle or [])


class ContractViolation(IngestError):
    """A processor broke the sync/async execution contract."""
    pass


def is_recoverable(error: BaseException) -> bool:
    """Whether an error may be handed to an on-failure chain."""
    return not isinstance(error, (PipelineCycle, ContractViolation))
