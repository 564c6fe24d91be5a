"""
Core components for ingest pipelines.

This package provides the document model, the processor contract, the error
hierarchy and the runtime services (scheduler, generic executor, lookup
client, condition compiler) that processors are built against.
"""

from .document import IngestDocument, IngestMetadata, PipelineFrame, ON_FAILURE_KEY
from .context import PipelineContext
from .processor import (
    Processor,
    ProcessorConfig,
    Parameters,
    CompletionLatch,
    Handler,
    run_processor,
    execute_inline,
)
from .scheduler import Scheduler, ScheduledHandle, GenericExecutor
from .conditions import ConditionCompiler
from .lookup import LookupClient, HttpLookupClient
from .exceptions import (
    IngestError,
    ConfigurationError,
    UnknownProcessorType,
    MissingConfigField,
    InvalidConfigValue,
    UnconsumedConfigFields,
    ExecutionError,
    DocumentError,
    FieldNotFound,
    TypeConflict,
    ProcessorFailure,
    PipelineNotFound,
    ExecutionTimeout,
    PipelineCycle,
    ContractViolation,
)

__all__ = [
    'IngestDocument',
    'IngestMetadata',
    'PipelineFrame',
    'ON_FAILURE_KEY',
    'PipelineContext',
    'Processor',
    'ProcessorConfig',
    'Parameters',
    'CompletionLatch',
    'Handler',
    'run_processor',
    'execute_inline',
    'Scheduler',
    'ScheduledHandle',
    'GenericExecutor',
    'ConditionCompiler',
    'LookupClient',
    'HttpLookupClient',
    'IngestError',
    'ConfigurationError',
    'UnknownProcessorType',
    'MissingConfigField',
    'InvalidConfigValue',
    'UnconsumedConfigFields',
    'ExecutionError',
    'DocumentError',
    'FieldNotFound',
    'TypeConflict',
    'ProcessorFailure',
    'PipelineNotFound',
    'ExecutionTimeout',
    'PipelineCycle',
    'ContractViolation',
]
