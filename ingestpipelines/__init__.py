"""
Ingest Pipelines

A document ingest engine that runs ordered chains of processors over
structured documents.

Features:
- Synchronous and asynchronous processors with exactly-once completion
- Guard conditions and nested on-failure chains per processor
- Pipelines callable from other pipelines, with cycle detection
- Drop, fail and reroute outcomes
- Processors built from declarative configuration through a factory registry
"""

from .config import EngineSettings, configure_logging
from .core import (
    IngestDocument,
    IngestMetadata,
    PipelineContext,
    Processor,
    ProcessorConfig,
    Parameters,
    Scheduler,
    ScheduledHandle,
    GenericExecutor,
    LookupClient,
    HttpLookupClient,
    ConditionCompiler,
    IngestError,
    ConfigurationError,
    ExecutionError,
    PipelineCycle,
    ContractViolation,
)
from .pipelines import (
    CompoundProcessor,
    Pipeline,
    PipelineDefinition,
    ProcessorRegistry,
    PipelineStore,
    PipelineExecutor,
    OutcomeStatus,
    Kept,
    Dropped,
    Failed,
)

__all__ = [
    'EngineSettings',
    'configure_logging',
    'IngestDocument',
    'IngestMetadata',
    'PipelineContext',
    'Processor',
    'ProcessorConfig',
    'Parameters',
    'Scheduler',
    'ScheduledHandle',
    'GenericExecutor',
    'LookupClient',
    'HttpLookupClient',
    'ConditionCompiler',
    'IngestError',
    'ConfigurationError',
    'ExecutionError',
    'PipelineCycle',
    'ContractViolation',
    'CompoundProcessor',
    'Pipeline',
    'PipelineDefinition',
    'ProcessorRegistry',
    'PipelineStore',
    'PipelineExecutor',
    'OutcomeStatus',
    'Kept',
    'Dropped',
    'Failed',
]
