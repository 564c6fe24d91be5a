"""
Pipeline engine.

Compound processors, pipelines, the processor registry, the pipeline store
and the executor that drives documents through them.
"""

from .chain import ChainRunner, run_chain
from .compound import CompoundProcessor, ProcessorStats
from .pipeline import Pipeline, PipelineDefinition
from .registry import ProcessorRegistry, ProcessorFactory
from .store import PipelineStore
from .executor import (
    PipelineExecutor,
    Outcome,
    OutcomeStatus,
    Kept,
    Dropped,
    Failed,
)

__all__ = [
    'ChainRunner',
    'run_chain',
    'CompoundProcessor',
    'ProcessorStats',
    'Pipeline',
    'PipelineDefinition',
    'ProcessorRegistry',
    'ProcessorFactory',
    'PipelineStore',
    'PipelineExecutor',
    'Outcome',
    'OutcomeStatus',
    'Kept',
    'Dropped',
    'Failed',
]
