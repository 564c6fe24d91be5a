"""
Built-in processors.

Each processor type is registered under its ``TYPE`` name by
``default_factories()``.
"""

from typing import Dict

from .fields import (
    SetProcessor,
    RemoveProcessor,
    RenameProcessor,
    AppendProcessor,
    ConvertProcessor,
    LowercaseProcessor,
    UppercaseProcessor,
    TrimProcessor,
    MultiplyProcessor,
    create_set,
    create_remove,
    create_rename,
    create_append,
    create_convert,
    create_multiply,
    string_factory,
)
from .control import (
    FailProcessor,
    DropProcessor,
    PipelineProcessor,
    RerouteProcessor,
    ForEachProcessor,
    create_fail,
    create_drop,
    create_pipeline,
    create_reroute,
    create_foreach,
)
from .enrich import EnrichProcessor, create_enrich


def default_factories() -> Dict[str, object]:
    """Factories for every built-in processor, keyed by type name."""
    return {
        SetProcessor.TYPE: create_set,
        RemoveProcessor.TYPE: create_remove,
        RenameProcessor.TYPE: create_rename,
        AppendProcessor.TYPE: create_append,
        ConvertProcessor.TYPE: create_convert,
        LowercaseProcessor.TYPE: string_factory(LowercaseProcessor),
        UppercaseProcessor.TYPE: string_factory(UppercaseProcessor),
        TrimProcessor.TYPE: string_factory(TrimProcessor),
        MultiplyProcessor.TYPE: create_multiply,
        FailProcessor.TYPE: create_fail,
        DropProcessor.TYPE: create_drop,
        PipelineProcessor.TYPE: create_pipeline,
        RerouteProcessor.TYPE: create_reroute,
        ForEachProcessor.TYPE: create_foreach,
        EnrichProcessor.TYPE: create_enrich,
    }


__all__ = [
    'SetProcessor',
    'RemoveProcessor',
    'RenameProcessor',
    'AppendProcessor',
    'ConvertProcessor',
    'LowercaseProcessor',
    'UppercaseProcessor',
    'TrimProcessor',
    'MultiplyProcessor',
    'FailProcessor',
    'DropProcessor',
    'PipelineProcessor',
    'RerouteProcessor',
    'ForEachProcessor',
    'EnrichProcessor',
    'default_factories',
]
