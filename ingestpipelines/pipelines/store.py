"""
Pipeline store.

Holds pipeline definitions keyed by id, the pipelines built from them, and
the default pipeline of each index (used after a reroute). Pipelines are
built when they are put, so a definition with configuration errors is never
registered. Lookups go through the store on every execution.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..core.processor import Parameters
from .pipeline import Pipeline, PipelineDefinition
from .registry import ProcessorRegistry

logger = logging.getLogger(__name__)


class PipelineStore:
    """
    Registry of named pipelines.

    Writes replace the internal maps wholesale, so readers on other threads
    always see a consistent snapshot without taking the lock.
    """

    def __init__(self, registry: Optional[ProcessorRegistry] = None,
                 parameters: Optional[Parameters] = None):
        """
        Initialize a pipeline store.

        Args:
            registry: Processor registry used to build pipelines
                (defaults to the built-in processors)
            parameters: Runtime services handed to processor factories
        """
        self.registry = registry or ProcessorRegistry.with_defaults()
        self.parameters = parameters or Parameters()
        self.parameters.store = self
        self._lock = threading.Lock()
        self._pipelines: Dict[str, Pipeline] = {}
        self._definitions: Dict[str, PipelineDefinition] = {}
        self._default_pipelines: Dict[str, str] = {}

    def put(self, definition: Union[Dict[str, Any], PipelineDefinition]) -> Pipeline:
        """
        Build and register a pipeline, replacing any pipeline with the same id.

        Raises:
            ConfigurationError: If the definition cannot be built
        """
        if not isinstance(definition, PipelineDefinition):
            definition = PipelineDefinition.parse(definition)
        pipeline = Pipeline.create(definition, self.registry, self.parameters)
        with self._lock:
            definitions = dict(self._definitions)
            definitions[definition.id] = definition
            self._definitions = definitions
        self.put_pipeline(pipeline)
        return pipeline

    def put_pipeline(self, pipeline: Pipeline) -> None:
        """Register an already built pipeline."""
        with self._lock:
            pipelines = dict(self._pipelines)
            replaced = pipeline.id in pipelines
            pipelines[pipeline.id] = pipeline
            self._pipelines = pipelines
        logger.info(f"{'Updated' if replaced else 'Registered'} pipeline '{pipeline.id}'")

    def get(self, pipeline_id: str) -> Optional[Pipeline]:
        return self._pipelines.get(pipeline_id)

    def get_definition(self, pipeline_id: str) -> Optional[PipelineDefinition]:
        return self._definitions.get(pipeline_id)

    def delete(self, pipeline_id: str) -> bool:
        with self._lock:
            if pipeline_id not in self._pipelines:
                return False
            pipelines = dict(self._pipelines)
            del pipelines[pipeline_id]
            definitions = dict(self._definitions)
            definitions.pop(pipeline_id, None)
            self._pipelines, self._definitions = pipelines, definitions
        logger.info(f"Deleted pipeline '{pipeline_id}'")
        return True

    def ids(self) -> List[str]:
        return sorted(self._pipelines)

    def set_default_pipeline(self, index: str, pipeline_id: Optional[str]) -> None:
        """Set (or with None, clear) the pipeline run for documents routed to ``index``."""
        with self._lock:
            defaults = dict(self._default_pipelines)
            if pipeline_id is None:
                defaults.pop(index, None)
            else:
                defaults[index] = pipeline_id
            self._default_pipelines = defaults

    def default_pipeline(self, index: Optional[str]) -> Optional[str]:
        if index is None:
            return None
        return self._default_pipelines.get(index)

    def load_json(self, path: Union[str, Path]) -> List[Pipeline]:
        """
        Load pipelines from a JSON file.

        The file holds ``{"pipelines": [definition, ...], "default_pipelines": {index: id}}``.
        Every definition is built before any is registered, so a bad file
        leaves the store unchanged.
        """
        with open(path, "r") as f:
            data = json.load(f)

        definitions = [PipelineDefinition.parse(item) for item in data.get("pipelines", [])]
        pipelines = [Pipeline.create(definition, self.registry, self.parameters)
                     for definition in definitions]
        with self._lock:
            stored = dict(self._definitions)
            stored.update({definition.id: definition for definition in definitions})
            self._definitions = stored
        for pipeline in pipelines:
            self.put_pipeline(pipeline)
        for index, pipeline_id in data.get("default_pipelines", {}).items():
            self.set_default_pipeline(index, pipeline_id)

        logger.info(f"Loaded {len(pipelines)} pipelines from {path}")
        return pipelines
