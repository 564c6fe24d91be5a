"""
Pipelines: ordered chains of compound processors.

A Pipeline is itself a Processor, which is how one pipeline calls another.
While it runs, its id sits on the document's pipeline call stack so that a
pipeline reached again through itself fails with PipelineCycle instead of
recursing.
"""

import logging
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.document import IngestDocument
from ..core.exceptions import InvalidConfigValue, PipelineCycle, is_recoverable
from ..core.processor import Handler, Parameters, Processor, execute_inline
from .chain import ChainRunner, run_chain
from .compound import CompoundProcessor, pop_failure_metadata, push_failure_metadata

if TYPE_CHECKING:
    from .registry import ProcessorRegistry

logger = logging.getLogger(__name__)


class PipelineDefinition(BaseModel):
    """Declarative pipeline definition as held by the pipeline store."""
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    id: str = Field(min_length=1)
    version: Optional[int] = None
    description: Optional[str] = None
    processors: List[Dict[str, Any]] = []
    on_failure: Optional[List[Dict[str, Any]]] = None
    meta: Optional[Dict[str, Any]] = Field(None, alias="_meta")

    @classmethod
    def parse(cls, definition: Dict[str, Any]) -> "PipelineDefinition":
        try:
            return cls.model_validate(definition)
        except ValidationError as e:
            raise InvalidConfigValue(f"invalid pipeline definition: {e}") from e


class Pipeline(Processor):
    """
    An ordered sequence of compound processors with a pipeline-level on-failure chain.

    The pipeline-level chain runs when a step failure was not handled by the
    step itself. If it completes, the document is kept and the remaining
    steps are not run.
    """

    TYPE = "pipeline"

    def __init__(self, pipeline_id: str,
                 steps: List[CompoundProcessor],
                 on_failure: Optional[List[CompoundProcessor]] = None,
                 version: Optional[int] = None,
                 description: Optional[str] = None,
                 meta: Optional[Dict[str, Any]] = None):
        """
        Initialize a pipeline.

        Args:
            pipeline_id: Id the pipeline is registered under
            steps: Compound processors run in order
            on_failure: Optional pipeline-level recovery chain
            version: Optional user-supplied version
            description: Optional human readable description
            meta: Optional free-form metadata
        """
        super().__init__(tag=pipeline_id, description=description)
        self.id = pipeline_id
        self.steps = list(steps)
        self.on_failure = list(on_failure or [])
        self.version = version
        self.meta = meta or {}
        self._is_async = any(step.is_async for step in self.steps + self.on_failure)

    @classmethod
    def create(cls, definition: PipelineDefinition, registry: "ProcessorRegistry",
               parameters: Parameters) -> "Pipeline":
        """Build a pipeline from its definition. Configuration errors propagate."""
        steps = registry.create_chain(definition.processors, parameters)
        on_failure = None
        if definition.on_failure is not None:
            if not definition.on_failure:
                raise InvalidConfigValue("pipeline [on_failure] must not be empty",
                                         property_name="on_failure")
            on_failure = registry.create_chain(definition.on_failure, parameters)
        pipeline = cls(definition.id, steps, on_failure, definition.version,
                       definition.description, definition.meta)
        logger.info(f"Built pipeline '{pipeline.id}' with {len(steps)} processors"
                    f"{' (async)' if pipeline.is_async else ''}")
        return pipeline

    @property
    def is_async(self) -> bool:
        return self._is_async

    def execute(self, document: IngestDocument) -> Optional[IngestDocument]:
        if self.is_async:
            return super().execute(document)
        return execute_inline(self.run, document, f"pipeline:{self.id}")

    def execute_async(self, document: IngestDocument, handler: Handler) -> None:
        if not self.is_async:
            super().execute_async(document, handler)
            return
        self.run(document, handler)

    def run(self, document: IngestDocument, handler: Handler) -> None:
        """Run every step in order, then the on-failure chain if a step failed."""
        try:
            frame = document.metadata.enter_pipeline(self.id)
        except PipelineCycle as e:
            logger.error(str(e))
            handler(None, e)
            return

        def finish(result: Optional[IngestDocument], error: Optional[BaseException]) -> None:
            frame.release()
            handler(result, error)

        def after_steps(result: Optional[IngestDocument], error: Optional[BaseException]) -> None:
            if error is None or not self.on_failure or not is_recoverable(error):
                finish(result, error)
                return
            current = runner.document
            logger.warning(f"Pipeline '{self.id}' failed on document {current.metadata.id}, "
                           f"running {len(self.on_failure)} on-failure processors: {error}")
            previous = push_failure_metadata(current, error)

            def on_recovered(recovered: Optional[IngestDocument], recovery_error: Optional[BaseException]) -> None:
                pop_failure_metadata(current, previous)
                finish(recovered, recovery_error)

            run_chain(self.on_failure, current, on_recovered)

        runner = ChainRunner(self.steps, document, after_steps)
        try:
            runner.start()
        except BaseException:
            frame.release()
            raise

    def processor_stats(self) -> List[Dict[str, Any]]:
        """Per-processor execution stats in pipeline order."""
        return [
            dict(type=step.type, tag=step.tag, **step.stats.to_dict())
            for step in self.steps
        ]

    def __repr__(self) -> str:
        return f"Pipeline(id={self.id!r}, version={self.version!r}, steps={len(self.steps)})"
