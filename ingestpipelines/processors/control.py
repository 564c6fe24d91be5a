"""
Control-flow processors.

- ``fail``: raises a ProcessorFailure with a configured message
- ``drop``: drops the document
- ``pipeline``: runs another registered pipeline, resolved on every execution
- ``reroute``: sends the document to another index and stops the current pipelines
- ``foreach``: runs one processor for every element of a list field
"""

import logging
from typing import Any, List, Optional

from ..core.document import IngestDocument
from ..core.exceptions import FieldNotFound, PipelineNotFound, ProcessorFailure
from ..core.processor import Handler, Parameters, Processor, execute_inline
from ..pipelines.chain import run_chain
from ..pipelines.compound import CompoundProcessor
from ..pipelines.registry import read_bool, read_map, read_str

logger = logging.getLogger(__name__)

_MISSING = object()


class FailProcessor(Processor):
    """Fails with a configured message. Fields can be referenced as ``{{path}}``."""

    TYPE = "fail"

    def __init__(self, tag: Optional[str], description: Optional[str], message: str):
        super().__init__(tag, description)
        self.message = message

    def execute(self, document: IngestDocument) -> Optional[IngestDocument]:
        raise ProcessorFailure(render_template(self.message, document), self.type, self.tag)


def create_fail(registry, tag, description, config, parameters) -> FailProcessor:
    return FailProcessor(tag, description, read_str(FailProcessor.TYPE, tag, config, "message"))


class DropProcessor(Processor):
    """Drops the document. Usually combined with an ``if`` condition."""

    TYPE = "drop"

    def execute(self, document: IngestDocument) -> Optional[IngestDocument]:
        return None


def create_drop(registry, tag, description, config, parameters) -> DropProcessor:
    return DropProcessor(tag, description)


class PipelineProcessor(Processor):
    """
    Runs another pipeline by name.

    The target is looked up in the store on every execution, so it may be
    registered after this processor was built. Cycles are detected by the
    target pipeline itself.

    The target is unknown until execution, so this processor is always
    asynchronous. A pipeline containing it must be driven through ``run``
    (or an executor); its synchronous ``execute`` raises ContractViolation.
    """

    TYPE = "pipeline"

    def __init__(self, tag: Optional[str], description: Optional[str], name: str,
                 store: Any, ignore_missing_pipeline: bool = False):
        super().__init__(tag, description)
        self.pipeline_name = name
        self.store = store
        self.ignore_missing_pipeline = ignore_missing_pipeline

    @property
    def is_async(self) -> bool:
        return True

    def execute_async(self, document: IngestDocument, handler: Handler) -> None:
        pipeline = self.store.get(self.pipeline_name) if self.store is not None else None
        if pipeline is None:
            if self.ignore_missing_pipeline:
                handler(document, None)
            else:
                handler(None, PipelineNotFound(self.pipeline_name))
            return
        pipeline.run(document, handler)


def create_pipeline(registry, tag, description, config, parameters: Parameters) -> PipelineProcessor:
    t = PipelineProcessor.TYPE
    return PipelineProcessor(
        tag, description,
        read_str(t, tag, config, "name"),
        parameters.store,
        read_bool(t, tag, config, "ignore_missing_pipeline", False),
    )


class RerouteProcessor(Processor):
    """
    Routes the document to another index.

    The remaining processors of every pipeline in the current execution are
    skipped; the executor then runs the default pipeline of the destination.
    """

    TYPE = "reroute"

    def __init__(self, tag: Optional[str], description: Optional[str], destination: str):
        super().__init__(tag, description)
        self.destination = destination

    def execute(self, document: IngestDocument) -> Optional[IngestDocument]:
        destination = render_template(self.destination, document)
        logger.debug(f"Rerouting document {document.metadata.id} from "
                     f"'{document.metadata.index}' to '{destination}'")
        document.metadata.reroute(destination)
        return document


def create_reroute(registry, tag, description, config, parameters) -> RerouteProcessor:
    return RerouteProcessor(tag, description, read_str(RerouteProcessor.TYPE, tag, config, "destination"))


class _ElementStep:
    """Runs the foreach processor for one list element exposed as ``_ingest._value``."""

    def __init__(self, owner: "ForEachProcessor", values: list, position: int):
        self.owner = owner
        self.values = values
        self.position = position

    def run(self, document: IngestDocument, handler: Handler) -> None:
        ingest = document.metadata.ingest
        previous = ingest.get("_value", _MISSING)
        ingest["_value"] = self.values[self.position]

        def on_complete(result: Optional[IngestDocument], error: Optional[BaseException]) -> None:
            if error is None and result is not None:
                self.values[self.position] = ingest.get("_value")
            if previous is _MISSING:
                ingest.pop("_value", None)
            else:
                ingest["_value"] = previous
            handler(result, error)

        self.owner.processor.run(document, on_complete)


class ForEachProcessor(Processor):
    """Applies a processor to every element of a list field, in order."""

    TYPE = "foreach"

    def __init__(self, tag: Optional[str], description: Optional[str], field: str,
                 processor: CompoundProcessor, ignore_missing: bool = False):
        super().__init__(tag, description)
        self.field = field
        self.processor = processor
        self.ignore_missing = ignore_missing

    @property
    def is_async(self) -> bool:
        return self.processor.is_async

    def execute(self, document: IngestDocument) -> Optional[IngestDocument]:
        if self.is_async:
            return super().execute(document)
        return execute_inline(self._run, document, self.type)

    def execute_async(self, document: IngestDocument, handler: Handler) -> None:
        if not self.is_async:
            super().execute_async(document, handler)
            return
        self._run(document, handler)

    def _run(self, document: IngestDocument, handler: Handler) -> None:
        values = document.get_field_value(self.field, None)
        if values is None:
            if self.ignore_missing:
                handler(document, None)
            else:
                handler(None, FieldNotFound(self.field, "cannot be iterated"))
            return
        if not isinstance(values, list):
            handler(None, ProcessorFailure(f"field [{self.field}] of type [{type(values).__name__}] "
                                           f"is not a list"))
            return
        steps: List[_ElementStep] = [_ElementStep(self, values, i) for i in range(len(values))]
        run_chain(steps, document, handler)


def create_foreach(registry, tag, description, config, parameters) -> ForEachProcessor:
    t = ForEachProcessor.TYPE
    field = read_str(t, tag, config, "field")
    ignore_missing = read_bool(t, tag, config, "ignore_missing", False)
    inner = registry.create_processor(read_map(t, tag, config, "processor"), parameters)
    return ForEachProcessor(tag, description, field, inner, ignore_missing)


def render_template(template: str, document: IngestDocument) -> str:
    """Replace ``{{path}}`` placeholders with field values (missing fields render empty)."""
    if "{{" not in template:
        return template
    parts = []
    rest = template
    while "{{" in rest:
        before, _, after = rest.partition("{{")
        path, closed, rest = after.partition("}}")
        parts.append(before)
        if not closed:
            parts.append("{{" + path)
            rest = ""
            break
        value = document.get_field_value(path.strip(), "")
        parts.append(str(value))
    parts.append(rest)
    return "".join(parts)
