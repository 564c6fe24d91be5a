"""
Document model for ingest pipelines.

An IngestDocument is a mutable tree of string-keyed fields plus a metadata
envelope (IngestMetadata) that travels with it through the processor chain.
Fields are addressed by dotted paths; numeric segments index into lists.
Paths starting with ``_ingest.`` read from the metadata envelope instead of
the document source.
"""

import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .exceptions import FieldNotFound, PipelineCycle, TypeConflict

logger = logging.getLogger(__name__)

INGEST_PREFIX = "_ingest"
ON_FAILURE_KEY = "on_failure"

_MISSING = object()


class PipelineFrame:
    """
    Scoped entry of a pipeline id on a document's call stack.

    The frame is pushed on construction and popped by ``release()``, which is
    idempotent. Use it as a context manager on synchronous paths and call
    ``release()`` from the completion handler on asynchronous ones.
    """

    def __init__(self, metadata: "IngestMetadata", pipeline_id: str):
        metadata.push_pipeline(pipeline_id)
        self._metadata = metadata
        self.pipeline_id = pipeline_id
        self._released = False

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._metadata.pop_pipeline(self.pipeline_id)

    def __enter__(self) -> "PipelineFrame":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class IngestMetadata:
    """
    Metadata envelope carried alongside a document.

    Holds the arrival timestamp, the document identity (index, id, routing),
    the pipeline call stack used for cycle detection, the list of indices the
    document has been routed to, and a free-form ``ingest`` map readable
    through ``_ingest.`` paths.
    """

    def __init__(self,
                 index: Optional[str] = None,
                 doc_id: Optional[str] = None,
                 routing: Optional[str] = None,
                 timestamp: Optional[datetime] = None):
        self.index = index
        self.id = doc_id
        self.routing = routing
        self.timestamp = timestamp or datetime.now(timezone.utc)
        self.ingest: Dict[str, Any] = {}
        self.index_history: List[str] = [index] if index else []
        self.rerouted = False
        self._pipeline_stack: List[str] = []
        self._scheduled: List[Any] = []
        self._scheduled_lock = threading.Lock()
        self._closed = False

    # Pipeline call stack

    def push_pipeline(self, pipeline_id: str) -> None:
        """Push a pipeline id, failing with PipelineCycle if it is already active."""
        if pipeline_id in self._pipeline_stack:
            cycle = self._pipeline_stack + [pipeline_id]
            raise PipelineCycle(
                f"Cycle detected for pipeline: {pipeline_id} "
                f"(call stack: {' -> '.join(cycle)})",
                cycle=cycle,
            )
        self._pipeline_stack.append(pipeline_id)

    def pop_pipeline(self, pipeline_id: str) -> None:
        if not self._pipeline_stack or self._pipeline_stack[-1] != pipeline_id:
            raise RuntimeError(
                f"pipeline stack out of order: expected [{pipeline_id}] on top of {self._pipeline_stack}"
            )
        self._pipeline_stack.pop()

    def contains_pipeline(self, pipeline_id: str) -> bool:
        return pipeline_id in self._pipeline_stack

    def enter_pipeline(self, pipeline_id: str) -> PipelineFrame:
        return PipelineFrame(self, pipeline_id)

    @property
    def pipeline_stack(self) -> List[str]:
        return list(self._pipeline_stack)

    @property
    def current_pipeline(self) -> Optional[str]:
        return self._pipeline_stack[-1] if self._pipeline_stack else None

    # Delayed callbacks

    def track_scheduled(self, handle: Any) -> None:
        """
        Register a delayed callback scheduled on behalf of this document.

        If the execution has already ended the handle is cancelled at once.
        """
        with self._scheduled_lock:
            if not self._closed:
                self._scheduled = [h for h in self._scheduled if not h.fired] + [handle]
                return
        handle.cancel()

    def cancel_scheduled(self) -> int:
        """Cancel every tracked callback and refuse new ones. Returns how many were prevented."""
        with self._scheduled_lock:
            self._closed = True
            pending, self._scheduled = self._scheduled, []
        return sum(1 for handle in pending if handle.cancel())

    @property
    def closed(self) -> bool:
        """True once the execution owning this document has delivered its outcome or timed out."""
        return self._closed

    # Redirects

    def reroute(self, index: str) -> None:
        """Point the document at a new index. The engine stops the current pipelines."""
        self.index = index
        self.rerouted = True

    def copy(self) -> "IngestMetadata":
        """Copy identity, timestamp and ingest values. Call stack and callbacks are not copied."""
        other = IngestMetadata(self.index, self.id, self.routing, self.timestamp)
        other.ingest = copy.deepcopy(self.ingest)
        other.index_history = list(self.index_history)
        other.rerouted = self.rerouted
        return other

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "id": self.id,
            "routing": self.routing,
            "timestamp": self.timestamp.isoformat(),
            "pipelines": list(self._pipeline_stack),
            "index_history": list(self.index_history),
            "ingest": copy.deepcopy(self.ingest),
        }


class IngestDocument:
    """
    A document flowing through an ingest pipeline.

    The source is owned by the single execution processing it. Processors
    read and write it in place through the path accessors below.
    """

    def __init__(self, source: Optional[Dict[str, Any]] = None,
                 metadata: Optional[IngestMetadata] = None,
                 **identity):
        self.source: Dict[str, Any] = source if source is not None else {}
        self.metadata = metadata or IngestMetadata(**identity)

    def __repr__(self) -> str:
        return f"IngestDocument(id={self.metadata.id!r}, index={self.metadata.index!r}, source={self.source!r})"

    # Reads

    def get_field_value(self, path: str, default: Any = _MISSING) -> Any:
        """
        Read the value at a dotted path.

        Args:
            path: Dotted path, e.g. ``user.name`` or ``tags.0``
            default: Returned instead of raising when the path is missing

        Returns:
            The stored value (not a copy)

        Raises:
            FieldNotFound: If the path does not exist and no default was given
        """
        try:
            return self._resolve(path)
        except FieldNotFound:
            if default is _MISSING:
                raise
            return default

    def has_field(self, path: str) -> bool:
        try:
            self._resolve(path)
        except FieldNotFound:
            return False
        return True

    def _resolve(self, path: str) -> Any:
        segments = _split(path)
        if segments[0] == INGEST_PREFIX:
            current: Any = dict(self.metadata.ingest, timestamp=self.metadata.timestamp)
            segments = segments[1:]
            if not segments:
                return current
        else:
            current = self.source
        for i, segment in enumerate(segments):
            current = _child(current, segment, path, i)
        return current

    # Writes

    def set_field_value(self, path: str, value: Any) -> None:
        """
        Write a value at a dotted path, creating intermediate objects.

        Raises:
            TypeConflict: If an intermediate segment holds a scalar, a list
                index is out of range, or the path is ``_ingest`` or
                ``_ingest.timestamp``
        """
        parent, last = self._parent_for_write(path)
        if isinstance(parent, list):
            parent[_list_index(parent, last, path)] = value
        else:
            parent[last] = value

    def append_field_value(self, path: str, value: Any) -> None:
        """Append to the list at path, converting a scalar into a list first."""
        parent, last = self._parent_for_write(path)
        values = value if isinstance(value, list) else [value]
        if isinstance(parent, list):
            index = _list_index(parent, last, path)
            existing = parent[index]
        else:
            index = last
            existing = parent.get(last, _MISSING)
        if existing is _MISSING:
            parent[index] = list(values)
        elif isinstance(existing, list):
            existing.extend(values)
        else:
            parent[index] = [existing] + list(values)

    def remove_field(self, path: str) -> None:
        root, segments = self._writable_root(path)
        parent = root
        for i, segment in enumerate(segments[:-1]):
            parent = _child(parent, segment, path, i)
        last = segments[-1]
        if isinstance(parent, dict):
            if last not in parent:
                raise FieldNotFound(path)
            del parent[last]
        elif isinstance(parent, list):
            try:
                del parent[int(last)]
            except (ValueError, IndexError):
                raise FieldNotFound(path, f"[{last}] is not a valid list index")
        else:
            raise FieldNotFound(path, f"[{segments[-2]}] is not an object or list")

    def _writable_root(self, path: str):
        segments = _split(path)
        if segments[0] != INGEST_PREFIX:
            return self.source, segments
        if len(segments) == 1 or segments[1] == "timestamp":
            raise TypeConflict(path, "ingest timestamp and the ingest root are read-only")
        return self.metadata.ingest, segments[1:]

    def _parent_for_write(self, path: str):
        current, segments = self._writable_root(path)
        for segment in segments[:-1]:
            if isinstance(current, dict):
                nxt = current.get(segment)
                if nxt is None:
                    nxt = {}
                    current[segment] = nxt
                current = nxt
            elif isinstance(current, list):
                current = current[_list_index(current, segment, path)]
            else:
                raise TypeConflict(path, f"cannot add field [{segment}] to a leaf value of type "
                                         f"{type(current).__name__}")
        if not isinstance(current, (dict, list)):
            raise TypeConflict(path, f"cannot add field [{segments[-1]}] to a leaf value of type "
                                     f"{type(current).__name__}")
        return current, segments[-1]

    # Snapshots

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy of the field tree."""
        return copy.deepcopy(self.source)

    def restore(self, snapshot: Dict[str, Any]) -> None:
        """Replace the field tree in place with a previously taken snapshot."""
        self.source.clear()
        self.source.update(copy.deepcopy(snapshot))

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self.source)

    def copy(self) -> "IngestDocument":
        return IngestDocument(copy.deepcopy(self.source), self.metadata.copy())


def _split(path: str) -> List[str]:
    if not isinstance(path, str) or not path:
        raise FieldNotFound(str(path), "path cannot be empty")
    segments = path.split(".")
    if any(segment == "" for segment in segments):
        raise FieldNotFound(path, "path contains an empty segment")
    return segments


def _child(current: Any, segment: str, path: str, position: int) -> Any:
    if isinstance(current, dict):
        if segment not in current:
            raise FieldNotFound(path)
        return current[segment]
    if isinstance(current, list):
        try:
            return current[int(segment)]
        except (ValueError, IndexError):
            raise FieldNotFound(path, f"[{segment}] is not a valid index into a list of size {len(current)}")
    raise FieldNotFound(path, f"segment {position} resolves to a leaf value")


def _list_index(values: list, segment: str, path: str) -> int:
    try:
        index = int(segment)
    except ValueError:
        raise TypeConflict(path, f"[{segment}] is not an integer, cannot be used as a list index")
    if not -len(values) <= index < len(values):
        raise TypeConflict(path, f"index [{index}] is out of bounds for a list of size {len(values)}")
    return index
