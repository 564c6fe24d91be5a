"""
Enrichment processor.

Looks a field value up through the configured LookupClient and writes the
result to a target field. The lookup runs on the generic executor; failed
attempts are retried with exponential backoff through the scheduler.
"""

import copy
import logging
from typing import Any, Optional

from ..core.document import IngestDocument
from ..core.exceptions import (
    DocumentError,
    FieldNotFound,
    InvalidConfigValue,
    ProcessorFailure,
)
from ..core.lookup import LookupClient
from ..core.processor import Handler, Parameters, Processor
from ..core.scheduler import GenericExecutor, Scheduler
from ..pipelines.registry import read_bool, read_float, read_int, read_str

logger = logging.getLogger(__name__)


class EnrichProcessor(Processor):
    """
    Asynchronous lookup-based enrichment.

    Config:
        field: Field holding the lookup key
        target_field: Field the looked-up value is written to
        ignore_missing: Pass documents without ``field`` through unchanged
        override: Replace an existing ``target_field`` (default true)
        max_retries: Retries after a failed lookup
        backoff: Delay before the first retry in seconds, doubled on each retry
    """

    TYPE = "enrich"

    def __init__(self, tag: Optional[str], description: Optional[str],
                 field: str, target_field: str,
                 client: LookupClient, executor: GenericExecutor, scheduler: Scheduler,
                 context=None, ignore_missing: bool = False, override: bool = True,
                 max_retries: int = 3, backoff: float = 0.5):
        super().__init__(tag, description)
        self.field = field
        self.target_field = target_field
        self.client = client
        self.executor = executor
        self.scheduler = scheduler
        self.context = context
        self.ignore_missing = ignore_missing
        self.override = override
        self.max_retries = max_retries
        self.backoff = backoff

    @property
    def is_async(self) -> bool:
        return True

    def execute_async(self, document: IngestDocument, handler: Handler) -> None:
        try:
            key = document.get_field_value(self.field)
        except FieldNotFound as e:
            if self.ignore_missing:
                handler(document, None)
            else:
                handler(None, e)
            return
        if not self.override and document.has_field(self.target_field):
            handler(document, None)
            return
        headers = self.context.headers if self.context is not None else None
        self._attempt(document, key, headers, handler, 0)

    def _attempt(self, document: IngestDocument, key: Any, headers, handler: Handler, attempt: int) -> None:
        def work():
            try:
                value = self.client.lookup(key, headers)
            except Exception as e:
                self._on_lookup_error(document, key, headers, handler, attempt, e)
                return
            self._apply(document, value, handler)

        self.executor.submit(work)

    def _on_lookup_error(self, document, key, headers, handler: Handler, attempt: int, error: Exception) -> None:
        if attempt < self.max_retries:
            delay = self.backoff * (2 ** attempt)
            logger.warning(f"{self.type}: Lookup of [{key}] failed (attempt {attempt + 1}), "
                           f"retrying in {delay}s: {error}")
            handle = self.scheduler.schedule(
                delay, lambda: self._attempt(document, key, headers, handler, attempt + 1)
            )
            document.metadata.track_scheduled(handle)
            return
        logger.error(f"{self.type}: Lookup of [{key}] failed after {attempt + 1} attempts")
        if isinstance(error, ProcessorFailure):
            handler(None, error)
        else:
            failure = ProcessorFailure(f"lookup of [{key}] failed: {error}", self.type, self.tag)
            failure.__cause__ = error
            handler(None, failure)

    def _apply(self, document: IngestDocument, value: Any, handler: Handler) -> None:
        if document.metadata.closed:
            logger.debug(f"{self.type}: Document {document.metadata.id} already has an outcome, "
                         f"not writing [{self.target_field}]")
            handler(document, None)
            return
        if value is None:
            logger.debug(f"{self.type}: No entry for document {document.metadata.id}")
            handler(document, None)
            return
        try:
            document.set_field_value(self.target_field, copy.deepcopy(value))
        except DocumentError as e:
            handler(None, e)
            return
        handler(document, None)


def create_enrich(registry, tag, description, config, parameters: Parameters) -> EnrichProcessor:
    t = EnrichProcessor.TYPE
    settings = parameters.settings
    field = read_str(t, tag, config, "field")
    target_field = read_str(t, tag, config, "target_field")
    ignore_missing = read_bool(t, tag, config, "ignore_missing", False)
    override = read_bool(t, tag, config, "override", True)
    max_retries = read_int(t, tag, config, "max_retries", settings.lookup_retries)
    backoff = read_float(t, tag, config, "backoff", settings.lookup_backoff)
    if max_retries < 0:
        raise InvalidConfigValue("must not be negative", t, tag, "max_retries")
    if parameters.lookup_client is None:
        raise InvalidConfigValue("no lookup client is configured", t, tag)
    if parameters.generic_executor is None or parameters.scheduler is None:
        raise InvalidConfigValue("requires a generic executor and a scheduler", t, tag)
    return EnrichProcessor(tag, description, field, target_field,
                           parameters.lookup_client, parameters.generic_executor,
                           parameters.scheduler, parameters.context,
                           ignore_missing, override, max_retries, backoff)
