"""
Example usage of the ingest pipeline engine.

This module builds a small log-ingestion setup and runs documents through it:
- ``normalize-logs``: trims and lowercases the level, converts the status
  code, drops debug lines, recovers from a missing status, and hands
  errors over to a second pipeline
- ``tag-errors``: tags error documents and reroutes them to an errors index
- ``errors-default``: the default pipeline of the errors index
"""

import sys
import logging
from typing import Any, Dict, List

from ..core.document import IngestDocument
from .executor import PipelineExecutor
from .store import PipelineStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)

SAMPLE_PIPELINES: List[Dict[str, Any]] = [
    {
        "id": "normalize-logs",
        "description": "Normalize raw log lines",
        "processors": [
            {"trim": {"field": "level"}},
            {"lowercase": {"field": "level"}},
            {"drop": {"if": {"equals": {"field": "level", "value": "debug"}}}},
            {"convert": {
                "field": "status",
                "type": "integer",
                "on_failure": [
                    {"set": {"field": "status", "value": 0}},
                    {"set": {"field": "status_error", "copy_from": "_ingest.on_failure.message"}},
                ],
            }},
            {"pipeline": {"name": "tag-errors", "if": {"equals": {"field": "level", "value": "error"}}}},
            {"set": {"field": "normalized", "value": True}},
        ],
    },
    {
        "id": "tag-errors",
        "processors": [
            {"append": {"field": "tags", "value": "error"}},
            {"reroute": {"destination": "logs-errors"}},
        ],
    },
    {
        "id": "errors-default",
        "processors": [
            {"set": {"field": "alert", "value": True}},
        ],
    },
]


def create_sample_executor() -> PipelineExecutor:
    """
    Create an executor with the sample pipelines registered.

    Returns:
        Configured PipelineExecutor instance
    """
    store = PipelineStore()
    for definition in SAMPLE_PIPELINES:
        store.put(definition)
    store.set_default_pipeline("logs-errors", "errors-default")
    return PipelineExecutor(store)


def run_example(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Run the sample pipeline over raw records.

    Args:
        records: Raw log records

    Returns:
        One summary per record with its outcome and, if kept, the resulting document
    """
    executor = create_sample_executor()
    documents = [
        IngestDocument(record, index="logs", doc_id=str(i))
        for i, record in enumerate(records)
    ]

    logger.info(f"Running {len(documents)} documents through 'normalize-logs'")
    outcomes = executor.execute_bulk(documents, "normalize-logs")

    results = []
    for document, outcome in zip(documents, outcomes):
        summary = {"id": document.metadata.id, "outcome": outcome.status.value}
        if outcome.status.value == "kept":
            summary["index"] = outcome.document.metadata.index
            summary["source"] = outcome.document.to_dict()
        elif outcome.status.value == "failed":
            summary["error"] = str(outcome.error)
        results.append(summary)

    logger.info(f"Executor stats: {executor.stats()['total']}")
    executor.close()
    return results


if __name__ == "__main__":
    sample_records = [
        {"message": "service started", "level": " INFO ", "status": "200"},
        {"message": "cache miss", "level": "DEBUG", "status": "200"},
        {"message": "upstream timeout", "level": "ERROR", "status": "504"},
        {"message": "bad status", "level": "warn", "status": "n/a"},
    ]

    for result in run_example(sample_records):
        print(result)
