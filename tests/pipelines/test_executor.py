"""
Unit tests for the pipeline executor.

Tests outcome delivery, drops, failures and recovery, timeouts, reroutes,
pipeline cycles, bulk execution and stats.
"""

import threading
import unittest

import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../..")))

from ingestpipelines.config import EngineSettings
from ingestpipelines.core.document import IngestDocument
from ingestpipelines.core.exceptions import (
    ContractViolation,
    ExecutionTimeout,
    PipelineCycle,
    PipelineNotFound,
    ProcessorFailure,
)
from ingestpipelines.core.processor import Parameters, Processor
from ingestpipelines.pipelines.executor import (
    Dropped,
    Failed,
    Kept,
    OutcomeStatus,
    PipelineExecutor,
)
from ingestpipelines.pipelines.example import run_example
from ingestpipelines.pipelines.pipeline import Pipeline
from ingestpipelines.pipelines.store import PipelineStore
from tests.fakes import ManualScheduler, RecordingProcessor, SilentProcessor, ThreadedSetProcessor, compound


class TestExecutorOutcomes(unittest.TestCase):
    """Tests for the three terminal outcomes."""

    def setUp(self):
        self.executor = PipelineExecutor(settings=EngineSettings())
        self.store = self.executor.store

    def tearDown(self):
        self.executor.close()

    def test_guarded_step_sees_previous_write(self):
        self.store.put({"id": "p", "processors": [
            {"set": {"field": "x", "value": 1}},
            {"multiply": {"field": "x", "factor": 2, "if": {"exists": "x"}}},
        ]})
        outcome = self.executor.execute(IngestDocument({}), "p")
        self.assertIsInstance(outcome, Kept)
        self.assertEqual(outcome.document.source, {"x": 2})

    def test_failure_recovered_by_on_failure(self):
        self.store.put({"id": "p", "processors": [
            {"fail": {"message": "boom", "on_failure": [{"set": {"field": "error", "value": True}}]}},
        ]})
        outcome = self.executor.execute(IngestDocument({}), "p")
        self.assertIsInstance(outcome, Kept)
        self.assertEqual(outcome.document.source, {"error": True})

    def test_drop(self):
        self.store.put({"id": "p", "processors": [{"drop": {"if": True}}]})
        outcome = self.executor.execute(IngestDocument({}, doc_id="7"), "p")
        self.assertIsInstance(outcome, Dropped)
        self.assertEqual(outcome.document_id, "7")
        self.assertEqual(outcome.status, OutcomeStatus.DROPPED)

    def test_unrecovered_failure(self):
        self.store.put({"id": "p", "processors": [{"fail": {"message": "bad {{level}}", "tag": "f"}}]})
        outcome = self.executor.execute(IngestDocument({"level": "debug"}), "p")
        self.assertIsInstance(outcome, Failed)
        self.assertIsInstance(outcome.error, ProcessorFailure)
        self.assertEqual(str(outcome.error), "bad debug")
        self.assertEqual(outcome.error.processor_tag, "f")

    def test_failure_message_is_available_to_recovery(self):
        self.store.put({"id": "p", "processors": [
            {"fail": {"message": "broken", "on_failure": [
                {"set": {"field": "reason", "copy_from": "_ingest.on_failure.message"}},
            ]}},
        ]})
        outcome = self.executor.execute(IngestDocument({}), "p")
        self.assertEqual(outcome.document.source, {"reason": "broken"})

    def test_unknown_pipeline(self):
        outcome = self.executor.execute(IngestDocument({}), "missing")
        self.assertIsInstance(outcome, Failed)
        self.assertIsInstance(outcome.error, PipelineNotFound)

    def test_outcome_is_delivered_exactly_once(self):
        self.store.put({"id": "p", "processors": [{"set": {"field": "x", "value": 1}}]})
        outcomes = []
        self.executor.run(IngestDocument({}), "p", outcomes.append)
        self.assertEqual(len(outcomes), 1)

    def test_contract_violation_fails_execution(self):
        class AsyncWithoutImplementation(Processor):
            TYPE = "broken"

            @property
            def is_async(self):
                return True

        self.store.put_pipeline(Pipeline("p", [compound(AsyncWithoutImplementation())]))
        outcome = self.executor.execute(IngestDocument({}), "p")
        self.assertIsInstance(outcome, Failed)
        self.assertIsInstance(outcome.error, ContractViolation)


class TestExecutorAsync(unittest.TestCase):
    """Tests for pipelines with asynchronous processors."""

    def setUp(self):
        self.executor = PipelineExecutor(settings=EngineSettings())
        self.store = self.executor.store

    def tearDown(self):
        self.executor.close()

    def test_async_step_ordering(self):
        after = RecordingProcessor("c", 3)
        self.store.put_pipeline(Pipeline("p", [
            compound(RecordingProcessor("a", 1)),
            compound(ThreadedSetProcessor("b", 2)),
            compound(after),
        ]))
        outcome = self.executor.execute(IngestDocument({}), "p")
        self.assertIsInstance(outcome, Kept)
        self.assertEqual(after.seen, [{"a": 1, "b": 2}])
        self.assertEqual(outcome.document.source, {"a": 1, "b": 2, "c": 3})

    def test_async_drop(self):
        after = RecordingProcessor("after", True)
        self.store.put_pipeline(Pipeline("p", [compound(ThreadedSetProcessor("a", 1, drop=True)),
                                               compound(after)]))
        outcome = self.executor.execute(IngestDocument({}), "p")
        self.assertIsInstance(outcome, Dropped)
        self.assertEqual(after.seen, [])

    def test_timeout(self):
        self.store.put_pipeline(Pipeline("p", [compound(SilentProcessor())]))
        outcome = self.executor.execute(IngestDocument({}), "p", timeout=0.05)
        self.assertIsInstance(outcome, Failed)
        self.assertIsInstance(outcome.error, ExecutionTimeout)

    def test_default_timeout_from_settings(self):
        executor = PipelineExecutor(settings=EngineSettings(default_timeout=0.05))
        try:
            executor.store.put_pipeline(Pipeline("p", [compound(SilentProcessor())]))
            outcome = executor.execute(IngestDocument({}), "p")
            self.assertIsInstance(outcome.error, ExecutionTimeout)
        finally:
            executor.close()

    def test_default_settings_resolve_silent_processor(self):
        scheduler = ManualScheduler()
        executor = PipelineExecutor(parameters=Parameters.create(EngineSettings(), scheduler=scheduler))
        try:
            executor.store.put_pipeline(Pipeline("p", [compound(SilentProcessor())]))
            outcomes = []
            executor.run(IngestDocument({}), "p", outcomes.append)
            self.assertEqual(outcomes, [])
            self.assertEqual([h.delay for h in scheduler.scheduled], [30.0])
            scheduler.scheduled[0].fire()
            self.assertEqual(len(outcomes), 1)
            self.assertIsInstance(outcomes[0], Failed)
            self.assertIsInstance(outcomes[0].error, ExecutionTimeout)
        finally:
            executor.close()

    def test_executor_over_bare_store_still_times_out(self):
        executor = PipelineExecutor(PipelineStore())
        try:
            self.assertIsNotNone(executor.parameters.scheduler)
            executor.store.put_pipeline(Pipeline("p", [compound(SilentProcessor())]))
            outcome = executor.execute(IngestDocument({}), "p", timeout=0.05)
            self.assertIsInstance(outcome.error, ExecutionTimeout)
        finally:
            executor.close()

    def test_document_with_outcome_is_not_run_again(self):
        self.store.put({"id": "p", "processors": [{"set": {"field": "x", "value": 1}}]})
        document = IngestDocument({}, doc_id="once")
        self.assertIsInstance(self.executor.execute(document, "p"), Kept)
        outcome = self.executor.execute(document, "p")
        self.assertIsInstance(outcome, Failed)
        self.assertIsInstance(outcome.error, ContractViolation)

    def test_late_result_after_timeout_is_discarded(self):
        slow = ThreadedSetProcessor("a", 1, delay=0.2)
        self.store.put_pipeline(Pipeline("p", [compound(slow)]))
        outcomes = []
        done = threading.Event()

        def on_outcome(outcome):
            outcomes.append(outcome)
            done.set()

        self.executor.run(IngestDocument({}), "p", on_outcome, timeout=0.02)
        self.assertTrue(done.wait(2))
        threading.Event().wait(0.4)
        self.assertEqual(len(slow.threads), 1)
        self.assertEqual(len(outcomes), 1)
        self.assertIsInstance(outcomes[0].error, ExecutionTimeout)

    def test_late_result_after_timeout_runs_no_further_steps(self):
        slow = ThreadedSetProcessor("a", 1, delay=0.2)
        after = RecordingProcessor("after", True)
        self.store.put_pipeline(Pipeline("p", [compound(slow), compound(after)]))
        document = IngestDocument({}, doc_id="late")
        outcome = self.executor.execute(document, "p", timeout=0.02)
        self.assertIsInstance(outcome.error, ExecutionTimeout)
        self.assertTrue(document.metadata.closed)
        threading.Event().wait(0.4)
        self.assertEqual(len(slow.threads), 1)
        self.assertEqual(after.seen, [])
        self.assertEqual(document.source, {})

    def test_bulk_preserves_order(self):
        self.store.put_pipeline(Pipeline("p", [compound(ThreadedSetProcessor("done", True))]))
        documents = [IngestDocument({"n": i}, doc_id=str(i)) for i in range(10)]
        outcomes = self.executor.execute_bulk(documents, "p")
        self.assertEqual([o.document.source["n"] for o in outcomes], list(range(10)))
        self.assertTrue(all(isinstance(o, Kept) for o in outcomes))
        self.assertEqual(self.executor.execute_bulk([], "p"), [])

    def test_stats(self):
        self.store.put({"id": "p", "processors": [
            {"drop": {"if": {"equals": {"field": "kind", "value": "noise"}}, "tag": "d"}},
        ]})
        self.executor.execute(IngestDocument({"kind": "noise"}), "p")
        self.executor.execute(IngestDocument({"kind": "signal"}), "p")
        self.executor.execute(IngestDocument({}), "missing")
        stats = self.executor.stats()
        self.assertEqual(stats["total"], {"count": 3, "current": 0, "kept": 1, "dropped": 1, "failed": 1})
        step = stats["pipelines"]["p"][0]
        self.assertEqual(step["tag"], "d")
        self.assertEqual(step["count"], 1)
        self.assertEqual(step["skipped"], 1)


class TestNestedPipelines(unittest.TestCase):
    """Tests for pipelines that call other pipelines and for reroutes."""

    def setUp(self):
        self.executor = PipelineExecutor(settings=EngineSettings())
        self.store = self.executor.store

    def tearDown(self):
        self.executor.close()

    def test_pipeline_processor(self):
        self.store.put({"id": "outer", "processors": [
            {"pipeline": {"name": "inner"}},
            {"set": {"field": "after", "value": True}},
        ]})
        self.store.put({"id": "inner", "processors": [{"set": {"field": "inner", "value": True}}]})
        outcome = self.executor.execute(IngestDocument({}), "outer")
        self.assertEqual(outcome.document.source, {"inner": True, "after": True})

    def test_missing_target_pipeline(self):
        self.store.put({"id": "outer", "processors": [{"pipeline": {"name": "nope"}}]})
        outcome = self.executor.execute(IngestDocument({}), "outer")
        self.assertIsInstance(outcome.error, PipelineNotFound)

        self.store.put({"id": "lenient", "processors": [
            {"pipeline": {"name": "nope", "ignore_missing_pipeline": True}},
        ]})
        self.assertIsInstance(self.executor.execute(IngestDocument({}), "lenient"), Kept)

    def test_cycle_through_intermediate_pipeline(self):
        self.store.put({"id": "a", "processors": [{"pipeline": {"name": "b"}}]})
        self.store.put({"id": "b", "processors": [{"pipeline": {"name": "a", "on_failure": [
            {"set": {"field": "recovered", "value": True}},
        ]}}]})
        outcome = self.executor.execute(IngestDocument({}), "a")
        self.assertIsInstance(outcome, Failed)
        self.assertIsInstance(outcome.error, PipelineCycle)
        self.assertEqual(outcome.error.cycle, ["a", "b", "a"])

    def test_same_pipeline_twice_in_sequence_is_not_a_cycle(self):
        self.store.put({"id": "inc", "processors": [{"append": {"field": "hits", "value": 1}}]})
        self.store.put({"id": "p", "processors": [
            {"pipeline": {"name": "inc"}},
            {"pipeline": {"name": "inc"}},
        ]})
        outcome = self.executor.execute(IngestDocument({}), "p")
        self.assertEqual(outcome.document.source, {"hits": [1, 1]})

    def test_reroute_continues_with_default_pipeline(self):
        self.store.put({"id": "a", "processors": [
            {"reroute": {"destination": "archive"}},
            {"set": {"field": "never", "value": True}},
        ]})
        self.store.put({"id": "b", "processors": [{"set": {"field": "archived", "value": True}}]})
        self.store.set_default_pipeline("archive", "b")
        outcome = self.executor.execute(IngestDocument({}, index="logs"), "a")
        self.assertIsInstance(outcome, Kept)
        self.assertEqual(outcome.document.source, {"archived": True})
        self.assertEqual(outcome.document.metadata.index, "archive")
        self.assertEqual(outcome.document.metadata.index_history, ["logs", "archive"])

    def test_reroute_skips_calling_pipeline(self):
        self.store.put({"id": "inner", "processors": [{"reroute": {"destination": "other"}}]})
        self.store.put({"id": "outer", "processors": [
            {"pipeline": {"name": "inner"}},
            {"set": {"field": "never", "value": True}},
        ]})
        outcome = self.executor.execute(IngestDocument({}, index="logs"), "outer")
        self.assertIsInstance(outcome, Kept)
        self.assertEqual(outcome.document.source, {})
        self.assertEqual(outcome.document.metadata.index, "other")

    def test_index_cycle(self):
        self.store.put({"id": "a", "processors": [{"reroute": {"destination": "other"}}]})
        self.store.put({"id": "b", "processors": [{"reroute": {"destination": "logs"}}]})
        self.store.set_default_pipeline("logs", "a")
        self.store.set_default_pipeline("other", "b")
        outcome = self.executor.execute(IngestDocument({}, index="logs"), "a")
        self.assertIsInstance(outcome, Failed)
        self.assertIsInstance(outcome.error, PipelineCycle)
        self.assertEqual(outcome.error.cycle, ["logs", "other", "logs"])


class TestSamplePipelines(unittest.TestCase):
    """Tests for the bundled log-ingestion sample."""

    def test_run_example(self):
        results = run_example([
            {"message": "started", "level": " INFO ", "status": "200"},
            {"message": "cache miss", "level": "DEBUG", "status": "200"},
            {"message": "upstream timeout", "level": "ERROR", "status": "504"},
            {"message": "bad status", "level": "warn", "status": "n/a"},
        ])
        info, debug, error, warn = results
        self.assertEqual(info["outcome"], "kept")
        self.assertEqual(info["source"]["level"], "info")
        self.assertEqual(info["source"]["status"], 200)
        self.assertTrue(info["source"]["normalized"])
        self.assertEqual(debug["outcome"], "dropped")
        self.assertEqual(error["index"], "logs-errors")
        self.assertEqual(error["source"]["tags"], ["error"])
        self.assertTrue(error["source"]["alert"])
        self.assertNotIn("normalized", error["source"])
        self.assertEqual(warn["source"]["status"], 0)
        self.assertIn("n/a", warn["source"]["status_error"])


class TestExecutorServices(unittest.TestCase):

    def test_shared_parameters(self):
        parameters = Parameters.create(EngineSettings(trace_steps=True))
        executor = PipelineExecutor(parameters=parameters)
        try:
            self.assertIs(executor.parameters, parameters)
            self.assertIs(parameters.store, executor.store)
            executor.store.put({"id": "p", "processors": [{"set": {"field": "x", "value": 1, "tag": "s"}}]})
            executor.execute(IngestDocument({}, doc_id="d"), "p")
            self.assertEqual(parameters.context.step_logs[0]["tag"], "s")
        finally:
            executor.close()


if __name__ == "__main__":
    unittest.main()
