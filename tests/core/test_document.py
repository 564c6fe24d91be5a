"""
Unit tests for the document model.

Tests dotted-path access, auto-creation of intermediate objects, type
conflicts, the ingest metadata prefix and the pipeline call stack.
"""

import unittest

import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../..")))

from ingestpipelines.core.document import IngestDocument, IngestMetadata, ON_FAILURE_KEY
from ingestpipelines.core.exceptions import FieldNotFound, PipelineCycle, TypeConflict
from ingestpipelines.core.scheduler import ScheduledHandle


class TestFieldAccess(unittest.TestCase):
    """Tests for reading and writing fields by path."""

    def setUp(self):
        self.document = IngestDocument(
            {"user": {"name": "ada", "roles": ["admin", "dev"]}, "count": 3},
            index="users", doc_id="1",
        )

    def test_get_nested_and_list_values(self):
        self.assertEqual(self.document.get_field_value("user.name"), "ada")
        self.assertEqual(self.document.get_field_value("user.roles.1"), "dev")
        self.assertEqual(self.document.get_field_value("count"), 3)

    def test_get_missing_raises_field_not_found(self):
        with self.assertRaises(FieldNotFound):
            self.document.get_field_value("user.email")
        with self.assertRaises(FieldNotFound):
            self.document.get_field_value("user.roles.5")
        with self.assertRaises(FieldNotFound):
            self.document.get_field_value("count.value")

    def test_get_with_default(self):
        self.assertIsNone(self.document.get_field_value("missing", None))
        self.assertEqual(self.document.get_field_value("user.email", "n/a"), "n/a")

    def test_has_field(self):
        self.assertTrue(self.document.has_field("user.roles"))
        self.assertFalse(self.document.has_field("user.email"))

    def test_set_creates_intermediate_objects(self):
        self.document.set_field_value("a.b.c", 1)
        self.assertEqual(self.document.source["a"], {"b": {"c": 1}})

    def test_set_through_scalar_is_type_conflict(self):
        with self.assertRaises(TypeConflict):
            self.document.set_field_value("count.value", 1)
        self.assertEqual(self.document.get_field_value("count"), 3)

    def test_set_list_element(self):
        self.document.set_field_value("user.roles.0", "owner")
        self.assertEqual(self.document.get_field_value("user.roles"), ["owner", "dev"])
        with self.assertRaises(TypeConflict):
            self.document.set_field_value("user.roles.7", "x")

    def test_remove_field(self):
        self.document.remove_field("user.name")
        self.assertFalse(self.document.has_field("user.name"))
        with self.assertRaises(FieldNotFound):
            self.document.remove_field("user.name")

    def test_append_turns_scalar_into_list(self):
        self.document.append_field_value("count", 4)
        self.assertEqual(self.document.get_field_value("count"), [3, 4])
        self.document.append_field_value("user.roles", ["ops"])
        self.assertEqual(self.document.get_field_value("user.roles"), ["admin", "dev", "ops"])
        self.document.append_field_value("tags", "new")
        self.assertEqual(self.document.get_field_value("tags"), ["new"])

    def test_empty_path_is_rejected(self):
        with self.assertRaises(FieldNotFound):
            self.document.get_field_value("")
        with self.assertRaises(FieldNotFound):
            self.document.get_field_value("user..name")

    def test_snapshot_and_restore(self):
        snapshot = self.document.snapshot()
        self.document.set_field_value("user.name", "grace")
        self.document.remove_field("count")
        self.document.restore(snapshot)
        self.assertEqual(self.document.get_field_value("user.name"), "ada")
        self.assertEqual(self.document.get_field_value("count"), 3)

    def test_copy_is_independent(self):
        other = self.document.copy()
        other.set_field_value("user.name", "grace")
        self.assertEqual(self.document.get_field_value("user.name"), "ada")
        self.assertEqual(other.metadata.id, "1")


class TestIngestMetadataAccess(unittest.TestCase):
    """Tests for the _ingest path prefix."""

    def test_read_ingest_values(self):
        document = IngestDocument({})
        document.metadata.ingest[ON_FAILURE_KEY] = {"message": "boom"}
        self.assertEqual(document.get_field_value("_ingest.on_failure.message"), "boom")
        self.assertEqual(document.get_field_value("_ingest.timestamp"), document.metadata.timestamp)

    def test_write_ingest_values(self):
        document = IngestDocument({})
        document.set_field_value("_ingest._value", 5)
        self.assertEqual(document.metadata.ingest["_value"], 5)
        self.assertNotIn("_ingest", document.source)

    def test_timestamp_is_read_only(self):
        document = IngestDocument({})
        with self.assertRaises(TypeConflict):
            document.set_field_value("_ingest.timestamp", "now")
        with self.assertRaises(TypeConflict):
            document.set_field_value("_ingest", {})


class TestPipelineStack(unittest.TestCase):
    """Tests for cycle detection on the pipeline call stack."""

    def test_push_pop_contains(self):
        metadata = IngestMetadata()
        metadata.push_pipeline("a")
        metadata.push_pipeline("b")
        self.assertTrue(metadata.contains_pipeline("a"))
        self.assertEqual(metadata.current_pipeline, "b")
        metadata.pop_pipeline("b")
        self.assertEqual(metadata.pipeline_stack, ["a"])

    def test_reentry_raises_pipeline_cycle(self):
        metadata = IngestMetadata()
        metadata.push_pipeline("a")
        metadata.push_pipeline("b")
        with self.assertRaises(PipelineCycle) as ctx:
            metadata.push_pipeline("a")
        self.assertEqual(ctx.exception.cycle, ["a", "b", "a"])
        self.assertEqual(metadata.pipeline_stack, ["a", "b"])

    def test_frame_releases_on_exception(self):
        metadata = IngestMetadata()
        with self.assertRaises(RuntimeError):
            with metadata.enter_pipeline("a"):
                self.assertTrue(metadata.contains_pipeline("a"))
                raise RuntimeError("boom")
        self.assertEqual(metadata.pipeline_stack, [])

    def test_frame_release_is_idempotent(self):
        metadata = IngestMetadata()
        frame = metadata.enter_pipeline("a")
        frame.release()
        frame.release()
        self.assertEqual(metadata.pipeline_stack, [])


class TestScheduledTracking(unittest.TestCase):
    """Tests for delayed callbacks registered on behalf of a document."""

    def test_cancel_scheduled_prevents_tracked_callbacks(self):
        metadata = IngestMetadata()
        calls = []
        handle = ScheduledHandle(10, lambda: calls.append(1))
        metadata.track_scheduled(handle)
        self.assertEqual(metadata.cancel_scheduled(), 1)
        self.assertTrue(handle.cancelled)

    def test_tracking_after_close_cancels_immediately(self):
        metadata = IngestMetadata()
        metadata.cancel_scheduled()
        handle = ScheduledHandle(10, lambda: None)
        metadata.track_scheduled(handle)
        self.assertTrue(handle.cancelled)


if __name__ == "__main__":
    unittest.main()
