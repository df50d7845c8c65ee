"""
Tests for progress events, sinks and the reporter.
"""

import asyncio
import io
import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from semantic_categorizer.classification.logistic_regression import TrainingProgress
from semantic_categorizer.embeddings.fetcher import FetchProgress
from semantic_categorizer.exceptions import CacheMissError, OperationAbortedError
from semantic_categorizer.matching.streaming_matcher import MatchProgress
from semantic_categorizer.models import AssignmentResult, EmbeddingSource
from semantic_categorizer.progress.events import ProgressEvent, ResultEvent
from semantic_categorizer.progress.reporter import ProgressReporter, ResultSink
from semantic_categorizer.progress.sinks import (
    CallbackSink,
    CollectingSink,
    JsonLinesSink,
    QueueSink,
)


class _FailingSink(CollectingSink):
    def write(self, record) -> None:
        raise RuntimeError("consumer went away")


class TestProgressReporter:
    """Test fire-and-forget event emission."""

    def test_progress_from_fetch_update(self) -> None:
        sink = CollectingSink()
        reporter = ProgressReporter(sink)

        reporter.progress(FetchProgress(fetched=3, total=4))

        assert sink.records == [
            {"type": "progress", "stage": "embeddings", "total": 4, "percent": 75, "fetched": 3}
        ]

    def test_progress_from_match_and_training_updates(self) -> None:
        sink = CollectingSink()
        reporter = ProgressReporter(sink)

        reporter.progress(MatchProgress(processed=2, total=8))
        reporter.progress(TrainingProgress(epoch=5, total=10), stage="typing")

        assert sink.records[0]["processed"] == 2
        assert sink.records[0]["percent"] == 25
        assert sink.records[1] == {
            "type": "progress",
            "stage": "typing",
            "total": 10,
            "percent": 50,
            "epoch": 5,
        }

    def test_info_with_data(self) -> None:
        sink = CollectingSink()

        ProgressReporter(sink).info("started", stage="categorization", targets=10)

        assert sink.records == [
            {
                "type": "info",
                "message": "started",
                "stage": "categorization",
                "data": {"targets": 10},
            }
        ]

    def test_error_code_comes_from_exception(self) -> None:
        sink = CollectingSink()
        reporter = ProgressReporter(sink)

        reporter.error(CacheMissError(["x"]), stage="matching")
        reporter.error(OperationAbortedError())
        reporter.error(RuntimeError("boom"))
        reporter.error(RuntimeError("boom"), code="custom")

        assert [r["code"] for r in sink.of_type("error")] == [
            "cache_miss",
            "aborted",
            "internal_error",
            "custom",
        ]
        assert sink.records[0]["stage"] == "matching"

    def test_complete(self) -> None:
        sink = CollectingSink()

        ProgressReporter(sink).complete(stage="typing", processed=4)

        assert sink.records == [
            {"type": "complete", "stage": "typing", "summary": {"processed": 4}}
        ]

    def test_sink_failure_is_dropped(self) -> None:
        """Test that a failing consumer never interrupts the caller."""
        reporter = ProgressReporter(_FailingSink())

        assert reporter.progress(FetchProgress(fetched=1, total=2)) is False
        assert reporter.info("still running") is False
        assert reporter.dropped == 2
        assert reporter.emitted == 0

    def test_full_queue_is_dropped(self) -> None:
        queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        reporter = ProgressReporter(QueueSink(queue))

        assert reporter.info("first") is True
        assert reporter.info("second") is False
        assert queue.qsize() == 1
        assert reporter.dropped == 1

    def test_default_sink_discards(self) -> None:
        reporter = ProgressReporter()
        assert reporter.info("nobody listening") is True


class TestResultSink:
    """Test the result channel."""

    def test_result_record_shape(self) -> None:
        """Test camelCase keys and explicit nulls."""
        sink = CollectingSink()
        results = ResultSink(sink)

        matched = results.write(
            AssignmentResult(
                item_id=7,
                best_category_id=3,
                best_category_name="Footwear",
                similarity_score=0.91,
                embedding_source=EmbeddingSource.CACHE,
            )
        )
        unmatched = results.write(AssignmentResult(7, None, None, None))

        assert matched == {
            "type": "result",
            "id": 7,
            "bestCategoryId": 3,
            "bestCategoryName": "Footwear",
            "similarity": 0.91,
            "embeddingSource": "cache",
        }
        assert unmatched["bestCategoryId"] is None
        assert unmatched["similarity"] is None
        assert unmatched["embeddingSource"] == "unknown"
        assert results.written == 2

    def test_result_delivery_failure_propagates(self) -> None:
        results = ResultSink(_FailingSink())

        with pytest.raises(RuntimeError):
            results.write(AssignmentResult(1, None, None, None))

        assert results.written == 0


class TestSinksAndEvents:
    """Test sink implementations and event validation."""

    def test_json_lines_sink(self) -> None:
        stream = io.StringIO()
        sink = JsonLinesSink(stream)

        sink.write({"type": "info", "message": "héllo"})
        sink.write({"type": "complete"})

        lines = stream.getvalue().splitlines()
        assert [json.loads(line)["type"] for line in lines] == ["info", "complete"]
        assert "héllo" in lines[0]

    def test_callback_sink(self) -> None:
        received = []
        CallbackSink(received.append).write({"type": "info"})
        assert received == [{"type": "info"}]

    def test_progress_event_bounds(self) -> None:
        with pytest.raises(PydanticValidationError):
            ProgressEvent(stage="x", total=1, percent=101)
        with pytest.raises(PydanticValidationError):
            ProgressEvent(stage="", total=1, percent=1)

    def test_result_event_accepts_field_names_and_aliases(self) -> None:
        by_name = ResultEvent(id=1, best_category_id=2)
        by_alias = ResultEvent(id=1, bestCategoryId=2)
        assert by_name.best_category_id == by_alias.best_category_id == 2
