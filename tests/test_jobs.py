"""
Tests for the categorization and typing jobs.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from semantic_categorizer.config import CategorizerConfig
from semantic_categorizer.database.models import Keyword, TypingSample
from semantic_categorizer.exceptions import (
    OperationAbortedError,
    ProviderAuthError,
    ProviderRateLimitedError,
    ValidationError,
)
from semantic_categorizer.jobs import (
    CategorizationJob,
    JobSummary,
    TypingJob,
    category_ids_by_name,
    load_samples,
)
from semantic_categorizer.progress.reporter import ProgressReporter, ResultSink
from semantic_categorizer.progress.sinks import CollectingSink

from .conftest import TEST_MODEL, FakeEmbeddingProvider

VECTORS = {
    "running shoes": [1.0, 0.1, 0, 0, 0, 0, 0, 0],
    "hiking boots": [0.9, 0.0, 0.2, 0, 0, 0, 0, 0],
    "chef knife": [0, 0, 1.0, 0.1, 0, 0, 0, 0],
    "paring knife": [0, 0.1, 0.9, 0, 0, 0, 0, 0],
    "cast iron pan": [0, 0, 0.8, 0.3, 0, 0, 0, 0],
    "Footwear": [1.0, 0, 0, 0, 0, 0, 0, 0],
    "Kitchen": [0, 0, 1.0, 0, 0, 0, 0, 0],
}

TARGETS = ["running shoes", "chef knife", "hiking boots", "paring knife", "cast iron pan"]


def seed_keywords(db_manager, targets=TARGETS, categories=("Footwear", "Kitchen")):
    """Insert targets then categories for project 1; returns ids by text."""
    with db_manager.get_session() as session:
        rows = [Keyword(project_id=1, keyword=text) for text in targets]
        rows += [
            Keyword(project_id=1, keyword=text, is_keyword=False, is_category=True)
            for text in categories
        ]
        session.add_all(rows)
        session.flush()
        return {row.keyword: row.id for row in rows}


def make_job(job_cls, config, db_manager, provider, **kwargs):
    events = CollectingSink()
    results = CollectingSink()
    job = job_cls(
        config,
        db_manager=db_manager,
        provider=provider,
        reporter=ProgressReporter(events),
        results=ResultSink(results),
        sleep=kwargs.pop("sleep", AsyncMock()),
        **kwargs,
    )
    return job, events, results


@pytest.fixture
def steered_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider(vectors=VECTORS)


class TestCategorizationJob:
    """Test the nearest-category job."""

    @pytest.mark.asyncio
    async def test_assigns_every_target(self, config, db_manager, steered_provider) -> None:
        """Test one result per target with the nearest category."""
        ids = seed_keywords(db_manager)
        job, events, results = make_job(
            CategorizationJob, config, db_manager, steered_provider
        )

        summary = await job.run(1)

        names = {r["id"]: r["bestCategoryName"] for r in results.records}
        assert names == {
            ids["running shoes"]: "Footwear",
            ids["chef knife"]: "Kitchen",
            ids["hiking boots"]: "Footwear",
            ids["paring knife"]: "Kitchen",
            ids["cast iron pan"]: "Kitchen",
        }
        assert all(r["bestCategoryId"] in (ids["Footwear"], ids["Kitchen"]) for r in results.records)
        assert summary.processed == 5
        assert summary.unmatched == 0
        assert summary.details["comparisons"] == 10

        complete = events.of_type("complete")
        assert len(complete) == 1
        assert complete[0]["summary"]["processed"] == 5
        assert events.of_type("error") == []
        assert events.of_type("progress")[-1]["percent"] == 100

    @pytest.mark.asyncio
    async def test_ready_flags_are_written(self, config, db_manager, steered_provider) -> None:
        seed_keywords(db_manager)
        job, _, _ = make_job(CategorizationJob, config, db_manager, steered_provider)

        await job.run(1)

        with db_manager.get_session() as session:
            pending = session.query(Keyword).filter(Keyword.has_embedding.is_(False)).count()
        assert pending == 0

    @pytest.mark.asyncio
    async def test_rerun_uses_cache(self, config, db_manager, steered_provider) -> None:
        """Test that a second run is served from the cache."""
        seed_keywords(db_manager)
        first, _, _ = make_job(CategorizationJob, config, db_manager, steered_provider)
        await first.run(1)
        calls = len(steered_provider.calls)

        second, _, results = make_job(
            CategorizationJob, config, db_manager, steered_provider
        )
        await second.run(1)

        assert len(steered_provider.calls) == calls
        assert {r["embeddingSource"] for r in results.records} == {"cache"}

    @pytest.mark.asyncio
    async def test_no_categories(self, config, db_manager, steered_provider) -> None:
        """Test that a project without categories fails with one error record."""
        seed_keywords(db_manager, categories=())
        job, events, results = make_job(
            CategorizationJob, config, db_manager, steered_provider
        )

        with pytest.raises(ValidationError):
            await job.run(1)

        errors = events.of_type("error")
        assert len(errors) == 1
        assert errors[0]["code"] == "validation_error"
        assert events.of_type("complete") == []
        assert results.records == []

    @pytest.mark.asyncio
    async def test_rate_limit_resumes_without_duplicates(
        self, config, db_manager
    ) -> None:
        """Test backoff and resume after the last completed target page."""
        ids = seed_keywords(db_manager)
        # call 1: targets page 1, call 2: categories, call 3: targets page 2
        provider = FakeEmbeddingProvider(
            vectors=VECTORS,
            errors={3: ProviderRateLimitedError("slow down", model=TEST_MODEL)},
        )
        sleep = AsyncMock()
        job, events, results = make_job(
            CategorizationJob, config, db_manager, provider, sleep=sleep
        )

        summary = await job.run(1)

        emitted = [r["id"] for r in results.records]
        assert sorted(emitted) == sorted(ids[text] for text in TARGETS)
        assert len(emitted) == len(set(emitted))
        assert summary.rate_limit_retries == 1
        sleep.assert_awaited_once()
        assert any(
            "resumeAfterId" in (e.get("data") or {}) for e in events.of_type("info")
        )

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self, db_manager) -> None:
        """Test that the error surfaces once retries are used up."""
        config = CategorizerConfig(
            database_url="sqlite:///:memory:",
            embedding_model=TEST_MODEL,
            embedding_chunk_delay_ms=0,
            rate_limit_retries=0,
        )
        seed_keywords(db_manager)
        provider = FakeEmbeddingProvider(
            errors={1: ProviderRateLimitedError("slow down", model=TEST_MODEL)}
        )
        job, events, _ = make_job(CategorizationJob, config, db_manager, provider)

        with pytest.raises(ProviderRateLimitedError):
            await job.run(1)

        assert [e["code"] for e in events.of_type("error")] == ["provider_rate_limited"]

    @pytest.mark.asyncio
    async def test_auth_error_is_not_retried(self, config, db_manager) -> None:
        seed_keywords(db_manager)
        provider = FakeEmbeddingProvider(errors={1: ProviderAuthError("bad key")})
        sleep = AsyncMock()
        job, events, _ = make_job(
            CategorizationJob, config, db_manager, provider, sleep=sleep
        )

        with pytest.raises(ProviderAuthError):
            await job.run(1)

        sleep.assert_not_awaited()
        assert events.of_type("error")[0]["code"] == "provider_auth"

    @pytest.mark.asyncio
    async def test_cancel(self, config, db_manager, steered_provider) -> None:
        """Test that a set cancel flag aborts with an aborted error record."""
        seed_keywords(db_manager)
        cancel = asyncio.Event()
        cancel.set()
        job, events, results = make_job(
            CategorizationJob, config, db_manager, steered_provider, cancel=cancel
        )

        with pytest.raises(OperationAbortedError):
            await job.run(1)

        assert events.of_type("error")[0]["code"] == "aborted"
        assert results.records == []
        assert steered_provider.calls == []


class TestTypingJob:
    """Test the classifier typing job."""

    @pytest.fixture
    def typing_config(self) -> CategorizerConfig:
        return CategorizerConfig(
            database_url="sqlite:///:memory:",
            embedding_model=TEST_MODEL,
            embedding_chunk_delay_ms=0,
            target_page_size=2,
            training_epochs=100,
            learning_rate=0.5,
            training_seed=3,
        )

    @pytest.fixture
    def typing_provider(self) -> FakeEmbeddingProvider:
        return FakeEmbeddingProvider(
            vectors={
                "nike": [1.0, 0, 0.1, 0, 0, 0, 0, 0],
                "adidas": [0.9, 0.1, 0, 0, 0, 0, 0, 0],
                "shoes": [0, 1.0, 0.1, 0, 0, 0, 0, 0],
                "boots": [0.1, 0.9, 0, 0, 0, 0, 0, 0],
                "reebok": [1.0, 0.1, 0, 0, 0, 0, 0, 0],
                "sandals": [0.1, 1.0, 0, 0, 0, 0, 0, 0],
                "puma": [0.95, 0, 0, 0.1, 0, 0, 0, 0],
            }
        )

    @staticmethod
    def seed_samples(db_manager) -> None:
        with db_manager.get_session() as session:
            for label, text in [
                ("Brand", "nike"),
                ("Brand", "adidas"),
                ("Product", "shoes"),
                ("Product", "boots"),
            ]:
                session.add(TypingSample(project_id=1, label=label, text=text))

    @pytest.mark.asyncio
    async def test_trains_and_labels_targets(
        self, typing_config, db_manager, typing_provider
    ) -> None:
        """Test labels, category id mapping and classification progress."""
        ids = seed_keywords(
            db_manager, targets=["reebok", "sandals", "puma"], categories=["brand"]
        )
        self.seed_samples(db_manager)
        job, events, results = make_job(TypingJob, typing_config, db_manager, typing_provider)

        summary = await job.run(1)

        by_id = {r["id"]: r for r in results.records}
        assert by_id[ids["reebok"]]["bestCategoryName"] == "Brand"
        assert by_id[ids["reebok"]]["bestCategoryId"] == ids["brand"]
        assert by_id[ids["sandals"]]["bestCategoryName"] == "Product"
        assert by_id[ids["sandals"]]["bestCategoryId"] is None
        assert by_id[ids["puma"]]["bestCategoryName"] == "Brand"
        assert 0.5 < by_id[ids["puma"]]["similarity"] <= 1.0

        assert summary.processed == 3
        assert summary.model_reused is False
        assert summary.details["labels"] == ["Brand", "Product"]

        stages = {e["stage"] for e in events.of_type("progress")}
        assert {"training", "classification"} <= stages
        assert events.of_type("complete")[0]["summary"]["modelReused"] is False

    @pytest.mark.asyncio
    async def test_second_run_reuses_model(
        self, typing_config, db_manager, typing_provider
    ) -> None:
        """Test that an unchanged project reuses the stored model."""
        seed_keywords(db_manager, targets=["reebok"], categories=[])
        self.seed_samples(db_manager)
        first, _, _ = make_job(TypingJob, typing_config, db_manager, typing_provider)
        await first.run(1)
        calls = len(typing_provider.calls)

        second, events, _ = make_job(TypingJob, typing_config, db_manager, typing_provider)
        summary = await second.run(1)

        assert summary.model_reused is True
        assert len(typing_provider.calls) == calls
        assert not any(e.get("epoch") for e in events.of_type("progress"))

    @pytest.mark.asyncio
    async def test_needs_two_labels(self, typing_config, db_manager, typing_provider) -> None:
        with db_manager.get_session() as session:
            session.add(TypingSample(project_id=1, label="Brand", text="nike"))
            session.add(TypingSample(project_id=1, label="Brand", text="adidas"))
        job, events, _ = make_job(TypingJob, typing_config, db_manager, typing_provider)

        with pytest.raises(ValidationError):
            await job.run(1)

        assert events.of_type("error")[0]["code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_stale_dimension_target_is_skipped(
        self, typing_config, db_manager, typing_provider
    ) -> None:
        """Test that a cached vector of another dimension leaves only that target unmatched."""
        ids = seed_keywords(db_manager, targets=["reebok", "stale"], categories=["brand"])
        self.seed_samples(db_manager)
        job, events, results = make_job(TypingJob, typing_config, db_manager, typing_provider)
        job.cache.put("stale", [0.1, 0.2, 0.3], TEST_MODEL)

        summary = await job.run(1)

        by_id = {r["id"]: r for r in results.records}
        assert by_id[ids["reebok"]]["bestCategoryName"] == "Brand"
        assert by_id[ids["stale"]]["bestCategoryName"] is None
        assert by_id[ids["stale"]]["bestCategoryId"] is None
        assert summary.processed == 2
        assert summary.unmatched == 1
        assert events.of_type("error") == []
        assert len(events.of_type("complete")) == 1
        assert "stale" not in typing_provider.texts_sent


class TestJobHelpers:
    """Test project loading helpers."""

    def test_load_samples(self, db_manager) -> None:
        with db_manager.get_session() as session:
            session.add(TypingSample(project_id=1, label="a", text="x"))
            session.add(TypingSample(project_id=2, label="b", text="y"))

        samples = load_samples(db_manager, 1)

        assert [(s.label, s.text) for s in samples] == [("a", "x")]

    def test_category_ids_by_name_lowest_id_wins(self, db_manager) -> None:
        ids = seed_keywords(db_manager, targets=[], categories=["Brand", "BRAND", "Other"])

        mapping = category_ids_by_name(db_manager, 1)

        assert mapping == {"brand": ids["Brand"], "other": ids["Other"]}

    def test_summary_to_dict(self) -> None:
        summary = JobSummary(project_id=4, processed=2, details={"labels": ["a"]})

        data = summary.to_dict()

        assert data["projectId"] == 4
        assert data["labels"] == ["a"]
        assert "modelReused" not in data
