"""Tests for ContentProcessingPipeline (chunking + embedding + storage + search)."""

from __future__ import annotations

import threading

import pytest
from conftest import FakeEmbeddingProvider, make_chunk_store

from personal_brain.config import ChunkingConfig
from personal_brain.embeddings import EmbeddingOrchestrator
from personal_brain.errors import ValidationError
from personal_brain.models import SearchOptions
from personal_brain.pipeline import ContentProcessingPipeline

SOURDOUGH = "Feed the sourdough starter twice a day with equal parts flour and water."
TAXES = "Quarterly tax payments are due in April, June, September and January."
GARDEN = "Tomatoes need full sun and deep watering once the fruit starts to set."


def pipeline_with(provider: FakeEmbeddingProvider, retry_policy) -> ContentProcessingPipeline:
    return ContentProcessingPipeline(
        make_chunk_store(),
        EmbeddingOrchestrator(provider, retry_policy=retry_policy),
        chunking=ChunkingConfig(max_chunk_size=200, overlap=40),
    )


# ---------------------------------------------------------------------------
# process_content
# ---------------------------------------------------------------------------


class TestProcessContent:
    def test_short_text_is_one_chunk(self, pipeline: ContentProcessingPipeline):
        result = pipeline.process_content("note-1", SOURDOUGH)
        assert len(result.chunk_ids) == 1
        assert result.embedded == 1
        assert result.failed == 0

        chunk_set = pipeline.store.get_chunks("note-1")
        assert chunk_set.chunk_ids == list(result.chunk_ids)
        assert chunk_set.chunks[0].text == SOURDOUGH
        assert chunk_set.chunks[0].embedding is not None

    def test_long_text_is_split(self, pipeline: ContentProcessingPipeline):
        result = pipeline.process_content("long", "x" * 450)
        # stride of 160 characters over 450 characters
        assert len(result.chunk_ids) == 3
        chunks = pipeline.store.get_chunks("long").chunks
        assert [c.index for c in chunks] == [0, 1, 2]
        assert all(len(c.text) <= 200 for c in chunks)

    def test_content_type_is_stored(self, pipeline: ContentProcessingPipeline):
        pipeline.process_content("p-1", GARDEN, content_type="profile")
        assert pipeline.store.get_chunks("p-1").chunks[0].content_type == "profile"

    def test_reprocessing_replaces_chunk_set(self, pipeline: ContentProcessingPipeline):
        first = pipeline.process_content("note-1", "y" * 450)
        second = pipeline.process_content("note-1", SOURDOUGH)

        chunk_set = pipeline.store.get_chunks("note-1")
        assert chunk_set.chunk_ids == list(second.chunk_ids)
        assert not set(first.chunk_ids) & set(chunk_set.chunk_ids)
        assert pipeline.store.count() == 1

    def test_empty_text_clears_chunks(self, pipeline: ContentProcessingPipeline):
        pipeline.process_content("note-1", SOURDOUGH)
        result = pipeline.process_content("note-1", "")
        assert result.chunk_ids == ()
        assert pipeline.store.count() == 0

    def test_failed_embedding_is_stored_without_vector(self, retry_policy):
        provider = FakeEmbeddingProvider(failing={TAXES})
        pipeline = pipeline_with(provider, retry_policy)

        result = pipeline.process_content("taxes", TAXES)

        assert result.failed == 1
        assert result.embedded == 0
        chunk = pipeline.store.get_chunks("taxes").chunks[0]
        assert chunk.text == TAXES
        assert chunk.embedding is None

    def test_identical_chunks_embedded_once(self, pipeline, provider):
        pipeline.process_content("a", SOURDOUGH)
        pipeline.process_content("b", SOURDOUGH)
        assert provider.calls.count(SOURDOUGH) == 1

    def test_empty_parent_id_is_rejected(self, pipeline: ContentProcessingPipeline):
        with pytest.raises(ValidationError):
            pipeline.process_content(" ", SOURDOUGH)

    def test_concurrent_regeneration_leaves_one_set(self, pipeline: ContentProcessingPipeline):
        texts = [f"version {n}: " + "z" * 300 for n in range(6)]
        threads = [
            threading.Thread(target=pipeline.process_content, args=("shared", text))
            for text in texts
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        chunk_set = pipeline.store.get_chunks("shared")
        chunk_set.verify()
        # Each version splits into two chunks; interleaved writes would leave more.
        assert len(chunk_set.chunks) == 2
        assert chunk_set.chunks[0].text.startswith("version ")
        assert pipeline.store.count() == 2
        assert pipeline._parent_locks == {}

    def test_parent_locks_are_released(self, pipeline: ContentProcessingPipeline):
        for n in range(20):
            pipeline.process_content(f"note-{n}", SOURDOUGH)
        pipeline.delete_content("note-3")
        assert pipeline._parent_locks == {}

    def test_unexpected_provider_error_keeps_other_chunks(self, retry_policy):
        class FlakyProvider(FakeEmbeddingProvider):
            def embed(self, text: str) -> list[float]:
                if text.startswith("b"):
                    raise ConnectionError("provider reset")
                return super().embed(text)

        pipeline = pipeline_with(FlakyProvider(), retry_policy)
        result = pipeline.process_content("mixed", "a" * 200 + "b" * 200)

        assert result.failed >= 1
        assert result.embedded >= 1
        assert len(pipeline.store.get_chunks("mixed").chunks) == len(result.chunk_ids)


# ---------------------------------------------------------------------------
# delete_content
# ---------------------------------------------------------------------------


class TestDeleteContent:
    def test_delete_removes_chunks(self, pipeline: ContentProcessingPipeline):
        pipeline.process_content("note-1", SOURDOUGH)
        pipeline.process_content("note-2", TAXES)
        assert pipeline.delete_content("note-1") == 1
        assert pipeline.store.get_chunks("note-1").chunks == ()
        assert pipeline.store.count() == 1

    def test_delete_unknown_is_zero(self, pipeline: ContentProcessingPipeline):
        assert pipeline.delete_content("missing") == 0


# ---------------------------------------------------------------------------
# search
# ---------------------------------------------------------------------------


class TestSearch:
    @pytest.fixture()
    def loaded(self, pipeline: ContentProcessingPipeline) -> ContentProcessingPipeline:
        pipeline.process_content("bread", SOURDOUGH)
        pipeline.process_content("money", TAXES)
        pipeline.process_content("garden", GARDEN, content_type="profile")
        return pipeline

    def test_exact_text_ranks_first(self, loaded: ContentProcessingPipeline):
        results = loaded.search(TAXES)
        assert results[0].parent_id == "money"
        assert results[0].score == pytest.approx(1.0)
        assert results[0].text == TAXES
        assert [r.score for r in results] == sorted((r.score for r in results), reverse=True)

    def test_limit(self, loaded: ContentProcessingPipeline):
        assert len(loaded.search(SOURDOUGH, SearchOptions(limit=2))) == 2

    def test_type_filter(self, loaded: ContentProcessingPipeline):
        results = loaded.search(SOURDOUGH, SearchOptions(type_filter="profile"))
        assert [r.parent_id for r in results] == ["garden"]

    def test_parent_ids_filter(self, loaded: ContentProcessingPipeline):
        results = loaded.search(SOURDOUGH, SearchOptions(parent_ids=("money", "garden")))
        assert {r.parent_id for r in results} == {"money", "garden"}

    def test_min_score(self, loaded: ContentProcessingPipeline):
        results = loaded.search(GARDEN, SearchOptions(min_score=0.99))
        assert [r.parent_id for r in results] == ["garden"]

    def test_deleted_content_is_not_found(self, loaded: ContentProcessingPipeline):
        loaded.delete_content("money")
        assert all(r.parent_id != "money" for r in loaded.search(TAXES))

    def test_chunks_without_embedding_are_skipped(self, retry_policy):
        provider = FakeEmbeddingProvider(failing={TAXES})
        pipeline = pipeline_with(provider, retry_policy)
        pipeline.process_content("money", TAXES)
        pipeline.process_content("bread", SOURDOUGH)
        assert [r.parent_id for r in pipeline.search("anything")] == ["bread"]

    def test_query_embedding_failure_returns_empty(self, retry_policy):
        provider = FakeEmbeddingProvider(failing={"broken query"})
        pipeline = pipeline_with(provider, retry_policy)
        pipeline.process_content("bread", SOURDOUGH)
        assert pipeline.search("broken query") == []

    def test_empty_query_is_rejected(self, pipeline: ContentProcessingPipeline):
        with pytest.raises(ValidationError):
            pipeline.search("   ")

    def test_empty_store(self, pipeline: ContentProcessingPipeline):
        assert pipeline.search("hello") == []


# ---------------------------------------------------------------------------
# find_related
# ---------------------------------------------------------------------------


class TestFindRelated:
    def test_related_content_from_other_parents(self, pipeline: ContentProcessingPipeline):
        pipeline.process_content("original", GARDEN)
        pipeline.process_content("copy", GARDEN)
        pipeline.process_content("other", TAXES)

        results = pipeline.find_related("original")

        assert results[0].parent_id == "copy"
        assert results[0].score == pytest.approx(1.0)
        assert all(r.parent_id != "original" for r in results)

    def test_unknown_parent_has_no_related(self, pipeline: ContentProcessingPipeline):
        pipeline.process_content("other", TAXES)
        assert pipeline.find_related("missing") == []
