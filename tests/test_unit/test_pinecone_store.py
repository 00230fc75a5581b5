"""
Unit Tests for the Pinecone-backed vector store.

The index handle is replaced with a Mock; no network calls are made.
"""
import pytest
from types import SimpleNamespace
from unittest.mock import Mock, patch

from app.errors import ConfigurationError
from app.services.vector_store import PineconeVectorStore, sequence_clock, session_namespace
from conftest import make_chunk


@pytest.fixture
def pinecone_settings(settings):
    return settings.model_copy(update={"vector_store_type": "pinecone", "pinecone_api_key": "pc-key"})


@pytest.fixture
def store(pinecone_settings):
    store = PineconeVectorStore(pinecone_settings)
    store._index = Mock()
    return store


def match(text, score, sequence, document_id="doc-1", index=0):
    return SimpleNamespace(
        score=score,
        metadata={
            "session_id": "session-a",
            "document_id": document_id,
            "index": index,
            "file_name": "notes.txt",
            "text": text,
            "sequence": sequence,
        },
    )


class TestPineconeVectorStore:

    async def test_upsert_into_session_namespace(self, store):
        chunks = [make_chunk(f"chunk {i}", [1.0, 0.0], index=i) for i in range(3)]

        await store.add_documents("session-a", "doc-1", chunks, file_name="notes.txt")

        kwargs = store.index.upsert.call_args.kwargs
        assert kwargs["namespace"] == session_namespace("session-a")
        assert [v["id"] for v in kwargs["vectors"]] == ["doc-1_0", "doc-1_1", "doc-1_2"]
        assert kwargs["vectors"][1]["metadata"]["text"] == "chunk 1"
        assert kwargs["vectors"][1]["metadata"]["file_name"] == "notes.txt"

    async def test_upsert_batches(self, store):
        chunks = [make_chunk(f"chunk {i}", [1.0, 0.0], index=i) for i in range(150)]

        await store.add_documents("session-a", "doc-1", chunks)

        assert store.index.upsert.call_count == 2

    async def test_empty_add_is_noop(self, store):
        await store.add_documents("session-a", "doc-1", [])
        store.index.upsert.assert_not_called()

    async def test_query_filters_and_orders(self, store):
        store.index.query.return_value = SimpleNamespace(matches=[
            match("second", 0.7, sequence=5),
            match("first", 0.9, sequence=7),
            match("tied earlier", 0.7, sequence=2),
            match("below threshold", 0.2, sequence=1),
        ])

        results = await store.query("session-a", [1.0, 0.0], top_k=5, similarity_threshold=0.4)

        assert [r.chunk.text for r in results] == ["first", "tied earlier", "second"]
        assert results[0].chunk.file_name == "notes.txt"
        assert store.index.query.call_args.kwargs["namespace"] == session_namespace("session-a")

    async def test_query_zero_top_k(self, store):
        assert await store.query("session-a", [1.0, 0.0], top_k=0) == []
        store.index.query.assert_not_called()

    async def test_clear_session_deletes_namespace(self, store):
        await store.clear_session("session-a")

        store.index.delete.assert_called_once_with(
            delete_all=True, namespace=session_namespace("session-a")
        )

    async def test_chunk_count_from_stats(self, store):
        namespace = session_namespace("session-a")
        store.index.describe_index_stats.return_value = SimpleNamespace(
            namespaces={namespace: SimpleNamespace(vector_count=12)}
        )

        assert await store.get_chunk_count("session-a") == 12
        assert await store.get_chunk_count("session-b") == 0

    async def test_list_documents(self, store):
        store.index.list.return_value = iter([["doc-1_0", "doc-1_1"], ["doc-2_0"]])
        store.index.fetch.side_effect = lambda ids, namespace: SimpleNamespace(
            vectors={ids[0]: SimpleNamespace(metadata={"file_name": f"{ids[0]}.txt"})}
        )

        documents = await store.list_documents("session-a")

        assert [(d.document_id, d.chunk_count) for d in documents] == [("doc-1", 2), ("doc-2", 1)]
        assert documents[0].file_name == "doc-1_0.txt"


async def test_missing_api_key(settings):
    store = PineconeVectorStore(settings.model_copy(update={"pinecone_api_key": None}))

    with pytest.raises(ConfigurationError):
        await store.get_chunk_count("session-a")


class TestInsertionOrderAcrossProcesses:
    """Tie order must survive a restart: two store instances share one index."""

    def upserted(self, index: Mock) -> dict:
        vectors = [v for call in index.upsert.call_args_list for v in call.kwargs["vectors"]]
        return {v["id"]: v["metadata"] for v in vectors}

    async def test_restarted_store_sorts_after_older_writes(self, pinecone_settings):
        index = Mock()
        before_restart = PineconeVectorStore(pinecone_settings)
        before_restart._index = index
        after_restart = PineconeVectorStore(pinecone_settings)
        after_restart._index = index

        with patch("app.services.vector_store.sequence_clock", return_value=1_700_000_000_000_000):
            await before_restart.add_documents("session-a", "doc-old", [
                make_chunk(f"old{i}", [1.0, 0.0], index=i, document_id="doc-old") for i in range(3)
            ])
        with patch("app.services.vector_store.sequence_clock", return_value=1_700_000_060_000_000):
            await after_restart.add_documents("session-a", "doc-new", [
                make_chunk("new0", [1.0, 0.0], index=0, document_id="doc-new")
            ])

        metadata = self.upserted(index)
        index.query.return_value = SimpleNamespace(matches=[
            SimpleNamespace(score=0.9, metadata=metadata["doc-new_0"]),
            SimpleNamespace(score=0.9, metadata=metadata["doc-old_2"]),
        ])

        results = await after_restart.query("session-a", [1.0, 0.0])

        assert [r.chunk.text for r in results] == ["old2", "new0"]

    async def test_sequences_increase_within_process(self, store):
        with patch("app.services.vector_store.sequence_clock", return_value=5):
            await store.add_documents("session-a", "doc-1", [
                make_chunk(f"a{i}", [1.0, 0.0], index=i) for i in range(3)
            ])
            await store.add_documents("session-a", "doc-2", [
                make_chunk("b0", [1.0, 0.0], index=0, document_id="doc-2")
            ])

        sequences = [
            v["metadata"]["sequence"]
            for call in store.index.upsert.call_args_list
            for v in call.kwargs["vectors"]
        ]
        assert sequences == [5, 6, 7, 8]

    def test_sequence_fits_float_metadata(self):
        value = sequence_clock()
        assert float(value) == value
