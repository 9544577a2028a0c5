from __future__ import annotations

import numpy as np
import pytest

from assessment_recommender.errors import ConfigurationError
from assessment_recommender.vector_store import (
    EmbeddingRecord,
    PineconeVectorStore,
    SQLiteVectorStore,
    cosine_similarity_bytes,
)

from conftest import TEST_DIM


def _vec(*hot: int, dim: int = TEST_DIM) -> np.ndarray:
    v = np.zeros(dim, dtype="float32")
    for i in hot:
        v[i] = 1.0
    return v


def test_cosine_similarity_bytes():
    a = _vec(0, 1).tobytes()
    assert cosine_similarity_bytes(a, a) == pytest.approx(1.0)
    assert cosine_similarity_bytes(a, _vec(2).tobytes()) == pytest.approx(0.0)
    assert cosine_similarity_bytes(a, _vec().tobytes()) == 0.0
    assert cosine_similarity_bytes(a, _vec(0, dim=8).tobytes()) == 0.0


def test_sqlite_query_orders_by_similarity(sqlite_store):
    sqlite_store.ensure_ready()
    sqlite_store.upsert("a", _vec(0), {"name": "A"})
    sqlite_store.upsert("b", _vec(0, 1), {"name": "B"})
    sqlite_store.upsert("c", _vec(5), {"name": "C"})

    results = sqlite_store.query(_vec(0), top_k=2)
    assert [m["name"] for m, _ in results] == ["A", "B"]
    assert results[0][1] == pytest.approx(1.0)
    assert results[0][1] >= results[1][1]


def test_sqlite_empty_store_returns_nothing(sqlite_store):
    sqlite_store.ensure_ready()
    assert sqlite_store.query(_vec(0), top_k=5) == []
    assert sqlite_store.count() == 0


def test_sqlite_upsert_is_idempotent_per_id(sqlite_store):
    sqlite_store.ensure_ready()
    sqlite_store.ensure_ready()
    sqlite_store.upsert("a", _vec(0), {"name": "old"})
    sqlite_store.upsert("a", _vec(1), {"name": "new"})
    assert sqlite_store.count() == 1
    (meta, sim), = sqlite_store.query(_vec(1), top_k=5)
    assert meta == {"name": "new"}
    assert sim == pytest.approx(1.0)


def test_sqlite_batch_rolls_back_on_failure(sqlite_store):
    sqlite_store.ensure_ready()
    batch = [
        EmbeddingRecord("a", _vec(0), {"name": "A"}),
        EmbeddingRecord("b", _vec(1), {"name": "B"}),
        EmbeddingRecord("bad", np.zeros(TEST_DIM + 1, dtype="float32"), {"name": "Bad"}),
    ]
    with pytest.raises(ConfigurationError):
        sqlite_store.upsert_batch(batch)
    assert sqlite_store.count() == 0


def test_sqlite_rejects_wrong_dimension_query(sqlite_store):
    with pytest.raises(ConfigurationError):
        sqlite_store.query(np.ones(TEST_DIM * 2, dtype="float32"), top_k=1)


def test_sqlite_detects_index_built_with_other_dimension(tmp_path):
    path = tmp_path / "v.db"
    small = SQLiteVectorStore(path, dimension=8)
    small.upsert("a", _vec(0, dim=8), {"name": "A"})
    small.close()

    big = SQLiteVectorStore(path, dimension=TEST_DIM)
    with pytest.raises(ConfigurationError):
        big.ensure_ready()
    big.close()


def test_sqlite_dimension_mismatch_keeps_failing_after_first_error(tmp_path):
    path = tmp_path / "v.db"
    small = SQLiteVectorStore(path, dimension=8)
    small.upsert("a", _vec(0, dim=8), {"name": "A"})
    small.close()

    big = SQLiteVectorStore(path, dimension=TEST_DIM)
    with pytest.raises(ConfigurationError):
        big.ensure_ready()
    for _ in range(2):
        with pytest.raises(ConfigurationError):
            big.query(_vec(0), top_k=1)
    with pytest.raises(ConfigurationError):
        big.count()
    big.close()


def test_sqlite_persists_across_connections(tmp_path):
    path = tmp_path / "v.db"
    store = SQLiteVectorStore(path, dimension=TEST_DIM)
    store.upsert("a", _vec(3), {"name": "A", "duration": "10"})
    store.close()

    reopened = SQLiteVectorStore(path, dimension=TEST_DIM)
    assert reopened.count() == 1
    assert reopened.query(_vec(3), top_k=1)[0][0]["duration"] == "10"
    reopened.close()


class _FakeMatch:
    def __init__(self, score, metadata):
        self.score = score
        self.metadata = metadata


class _FakeIndex:
    def __init__(self):
        self.vectors = {}

    def upsert(self, vectors, namespace):
        for v in vectors:
            self.vectors[(namespace, v["id"])] = v

    def query(self, vector, top_k, include_metadata, namespace):
        class _Resp:
            matches = [_FakeMatch(0.2, {"name": "low"}), _FakeMatch(0.9, {"name": "high"})]

        return _Resp()


class _FakeIndexList(list):
    def names(self):
        return list(self)


class _FakePinecone:
    def __init__(self, existing=(), dimension=TEST_DIM):
        self.existing = _FakeIndexList(existing)
        self.dimension = dimension
        self.created = []
        self.index = _FakeIndex()

    def list_indexes(self):
        return self.existing

    def create_index(self, name, dimension, metric, spec):
        self.created.append((name, dimension, metric))

    def describe_index(self, name):
        class _Desc:
            pass

        d = _Desc()
        d.dimension = self.dimension
        return d

    def Index(self, name):
        return self.index


def test_pinecone_creates_missing_index_with_cosine_metric():
    client = _FakePinecone()
    store = PineconeVectorStore(client=client, index_name="idx", dimension=TEST_DIM)
    store.ensure_ready()
    assert client.created == [("idx", TEST_DIM, "cosine")]


def test_pinecone_rejects_existing_index_of_other_dimension():
    client = _FakePinecone(existing=["idx"], dimension=1536)
    store = PineconeVectorStore(client=client, index_name="idx", dimension=TEST_DIM)
    with pytest.raises(ConfigurationError):
        store.ensure_ready()


def test_pinecone_upsert_drops_null_metadata_and_uses_namespace():
    client = _FakePinecone(existing=["idx"])
    store = PineconeVectorStore(client=client, index_name="idx", namespace="ns", dimension=TEST_DIM)
    store.upsert("a", _vec(0), {"name": "A", "explanation": None})
    stored = client.index.vectors[("ns", "a")]
    assert stored["metadata"] == {"name": "A"}
    assert len(stored["values"]) == TEST_DIM


def test_pinecone_query_sorted_descending():
    store = PineconeVectorStore(client=_FakePinecone(existing=["idx"]), index_name="idx", dimension=TEST_DIM)
    results = store.query(_vec(0), top_k=2)
    assert [m["name"] for m, _ in results] == ["high", "low"]


def test_pinecone_requires_api_key():
    with pytest.raises(ConfigurationError):
        PineconeVectorStore(api_key=None)
