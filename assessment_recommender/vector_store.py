from __future__ import annotations

"""
Vector index backends for assessment embeddings.

Two interchangeable stores share the :class:`VectorStore` contract:

* :class:`PineconeVectorStore` keeps vectors in a managed Pinecone
  index (cosine metric, namespace-scoped).  Upserts are sent per batch
  and are not transactional; a failed run is repaired by re-indexing.
* :class:`SQLiteVectorStore` keeps one ``embeddings`` table on disk
  with raw float32 vector bytes and a JSON metadata blob.  Similarity
  is computed by a ``cosine_similarity`` SQL function registered on the
  connection and queries are a full scan ordered by that score, which
  is fine for a catalog of a few hundred rows.  Each batch write runs in
  a single transaction.

Both stores fix their dimension at construction time and refuse
vectors of any other length with :class:`ConfigurationError`.
"""

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from loguru import logger
from pinecone import Pinecone, ServerlessSpec

from .config import (
    LOCAL_EMBEDDING_DIM,
    LOCAL_VECTOR_DB_PATH,
    OPENAI_EMBEDDING_DIM,
    PINECONE_CLOUD,
    PINECONE_INDEX_NAME,
    PINECONE_NAMESPACE,
    PINECONE_REGION,
    VECTOR_METRIC,
)
from .errors import ConfigurationError, ExternalServiceError

# (metadata, similarity) pairs, most similar first
QueryResult = List[Tuple[Dict[str, Any], float]]


@dataclass
class EmbeddingRecord:
    id: str
    vector: np.ndarray
    metadata: Dict[str, Any] = field(default_factory=dict)


class VectorStore(ABC):
    """Persisted id -> (vector, metadata) mapping with similarity search."""

    dimension: int

    @abstractmethod
    def ensure_ready(self) -> None:
        """Create the backing store if absent.  Safe to call repeatedly."""

    @abstractmethod
    def upsert_batch(self, records: Sequence[EmbeddingRecord]) -> None:
        """Insert or replace every record, keyed by id."""

    @abstractmethod
    def query(self, vector: np.ndarray, top_k: int) -> QueryResult:
        """Return up to ``top_k`` stored entries by descending cosine similarity."""

    @abstractmethod
    def count(self) -> int:
        ...

    def upsert(self, record_id: str, vector: np.ndarray, metadata: Dict[str, Any]) -> None:
        self.upsert_batch([EmbeddingRecord(id=record_id, vector=vector, metadata=metadata)])

    def close(self) -> None:
        pass

    def _check_vector(self, vector) -> np.ndarray:
        arr = np.asarray(vector, dtype="<f4").reshape(-1)
        if arr.shape[0] != self.dimension:
            raise ConfigurationError(
                f"Vector has dimension {arr.shape[0]} but the index expects {self.dimension}"
            )
        return arr


# -----------------------------------------------------------------------------
# Local SQLite backend
# -----------------------------------------------------------------------------

def cosine_similarity_bytes(a: bytes, b: bytes) -> float:
    """Cosine similarity between two raw little-endian float32 buffers."""
    va = np.frombuffer(a, dtype="<f4")
    vb = np.frombuffer(b, dtype="<f4")
    if va.shape != vb.shape:
        return 0.0
    denom = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb)) / denom


_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS embeddings (
    id TEXT PRIMARY KEY,
    vector BLOB,
    metadata TEXT
)
"""

_UPSERT = "INSERT OR REPLACE INTO embeddings (id, vector, metadata) VALUES (?, ?, ?)"

_QUERY = """
SELECT metadata, cosine_similarity(vector, ?) AS similarity
FROM embeddings
ORDER BY similarity DESC
LIMIT ?
"""


class SQLiteVectorStore(VectorStore):
    """Embedded single-table store with a user-defined similarity function."""

    def __init__(self, db_path: Path = LOCAL_VECTOR_DB_PATH, dimension: int = LOCAL_EMBEDDING_DIM):
        self.db_path = Path(db_path)
        self.dimension = dimension
        self._conn: Optional[sqlite3.Connection] = None
        self._ready = False
        self._lock = threading.RLock()

    def _connect(self) -> sqlite3.Connection:
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.create_function("cosine_similarity", 2, cosine_similarity_bytes, deterministic=True)
            self._conn = conn
        return self._conn

    def ensure_ready(self) -> None:
        with self._lock:
            try:
                conn = self._connect()
                with conn:
                    conn.execute(_CREATE_TABLE)
                row = conn.execute("SELECT id, length(vector) FROM embeddings LIMIT 1").fetchone()
            except sqlite3.Error as exc:
                raise ExternalServiceError(f"Local vector store unavailable: {exc}") from exc
        if row is not None and row[1] != self.dimension * 4:
            raise ConfigurationError(
                f"{self.db_path} holds {row[1] // 4}-d vectors but the store expects "
                f"{self.dimension}-d; rebuild the index with the matching embedding backend"
            )
        self._ready = True
        logger.info("Local vector store ready at {}", self.db_path)

    def _require(self) -> sqlite3.Connection:
        if not self._ready:
            self.ensure_ready()
        return self._conn  # type: ignore[return-value]

    def upsert_batch(self, records: Sequence[EmbeddingRecord]) -> None:
        with self._lock:
            conn = self._require()
            try:
                # one transaction per batch: any failure reverts every row in it
                with conn:
                    for record in records:
                        conn.execute(
                            _UPSERT,
                            (
                                record.id,
                                self._check_vector(record.vector).tobytes(),
                                json.dumps(record.metadata),
                            ),
                        )
            except sqlite3.Error as exc:
                raise ExternalServiceError(f"Local vector upsert failed: {exc}") from exc

    def query(self, vector: np.ndarray, top_k: int) -> QueryResult:
        q = self._check_vector(vector).tobytes()
        with self._lock:
            conn = self._require()
            try:
                rows = conn.execute(_QUERY, (q, int(top_k))).fetchall()
            except sqlite3.Error as exc:
                raise ExternalServiceError(f"Local vector query failed: {exc}") from exc
        return [(json.loads(meta), float(sim)) for meta, sim in rows]

    def count(self) -> int:
        with self._lock:
            conn = self._require()
            try:
                return int(conn.execute("SELECT COUNT(*) FROM embeddings").fetchone()[0])
            except sqlite3.Error as exc:
                raise ExternalServiceError(f"Local vector count failed: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            self._ready = False


# -----------------------------------------------------------------------------
# Remote Pinecone backend
# -----------------------------------------------------------------------------

def _clean_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    # Pinecone rejects null metadata values
    return {k: v for k, v in metadata.items() if v is not None}


class PineconeVectorStore(VectorStore):
    """Managed cloud index, one namespace per catalog."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        index_name: str = PINECONE_INDEX_NAME,
        namespace: str = PINECONE_NAMESPACE,
        dimension: int = OPENAI_EMBEDDING_DIM,
        cloud: str = PINECONE_CLOUD,
        region: str = PINECONE_REGION,
        client: Optional[Any] = None,
    ):
        if client is None:
            if not api_key:
                raise ConfigurationError("PINECONE_API_KEY is required for the remote vector store")
            client = Pinecone(api_key=api_key)
        self._client = client
        self.index_name = index_name
        self.namespace = namespace
        self.dimension = dimension
        self.cloud = cloud
        self.region = region
        self._index = None

    def ensure_ready(self) -> None:
        try:
            names = self._client.list_indexes().names()
            if self.index_name not in names:
                logger.info(
                    "Creating Pinecone index {} (dim={}, metric={})",
                    self.index_name,
                    self.dimension,
                    VECTOR_METRIC,
                )
                self._client.create_index(
                    name=self.index_name,
                    dimension=self.dimension,
                    metric=VECTOR_METRIC,
                    spec=ServerlessSpec(cloud=self.cloud, region=self.region),
                )
                existing_dim = self.dimension
            else:
                existing_dim = int(self._client.describe_index(self.index_name).dimension)
            index = self._client.Index(self.index_name)
        except Exception as exc:
            raise ExternalServiceError(f"Pinecone index setup failed: {exc}") from exc
        if existing_dim != self.dimension:
            raise ConfigurationError(
                f"Pinecone index {self.index_name} is {existing_dim}-d but the store expects {self.dimension}-d"
            )
        self._index = index
        logger.info("Pinecone index {} ready (namespace={})", self.index_name, self.namespace)

    def _require(self):
        if self._index is None:
            self.ensure_ready()
        return self._index

    def upsert_batch(self, records: Sequence[EmbeddingRecord]) -> None:
        vectors = [
            {
                "id": r.id,
                "values": self._check_vector(r.vector).tolist(),
                "metadata": _clean_metadata(r.metadata),
            }
            for r in records
        ]
        index = self._require()
        try:
            index.upsert(vectors=vectors, namespace=self.namespace)
        except Exception as exc:
            raise ExternalServiceError(f"Pinecone upsert failed: {exc}") from exc

    def query(self, vector: np.ndarray, top_k: int) -> QueryResult:
        values = self._check_vector(vector).tolist()
        index = self._require()
        try:
            response = index.query(
                vector=values,
                top_k=int(top_k),
                include_metadata=True,
                namespace=self.namespace,
            )
        except Exception as exc:
            raise ExternalServiceError(f"Pinecone query failed: {exc}") from exc
        results = [(dict(m.metadata or {}), float(m.score)) for m in response.matches]
        results.sort(key=lambda x: -x[1])
        return results

    def count(self) -> int:
        index = self._require()
        try:
            stats = index.describe_index_stats()
        except Exception as exc:
            raise ExternalServiceError(f"Pinecone stats failed: {exc}") from exc
        ns = stats.namespaces.get(self.namespace)
        return int(ns.vector_count) if ns is not None else 0
