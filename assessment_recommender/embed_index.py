from __future__ import annotations

"""
Embedding backends and the offline indexing job.

An :class:`Embedder` turns text into a fixed-length float32 vector.
Two backends are provided:

* :class:`OpenAIEmbedder` calls the OpenAI embeddings API
  (``text-embedding-ada-002``, 1536 dimensions).
* :class:`SentenceTransformerEmbedder` runs a local multilingual
  sentence encoder (512 dimensions) through ``sentence_transformers``.

The same embedder must be used to build the index and to query it.
Every vector is checked against the backend's declared dimension so a
mismatched model fails loudly instead of producing meaningless scores.

:func:`index_catalog` embeds each assessment and upserts it into a
:class:`~assessment_recommender.vector_store.VectorStore` in fixed-size
batches.  Record ids are deterministic slugs of the assessment name,
so re-running the job replaces vectors rather than duplicating them.
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from loguru import logger
from openai import OpenAI, OpenAIError

from .catalog import assessment_id
from .config import (
    EMBEDDING_TIMEOUT,
    HF_ENV_VARS,
    INDEX_BATCH_SIZE,
    LOCAL_EMBEDDING_DIM,
    LOCAL_EMBEDDING_MODEL,
    OPENAI_EMBEDDING_DIM,
    OPENAI_EMBEDDING_MODEL,
    Assessment,
)
from .errors import ConfigurationError, ExternalServiceError
from .vector_store import EmbeddingRecord, VectorStore


class Embedder(ABC):
    """Text -> fixed-dimension vector."""

    name: str
    dimension: int

    @abstractmethod
    def _encode(self, text: str) -> Sequence[float]:
        ...

    def embed(self, text: str) -> np.ndarray:
        vec = np.asarray(self._encode(text), dtype="float32").reshape(-1)
        if vec.shape[0] != self.dimension:
            raise ConfigurationError(
                f"{self.name} returned a {vec.shape[0]}-d vector, expected {self.dimension}"
            )
        return vec


class OpenAIEmbedder(Embedder):
    """Remote embeddings via the OpenAI API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = OPENAI_EMBEDDING_MODEL,
        dimension: int = OPENAI_EMBEDDING_DIM,
        timeout: float = EMBEDDING_TIMEOUT,
        client: Optional[Any] = None,
    ):
        if client is None:
            if not api_key:
                raise ConfigurationError("OPENAI_API_KEY is required for remote embeddings")
            client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self._client = client
        self.name = model
        self.dimension = dimension

    def _encode(self, text: str) -> Sequence[float]:
        try:
            response = self._client.embeddings.create(model=self.name, input=text)
        except OpenAIError as exc:
            raise ExternalServiceError(f"OpenAI embedding request failed: {exc}") from exc
        return response.data[0].embedding


def _ensure_hf_env() -> None:
    """
    Point the HuggingFace cache at the project ``models`` directory
    unless the user already configured one.
    """
    for key, val in HF_ENV_VARS.items():
        if key not in os.environ:
            os.environ[key] = val


class SentenceTransformerEmbedder(Embedder):
    """Local in-process sentence encoder; the model loads on first use."""

    def __init__(self, model_name: str = LOCAL_EMBEDDING_MODEL, dimension: int = LOCAL_EMBEDDING_DIM):
        self.name = model_name
        self.dimension = dimension
        self._model = None

    def _load(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            _ensure_hf_env()
            logger.info("Loading local sentence encoder: {}", self.name)
            try:
                self._model = SentenceTransformer(self.name)
            except OSError as exc:
                raise ExternalServiceError(f"Could not load encoder {self.name}: {exc}") from exc
            model_dim = self._model.get_sentence_embedding_dimension()
            if model_dim != self.dimension:
                raise ConfigurationError(
                    f"Encoder {self.name} produces {model_dim}-d vectors, expected {self.dimension}"
                )
        return self._model

    def _encode(self, text: str) -> Sequence[float]:
        model = self._load()
        return model.encode([text], convert_to_numpy=True)[0]


# -----------------------------------------------------------------------------
# Documents + indexing job
# -----------------------------------------------------------------------------

@dataclass
class AssessmentDocument:
    id: str
    text: str
    metadata: Dict[str, Any]


def _yes_no(flag: bool) -> str:
    return "Yes" if flag else "No"


def build_document(assessment: Assessment) -> AssessmentDocument:
    """Text representation and display metadata for one assessment."""
    text = "\n".join(
        [
            f"Assessment Name: {assessment.name}",
            f"Test Type: {assessment.test_type}",
            f"Duration: {assessment.duration}",
            f"Description: {assessment.description}",
            f"Remote Testing: {_yes_no(assessment.remote_testing)}",
            f"Adaptive Support: {_yes_no(assessment.adaptive_support)}",
        ]
    )
    return AssessmentDocument(
        id=assessment_id(assessment.name),
        text=text,
        metadata=assessment.model_dump(),
    )


def index_catalog(
    assessments: Sequence[Assessment],
    embedder: Embedder,
    store: VectorStore,
    batch_size: int = INDEX_BATCH_SIZE,
) -> int:
    """
    Embed every assessment and upsert it into ``store``.

    Work proceeds in batches of ``batch_size``: all vectors of a batch
    are computed first, then written with one ``upsert_batch`` call.  An
    error in either step aborts the run and propagates; batches already
    written stay in place and a re-run overwrites them.

    Returns the number of records written.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    if embedder.dimension != store.dimension:
        raise ConfigurationError(
            f"Embedder {embedder.name} is {embedder.dimension}-d but the vector store is {store.dimension}-d"
        )
    store.ensure_ready()
    total = len(assessments)
    n_batches = (total + batch_size - 1) // batch_size
    logger.info("Indexing {} assessments in {} batches", total, n_batches)

    written = 0
    for b, start in enumerate(range(0, total, batch_size), 1):
        batch = assessments[start : start + batch_size]
        records: List[EmbeddingRecord] = []
        for assessment in batch:
            doc = build_document(assessment)
            records.append(EmbeddingRecord(id=doc.id, vector=embedder.embed(doc.text), metadata=doc.metadata))
        store.upsert_batch(records)
        written += len(records)
        logger.info("Indexed batch {}/{}", b, n_batches)

    logger.info("Indexing complete: {} records", written)
    return written
