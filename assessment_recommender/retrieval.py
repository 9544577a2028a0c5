from __future__ import annotations

"""
Retrieval module for the assessment recommender.

This module wires an :class:`~assessment_recommender.embed_index.Embedder`
to a :class:`~assessment_recommender.vector_store.VectorStore` and
answers "which assessments are semantically closest to this text,
within this duration budget".

The pair of backends is chosen once per process by
:func:`create_retrieval_service` and injected into the orchestrator;
nothing further down the call path inspects the configuration.

Example::

    from assessment_recommender.config import Settings
    from assessment_recommender.retrieval import create_retrieval_service

    service = create_retrieval_service(Settings(rag_backend="local"))
    for rec in service.query_similar("Java developer", time_limit=40):
        print(rec.name, rec.relevance_score)
"""

from typing import List, Optional

from loguru import logger

from .catalog import within_time_limit
from .config import RAG_TOP_K, Assessment, Recommendation, Settings
from .embed_index import Embedder, OpenAIEmbedder, SentenceTransformerEmbedder
from .errors import ConfigurationError
from .vector_store import PineconeVectorStore, SQLiteVectorStore, VectorStore


class RetrievalService:
    """Embed-then-search over a single vector index."""

    def __init__(self, embedder: Embedder, store: VectorStore):
        if embedder.dimension != store.dimension:
            raise ConfigurationError(
                f"Embedder {embedder.name} is {embedder.dimension}-d but the vector "
                f"store is {store.dimension}-d"
            )
        self.embedder = embedder
        self.store = store

    def ensure_ready(self) -> None:
        self.store.ensure_ready()

    def query_similar(self, text: str, time_limit: int, top_k: int = RAG_TOP_K) -> List[Recommendation]:
        """
        Return up to ``top_k`` stored assessments closest to ``text``.

        Items whose duration exceeds ``time_limit`` are dropped (an
        unparsable duration always passes).  Cosine similarity is
        reported as a 0..100 percentage.  An empty index yields ``[]``.
        """
        vector = self.embedder.embed(text)
        matches = self.store.query(vector, top_k)
        logger.info("Vector search returned {} matches", len(matches))

        out: List[Recommendation] = []
        for metadata, similarity in matches:
            try:
                assessment = Assessment.model_validate(metadata)
            except ValueError as exc:
                logger.warning("Skipping malformed index metadata: {}", exc)
                continue
            if not within_time_limit(assessment, time_limit):
                continue
            out.append(Recommendation.from_assessment(assessment, similarity * 100))
        return out


def create_retrieval_service(settings: Settings) -> Optional[RetrievalService]:
    """
    Build the retrieval service selected by ``settings.rag_backend``.

    ``local`` pairs the sentence encoder with SQLite; ``remote`` pairs
    OpenAI embeddings with Pinecone and requires both API keys;
    ``auto`` picks ``remote`` when those keys exist.  Returns ``None``
    when retrieval is disabled.
    """
    backend = settings.rag_backend
    if backend == "auto":
        backend = "remote" if settings.remote_credentials else "none"

    if backend == "none":
        logger.info("Vector retrieval disabled")
        return None

    if backend == "local":
        logger.info("Using local retrieval backend ({})", settings.local_vector_db)
        embedder = SentenceTransformerEmbedder(settings.local_embedding_model)
        store: VectorStore = SQLiteVectorStore(settings.local_vector_db, dimension=embedder.dimension)
        return RetrievalService(embedder, store)

    if not settings.remote_credentials:
        raise ConfigurationError(
            "RAG_BACKEND=remote requires both OPENAI_API_KEY and PINECONE_API_KEY"
        )
    logger.info("Using remote retrieval backend (index={})", settings.pinecone_index)
    embedder = OpenAIEmbedder(
        api_key=settings.openai_api_key,
        model=settings.openai_embedding_model,
        timeout=settings.embedding_timeout,
    )
    store = PineconeVectorStore(
        api_key=settings.pinecone_api_key,
        index_name=settings.pinecone_index,
        namespace=settings.pinecone_namespace,
        dimension=embedder.dimension,
        cloud=settings.pinecone_cloud,
        region=settings.pinecone_region,
    )
    return RetrievalService(embedder, store)
