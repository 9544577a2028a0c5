from __future__ import annotations

"""
Recommendation orchestrator.

A request walks a fixed chain of stages, each tried at most once:

``rag``
    Vector retrieval.  Non-empty candidates are re-ranked by the LLM
    when one is configured; if that fails the similarity order is kept.
``ai``
    LLM requirement extraction plus ranking over the whole catalog.
    Skipped for texts of :data:`~assessment_recommender.config.MIN_AI_QUERY_CHARS`
    characters or fewer.
``keyword``
    Rule-based ranking.  Always runs when reached and its result is
    returned even if empty.

The first stage returning a non-empty list wins and its name is
reported as ``method``.  Exceptions inside a stage are logged and
treated as an empty result; they never reach the caller.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from loguru import logger

from .catalog import Catalog, dedupe_by_name
from .config import DEFAULT_TIME_LIMIT, MIN_AI_QUERY_CHARS, RESULT_MAX, Recommendation, Settings
from .errors import ConfigurationError, InputValidationError
from .keyword_rank import KeywordRanker
from .llm import create_llm_client
from .rerank import SemanticRanker
from .retrieval import RetrievalService, create_retrieval_service


class Stage(str, Enum):
    RETRIEVE = "rag"
    RANK = "ai"
    KEYWORD = "keyword"


@dataclass
class RecommendationResult:
    method: str
    recommendations: List[Recommendation] = field(default_factory=list)


# (text, time_limit, max_results) -> recommendations, or None when the stage has nothing
StageAttempt = Callable[[str, int, int], Optional[List[Recommendation]]]


def finalize(recs: Sequence[Recommendation], max_results: int) -> List[Recommendation]:
    """Unique names, descending score (stable), at most ``max_results``."""
    unique = dedupe_by_name(recs)
    unique.sort(key=lambda r: -r.relevance_score)
    return unique[:max_results]


def run_fallback_chain(
    stages: Sequence[Tuple[Stage, StageAttempt]],
    text: str,
    time_limit: int,
    max_results: int,
) -> RecommendationResult:
    """
    Try each stage in order and return the first non-empty result.

    The last stage is terminal: whatever it returns is the answer.
    """
    for pos, (stage, attempt) in enumerate(stages):
        terminal = pos == len(stages) - 1
        try:
            found = attempt(text, time_limit, max_results)
        except Exception as exc:
            logger.warning("Stage '{}' failed, falling back: {}: {}", stage.value, type(exc).__name__, exc)
            found = None
        if found or terminal:
            recs = finalize(found or [], max_results)
            logger.info("Answered by stage '{}' with {} recommendations", stage.value, len(recs))
            return RecommendationResult(method=stage.value, recommendations=recs)
        logger.info("Stage '{}' produced no results", stage.value)
    return RecommendationResult(method=Stage.KEYWORD.value)


class Recommender:
    """
    Wires the three stages around one read-only catalog.

    ``retrieval`` and ``ranker`` are optional; a missing component
    simply means its stage is skipped.
    """

    def __init__(
        self,
        catalog: Catalog,
        retrieval: Optional[RetrievalService] = None,
        ranker: Optional[SemanticRanker] = None,
        keyword: Optional[KeywordRanker] = None,
    ):
        self.catalog = catalog
        self.retrieval = retrieval
        self.ranker = ranker
        self.keyword = keyword or KeywordRanker(catalog)

    @property
    def stages(self) -> List[Tuple[Stage, StageAttempt]]:
        return [
            (Stage.RETRIEVE, self._retrieve),
            (Stage.RANK, self._rank),
            (Stage.KEYWORD, self._keyword),
        ]

    def _retrieve(self, text: str, time_limit: int, max_results: int) -> Optional[List[Recommendation]]:
        if self.retrieval is None:
            return None
        candidates = self.retrieval.query_similar(text, time_limit)
        if not candidates:
            return None
        if self.ranker is None:
            return candidates
        try:
            reqs = self.ranker.extract_requirements(text)
            ranked = self.ranker.rank_assessments(reqs, candidates, time_limit, max_results)
        except Exception as exc:
            logger.warning("LLM re-rank of retrieved candidates failed, keeping similarity order: {}", exc)
            return candidates
        return ranked or candidates

    def _rank(self, text: str, time_limit: int, max_results: int) -> Optional[List[Recommendation]]:
        if self.ranker is None:
            return None
        if len(text) <= MIN_AI_QUERY_CHARS:
            logger.info("Text too short for LLM extraction ({} chars)", len(text))
            return None
        reqs = self.ranker.extract_requirements(text)
        return self.ranker.rank_assessments(reqs, self.catalog, time_limit, max_results)

    def _keyword(self, text: str, time_limit: int, max_results: int) -> List[Recommendation]:
        return self.keyword.rank(text, time_limit, max_results)

    def recommend(
        self,
        text: str,
        time_limit: int = DEFAULT_TIME_LIMIT,
        max_results: int = RESULT_MAX,
    ) -> RecommendationResult:
        if time_limit is None or int(time_limit) <= 0:
            raise InputValidationError("timeLimit must be a positive integer")
        if max_results <= 0:
            raise InputValidationError("max_results must be positive")
        text = (text or "").strip()
        return run_fallback_chain(self.stages, text, int(time_limit), max_results)


def build_recommender(settings: Settings, catalog: Catalog) -> Recommender:
    """Construct a :class:`Recommender` with the stages ``settings`` enable."""
    try:
        retrieval = create_retrieval_service(settings)
    except ConfigurationError as exc:
        logger.error("Vector retrieval disabled: {}", exc)
        retrieval = None

    llm = create_llm_client(settings)
    ranker = SemanticRanker(llm) if llm is not None else None
    return Recommender(catalog, retrieval=retrieval, ranker=ranker)
