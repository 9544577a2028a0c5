from __future__ import annotations

"""
LLM-backed requirement extraction and candidate ranking.

Two calls are made against an :class:`~assessment_recommender.llm.LLMClient`:

1. :meth:`SemanticRanker.extract_requirements` turns free job text into
   :class:`~assessment_recommender.config.ExtractedRequirements`.
2. :meth:`SemanticRanker.rank_assessments` asks the model to pick and
   score the most relevant assessments from a candidate set.

Models tend to wrap JSON in prose or markdown fences, so responses go
through :func:`extract_json_text` before parsing.  Names returned by
the model are mapped back onto real catalog records with a bounded
policy: case-insensitive exact match, then case-insensitive substring
match in either direction, otherwise the item is dropped.  Nothing is
ever invented from the model's text alone.
"""

import json
import re
from typing import Any, List, Optional, Sequence

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from .catalog import dedupe_by_name, filter_by_time_limit
from .config import RESULT_MAX, Assessment, ExtractedRequirements, Recommendation
from .errors import ExtractionParseError, RankingParseError
from .llm import LLMClient

EXTRACTION_PROMPT = """
Extract the key skills, requirements, and job role information from the following job description or query.
Format the output as JSON with the following structure:
{{
  "role": "The main job role or position",
  "skills": ["skill1", "skill2", ...],
  "experience_level": "Entry/Mid/Senior level if mentioned",
  "domain": "Industry or domain if mentioned",
  "soft_skills": ["soft skill1", "soft skill2", ...],
  "technical_skills": ["technical skill1", "technical skill2", ...],
  "time_constraint": "Any time constraints mentioned in minutes"
}}

Text: {text}
"""

RANKING_PROMPT = """
Given the following job requirements:
{requirements}

And the following available assessments:
{assessments}

Rank the top assessments (maximum {max_results}) that would be most relevant for evaluating candidates for this position.
For each assessment, provide a relevance score from 0-100 and a brief explanation of why it's relevant.
Use the assessment names exactly as given.
Format the output as JSON with the following structure:
{{
  "recommendations": [
    {{
      "assessment_name": "Name of the assessment",
      "relevance_score": 95,
      "explanation": "Brief explanation of relevance"
    }}
  ]
}}
"""

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def extract_json_text(text: str) -> str:
    """
    Locate the JSON payload inside a model response.

    Order: a fenced code block (```json or bare ```), then the span from
    the first ``{`` to the last ``}``, then the raw text unchanged.
    """
    m = _FENCE_RE.search(text)
    if m and m.group(1).strip():
        return m.group(1).strip()
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return text[start : end + 1]
    return text.strip()


def parse_json_response(text: str) -> Any:
    """``json.loads`` over :func:`extract_json_text`; raises ``ValueError``."""
    return json.loads(extract_json_text(text))


class RankedItem(BaseModel):
    """One entry of the model's ``recommendations`` array."""

    assessment_name: str = Field(min_length=1)
    relevance_score: float = Field(allow_inf_nan=False)
    explanation: Optional[str] = None

    @field_validator("assessment_name", mode="before")
    @classmethod
    def _strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("explanation", mode="before")
    @classmethod
    def _explanation_text(cls, v):
        if v is None:
            return None
        return str(v)


def match_assessment(name: str, candidates: Sequence[Assessment]) -> Optional[Assessment]:
    """
    Map a model-supplied name back to a candidate record.

    Exact (case-insensitive) matches are preferred over substring
    matches across the whole candidate list, so a short name that is a
    prefix of a longer one never steals the longer one's exact hit.
    """
    wanted = name.strip().lower()
    if not wanted:
        return None
    for c in candidates:
        if c.name.lower() == wanted:
            return c
    for c in candidates:
        have = c.name.lower()
        if wanted in have or have in wanted:
            return c
    return None


class SemanticRanker:
    """Requirement extraction and candidate ranking through an LLM."""

    def __init__(self, llm: LLMClient):
        self.llm = llm

    def extract_requirements(self, text: str) -> ExtractedRequirements:
        raw = self.llm.generate(EXTRACTION_PROMPT.format(text=text))
        try:
            data = parse_json_response(raw)
        except ValueError as exc:
            raise ExtractionParseError(f"Requirements response is not JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ExtractionParseError("Requirements response is not a JSON object")
        try:
            reqs = ExtractedRequirements.model_validate(data)
        except ValidationError as exc:
            raise ExtractionParseError(f"Requirements response has the wrong shape: {exc}") from exc
        logger.info("Extracted requirements: role='{}', {} skills", reqs.role, len(reqs.skills))
        return reqs

    def _ranking_prompt(
        self,
        requirements: ExtractedRequirements,
        candidates: Sequence[Assessment],
        max_results: int,
    ) -> str:
        # duration and url never reach the model
        listing = [
            {"name": a.name, "test_type": a.test_type, "description": a.description}
            for a in candidates
        ]
        return RANKING_PROMPT.format(
            requirements=json.dumps(requirements.model_dump(), indent=2),
            assessments=json.dumps(listing, indent=2),
            max_results=max_results,
        )

    def rank_assessments(
        self,
        requirements: ExtractedRequirements,
        candidates: Sequence[Assessment],
        time_limit: int,
        max_results: int = RESULT_MAX,
    ) -> List[Recommendation]:
        """
        Ask the model to rank ``candidates`` against ``requirements``.

        Candidates over the time budget are removed before prompting.
        Returns at most ``max_results`` unique recommendations in the
        model's order, each carrying its score and explanation.
        """
        pool = filter_by_time_limit(candidates, time_limit)
        if not pool:
            logger.info("No candidates within {} minutes; skipping LLM ranking", time_limit)
            return []

        raw = self.llm.generate(self._ranking_prompt(requirements, pool, max_results))
        try:
            data = parse_json_response(raw)
        except ValueError as exc:
            raise RankingParseError(f"Ranking response is not JSON: {exc}") from exc
        items = data.get("recommendations") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise RankingParseError("Ranking response has no 'recommendations' list")

        out: List[Recommendation] = []
        for entry in items:
            try:
                item = RankedItem.model_validate(entry)
            except ValidationError as exc:
                logger.warning("Dropping malformed ranking entry {!r}: {}", entry, exc.errors()[0]["msg"])
                continue
            assessment = match_assessment(item.assessment_name, pool)
            if assessment is None:
                logger.warning("Assessment not found: {}", item.assessment_name)
                continue
            out.append(
                Recommendation.from_assessment(assessment, item.relevance_score, item.explanation)
            )
        return dedupe_by_name(out)[:max_results]
