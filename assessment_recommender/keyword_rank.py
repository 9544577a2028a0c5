from __future__ import annotations

"""
Deterministic keyword fallback ranker.

This is the terminal stage of the recommendation chain: it makes no
external calls and cannot fail.  The input text is lower-cased and run
through an ordered table of :class:`KeywordRule` entries.  Every rule
that fires contributes the time-filtered catalog items whose target
field contains one of the rule's needles.  Earlier rules therefore
rank higher.  When nothing is collected a fixed mix is returned
instead: up to two cognitive, two personality and one behavioral
assessment, in that order.

Scores are positional, ``100 - 5 * rank``, and only meaningful within
a single keyword result.
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from loguru import logger

from .catalog import Catalog, dedupe_by_name, filter_by_time_limit
from .config import KEYWORD_SCORE_START, KEYWORD_SCORE_STEP, RESULT_MAX, Assessment, Recommendation

# (field, needles): field is an Assessment attribute, any needle matches
Target = Tuple[str, Tuple[str, ...]]


@dataclass(frozen=True)
class KeywordRule:
    """
    ``triggers`` is a list of alternatives; an alternative fires when
    every phrase in it occurs in the query.
    """

    label: str
    triggers: Tuple[Tuple[str, ...], ...]
    targets: Tuple[Target, ...]

    def fires(self, text_lower: str) -> bool:
        return any(all(p in text_lower for p in alt) for alt in self.triggers)

    def selects(self, assessment: Assessment) -> bool:
        for field, needles in self.targets:
            value = str(getattr(assessment, field, "") or "").lower()
            if any(n in value for n in needles):
                return True
        return False


def _any(*words: str) -> Tuple[Tuple[str, ...], ...]:
    return tuple((w,) for w in words)


def _name_or_desc(*needles: str) -> Tuple[Target, ...]:
    return (("name", needles), ("description", needles))


RULES: Tuple[KeywordRule, ...] = (
    KeywordRule("java", _any("java"), _name_or_desc("java")),
    KeywordRule("python", _any("python"), _name_or_desc("python")),
    KeywordRule("javascript", _any("javascript", "js"), _name_or_desc("javascript")),
    KeywordRule("sql", _any("sql"), _name_or_desc("sql")),
    KeywordRule(
        "full stack",
        (("full stack",), ("front", "back")),
        _name_or_desc("full stack"),
    ),
    KeywordRule(
        "cognitive",
        _any("cognitive", "reasoning", "analytical", "analyst"),
        (("test_type", ("cognitive",)),),
    ),
    KeywordRule("personality", _any("personality"), (("test_type", ("personality",)),)),
    KeywordRule(
        "teamwork",
        _any("collaborate", "team", "communication"),
        (
            ("name", ("team", "communication")),
            ("description", ("team", "collaborat", "communicat")),
        ),
    ),
    KeywordRule(
        "leadership",
        _any("leadership", "lead", "manage"),
        (
            ("test_type", ("leadership",)),
            ("description", ("leadership", "management")),
        ),
    ),
    KeywordRule("customer service", _any("customer", "service", "support"), _name_or_desc("customer")),
    KeywordRule("sales", _any("sales", "selling", "business development"), _name_or_desc("sales")),
    KeywordRule("remote work", _any("remote", "work from home", "virtual"), _name_or_desc("remote")),
    KeywordRule("agile", _any("agile", "scrum", "sprint"), _name_or_desc("agile")),
)

# test_type needle -> how many to take, in priority order
DEFAULT_MIX: Tuple[Tuple[str, int], ...] = (
    ("cognitive", 2),
    ("personality", 2),
    ("behavioral", 1),
)


class KeywordRanker:
    """Rule-table ranker over an injected catalog."""

    def __init__(self, catalog: Catalog, rules: Sequence[KeywordRule] = RULES):
        self.catalog = catalog
        self.rules = tuple(rules)

    def _default_mix(self, pool: Sequence[Assessment]) -> List[Assessment]:
        picked: List[Assessment] = []
        for needle, limit in DEFAULT_MIX:
            picked.extend([a for a in pool if needle in a.test_type.lower()][:limit])
        return picked

    def rank(self, text: str, time_limit: int, max_results: int = RESULT_MAX) -> List[Recommendation]:
        text_lower = (text or "").lower()
        pool = filter_by_time_limit(self.catalog, time_limit)

        collected: List[Assessment] = []
        fired: List[str] = []
        for rule in self.rules:
            if rule.fires(text_lower):
                fired.append(rule.label)
                collected.extend(a for a in pool if rule.selects(a))

        if not collected:
            collected = self._default_mix(pool)
            logger.info("No keyword rule selected anything; using default mix ({} items)", len(collected))
        else:
            logger.info("Keyword rules fired: {}", ", ".join(fired))

        unique = dedupe_by_name(collected)[:max_results]
        return [
            Recommendation.from_assessment(a, KEYWORD_SCORE_START - KEYWORD_SCORE_STEP * i)
            for i, a in enumerate(unique)
        ]
