from __future__ import annotations

"""
Offline evaluation of recommendations against labelled queries.

Labels use the same two-column layout as batch predictions
(``Query``, ``Assessment_url``); one row per relevant assessment.
Both metrics normalise by ``min(k, number of relevant items)`` so a
query with a single relevant assessment can still reach 1.0.
"""

from typing import Callable, Dict, List, Sequence, Set

import pandas as pd
from loguru import logger


def _canon(url: str) -> str:
    return str(url).strip().rstrip("/").lower()


def _hit_flags(recommended: Sequence[str], gold: Set[str], k: int) -> List[bool]:
    # a relevant url scores once; later repeats keep their rank but are misses
    seen: Set[str] = set()
    flags = []
    for r in recommended[:k]:
        c = _canon(r)
        flags.append(c in gold and c not in seen)
        seen.add(c)
    return flags


def recall_at_k(recommended: Sequence[str], relevant: Sequence[str], k: int) -> float:
    """Share of relevant items found in the top ``k`` recommendations."""
    gold = {_canon(r) for r in relevant}
    if not gold or k <= 0:
        return 0.0
    hits = sum(_hit_flags(recommended, gold, k))
    return hits / min(k, len(gold))


def average_precision_at_k(recommended: Sequence[str], relevant: Sequence[str], k: int) -> float:
    gold = {_canon(r) for r in relevant}
    if not gold or k <= 0:
        return 0.0
    hits = 0
    total = 0.0
    for i, hit in enumerate(_hit_flags(recommended, gold, k), 1):
        if hit:
            hits += 1
            total += hits / i
    return total / min(k, len(gold)) if hits else 0.0


def load_labels(df: pd.DataFrame) -> Dict[str, List[str]]:
    """Group a ``Query, Assessment_url`` frame into query -> relevant urls."""
    cols = {c.lower(): c for c in df.columns}
    qcol, ucol = cols.get("query"), cols.get("assessment_url")
    if not qcol or not ucol:
        raise ValueError(f"Expected columns 'Query' and 'Assessment_url'. Found: {list(df.columns)}")
    labels: Dict[str, List[str]] = {}
    for q, u in df[[qcol, ucol]].dropna().itertuples(index=False, name=None):
        labels.setdefault(str(q).strip(), []).append(str(u))
    return labels


def evaluate_predictions(
    labels_df: pd.DataFrame,
    recommend_fn: Callable[[str], List[str]],
    k: int = 3,
) -> Dict[str, float]:
    """
    Run ``recommend_fn`` once per labelled query and average the metrics.

    ``recommend_fn`` maps query text to a ranked list of assessment urls.
    """
    labels = load_labels(labels_df)
    recalls: List[float] = []
    aps: List[float] = []
    for i, (query, relevant) in enumerate(labels.items(), 1):
        predicted = recommend_fn(query)
        recalls.append(recall_at_k(predicted, relevant, k))
        aps.append(average_precision_at_k(predicted, relevant, k))
        logger.info("Evaluated {}/{}: recall@{}={:.3f}", i, len(labels), k, recalls[-1])
    n = len(labels)
    return {
        "queries": float(n),
        f"mean_recall@{k}": sum(recalls) / n if n else 0.0,
        f"map@{k}": sum(aps) / n if n else 0.0,
    }
