from __future__ import annotations

"""
Loading and helpers for the static assessment catalog.

The catalog is read once at process start from a JSON list of records
(CSV and Excel exports are accepted too), normalised into immutable
:class:`~assessment_recommender.config.Assessment` objects and handed
to every component that needs it as an explicit :class:`Catalog`
value.  Nothing in this module mutates a catalog after construction.
"""

import re
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, TypeVar

import pandas as pd
from loguru import logger

from .config import CATALOG_PATH, Assessment

A = TypeVar("A", bound=Assessment)


# ---------------------------
# Column detection / standardisation
# ---------------------------

COLUMN_CANDIDATES: Dict[str, List[str]] = {
    "name": ["name", "Assessment Name", "assessment_name", "Assessment", "Title"],
    "url": ["url", "Link", "Assessment URL", "assessment_url"],
    "test_type": ["test_type", "Test Type", "type", "testType"],
    "duration": ["duration", "Duration", "Duration (mins)", "Assessment Length"],
    "description": ["description", "Description", "Summary"],
    "remote_testing": ["remote_testing", "Remote Testing", "remote", "remote_support"],
    "adaptive_support": ["adaptive_support", "Adaptive Support", "adaptive", "Adaptive/IRT"],
}


def _standardise_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Rename whatever columns the export uses to the canonical field names."""
    col_map: Dict[str, str] = {}
    lower_to_original = {str(c).lower(): c for c in df.columns}
    for canon, candidates in COLUMN_CANDIDATES.items():
        for candidate in candidates:
            original = lower_to_original.get(candidate.lower())
            if original is not None:
                col_map[original] = canon
                break
    df_std = df.rename(columns=col_map)
    missing = [c for c in ("name", "description") if c not in df_std.columns]
    if missing:
        logger.warning("Catalog source is missing columns: {}", missing)
    return df_std


def _as_flag(value) -> bool:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return False
    if isinstance(value, str):
        return value.strip().lower() in {"yes", "y", "true", "1"}
    return bool(value)


def _as_text(value) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    return str(value).strip()


# ---------------------------
# Catalog value
# ---------------------------

class Catalog(Sequence[Assessment]):
    """Ordered, read-only collection of assessments."""

    def __init__(self, assessments: Iterable[Assessment]):
        self._items = tuple(assessments)
        self._by_name = {a.name.lower(): a for a in reversed(self._items)}

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Assessment]:
        return iter(self._items)

    def __getitem__(self, index):
        return self._items[index]

    def get(self, name: str) -> Optional[Assessment]:
        return self._by_name.get((name or "").lower())

    def __repr__(self) -> str:
        return f"Catalog({len(self._items)} assessments)"


def catalog_from_records(records: Iterable[dict]) -> Catalog:
    """Build a catalog from plain dict records, skipping unusable rows."""
    df = pd.DataFrame(list(records))
    return _catalog_from_frame(df)


def _catalog_from_frame(df: pd.DataFrame) -> Catalog:
    df = _standardise_columns(df)
    items: List[Assessment] = []
    seen: set[str] = set()
    for row in df.to_dict(orient="records"):
        name = _as_text(row.get("name"))
        if not name:
            logger.warning("Skipping catalog row without a name")
            continue
        if name in seen:
            logger.warning("Duplicate catalog name '{}'; keeping first occurrence", name)
            continue
        seen.add(name)
        items.append(
            Assessment(
                name=name,
                url=_as_text(row.get("url")),
                test_type=_as_text(row.get("test_type")),
                duration=_as_text(row.get("duration")),
                description=_as_text(row.get("description")),
                remote_testing=_as_flag(row.get("remote_testing")),
                adaptive_support=_as_flag(row.get("adaptive_support")),
            )
        )
    return Catalog(items)


def load_catalog(path: Path = CATALOG_PATH) -> Catalog:
    """Load the assessment catalog from ``.json``, ``.csv`` or ``.xlsx``."""
    path = Path(path)
    logger.info("Loading assessment catalog from {}", path)
    ext = path.suffix.lower()
    if ext == ".json":
        df = pd.read_json(path, orient="records", dtype=False)
    elif ext == ".csv":
        df = pd.read_csv(path)
    elif ext in {".xlsx", ".xls"}:
        df = pd.read_excel(path)
    else:
        raise ValueError(f"Unsupported catalog format: {path.suffix}")
    catalog = _catalog_from_frame(df)
    logger.info("Loaded catalog with {} assessments", len(catalog))
    return catalog


# ---------------------------
# Field helpers
# ---------------------------

_DIGITS_RE = re.compile(r"\d+")


def parse_duration_minutes(duration: Optional[str]) -> Optional[int]:
    """Return the first integer found in a duration string, or ``None``."""
    if not duration:
        return None
    m = _DIGITS_RE.search(str(duration))
    return int(m.group(0)) if m else None


def within_time_limit(assessment: Assessment, time_limit: int) -> bool:
    """Unknown durations are always within budget."""
    minutes = parse_duration_minutes(assessment.duration)
    return minutes is None or minutes <= time_limit


def filter_by_time_limit(assessments: Iterable[A], time_limit: int) -> List[A]:
    return [a for a in assessments if within_time_limit(a, time_limit)]


def dedupe_by_name(items: Iterable[A]) -> List[A]:
    """Drop repeated names, first occurrence wins."""
    seen: set[str] = set()
    out: List[A] = []
    for item in items:
        if item.name in seen:
            continue
        seen.add(item.name)
        out.append(item)
    return out


def assessment_id(name: str) -> str:
    """Deterministic record id: whitespace runs become ``-``, lowercased."""
    return re.sub(r"\s+", "-", name.strip()).lower()
