"""
Shared fixtures: a small catalog, a deterministic embedder, a scripted
LLM and a throwaway SQLite vector store.  Nothing here touches the
network.
"""

from __future__ import annotations

import hashlib
import re
from typing import List, Sequence, Union

import numpy as np
import pytest

from assessment_recommender.catalog import catalog_from_records
from assessment_recommender.embed_index import Embedder
from assessment_recommender.llm import LLMClient
from assessment_recommender.vector_store import SQLiteVectorStore

TEST_DIM = 64

SAMPLE_RECORDS = [
    {
        "name": "Verify - Java",
        "url": "https://example.com/verify-java",
        "test_type": "Knowledge & Skills",
        "duration": "30 minutes",
        "description": "Core Java programming: collections, exceptions and threads.",
        "remote_testing": True,
        "adaptive_support": False,
    },
    {
        "name": "Python (New)",
        "url": "https://example.com/python",
        "test_type": "Knowledge & Skills",
        "duration": "11 minutes",
        "description": "Python programming fundamentals and the standard library.",
        "remote_testing": True,
        "adaptive_support": False,
    },
    {
        "name": "Verify - Numerical Reasoning",
        "url": "https://example.com/numerical",
        "test_type": "Cognitive Ability",
        "duration": "18 minutes",
        "description": "Decisions and inferences from numerical data.",
        "remote_testing": True,
        "adaptive_support": True,
    },
    {
        "name": "Verify - Inductive Reasoning",
        "url": "https://example.com/inductive",
        "test_type": "Cognitive Ability",
        "duration": "24 minutes",
        "description": "Relationships between abstract concepts.",
        "remote_testing": True,
        "adaptive_support": True,
    },
    {
        "name": "Verify - Deductive Reasoning",
        "url": "https://example.com/deductive",
        "test_type": "Cognitive Ability",
        "duration": "20 minutes",
        "description": "Logical conclusions from given information.",
        "remote_testing": True,
        "adaptive_support": True,
    },
    {
        "name": "OPQ32r",
        "url": "https://example.com/opq",
        "test_type": "Personality & Behavior",
        "duration": "25 minutes",
        "description": "Workplace personality characteristics including team working style.",
        "remote_testing": True,
        "adaptive_support": False,
    },
    {
        "name": "Motivation Questionnaire",
        "url": "https://example.com/mq",
        "test_type": "Personality",
        "duration": "25 minutes",
        "description": "What energises and drains a person at work.",
        "remote_testing": True,
        "adaptive_support": False,
    },
    {
        "name": "Teamwork Scenarios",
        "url": "https://example.com/teamwork",
        "test_type": "Behavioral",
        "duration": "Untimed",
        "description": "How candidates collaborate and communicate in a team.",
        "remote_testing": False,
        "adaptive_support": False,
    },
    {
        "name": "Executive Leadership Simulation",
        "url": "https://example.com/leadership",
        "test_type": "Leadership",
        "duration": "90 minutes",
        "description": "Senior leadership and management judgement.",
        "remote_testing": False,
        "adaptive_support": False,
    },
]


class HashingEmbedder(Embedder):
    """Bag-of-words feature hashing; identical text gives identical vectors."""

    def __init__(self, dimension: int = TEST_DIM):
        self.name = "hashing-test"
        self.dimension = dimension

    def _encode(self, text: str) -> Sequence[float]:
        vec = np.zeros(self.dimension, dtype="float32")
        for token in re.findall(r"\w+", text.lower()):
            h = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16)
            vec[h % self.dimension] += 1.0
        return vec


class FakeLLMClient(LLMClient):
    """Replays canned responses in order; an Exception entry is raised."""

    def __init__(self, responses: List[Union[str, Exception]]):
        self.responses = list(responses)
        self.prompts: List[str] = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.responses:
            raise AssertionError("FakeLLMClient ran out of responses")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def catalog():
    return catalog_from_records(SAMPLE_RECORDS)


@pytest.fixture
def embedder():
    return HashingEmbedder()


@pytest.fixture
def sqlite_store(tmp_path):
    store = SQLiteVectorStore(tmp_path / "vectors.db", dimension=TEST_DIM)
    yield store
    store.close()
