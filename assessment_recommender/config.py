"""
Configuration for the assessment recommender.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Dict, List, Literal, Mapping, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Paths
PROJECT_ROOT = Path(__file__).resolve().parents[1]
DATA_DIR = PROJECT_ROOT / "data"
CATALOG_PATH = DATA_DIR / "assessments.json"
LOCAL_VECTOR_DB_PATH = DATA_DIR / "vectors.db"
MODELS_DIR = PROJECT_ROOT / "models"
LOG_DIR = PROJECT_ROOT / "logs"

# Embedding backends
OPENAI_EMBEDDING_MODEL = "text-embedding-ada-002"
OPENAI_EMBEDDING_DIM = 1536
LOCAL_EMBEDDING_MODEL = "sentence-transformers/distiluse-base-multilingual-cased-v2"
LOCAL_EMBEDDING_DIM = 512

HF_ENV_VARS = {
    "HF_HOME": str(MODELS_DIR),
}

# Vector backends
PINECONE_INDEX_NAME = "shl-assessments"
PINECONE_NAMESPACE = "assessments"
PINECONE_CLOUD = "aws"
PINECONE_REGION = "us-east-1"
VECTOR_METRIC = "cosine"

# LLM
GEMINI_API_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
GEMINI_MODEL = "gemini-1.5-flash"
GEMINI_GENERATION_CONFIG: Dict[str, float] = {
    "temperature": 0.4,
    "topK": 32,
    "topP": 0.95,
    "maxOutputTokens": 2048,
}

# Pipeline policy
DEFAULT_TIME_LIMIT = 60
RESULT_MAX = 10
RAG_TOP_K = 20
INDEX_BATCH_SIZE = 10
MIN_AI_QUERY_CHARS = 20  # texts this short skip LLM extraction
KEYWORD_SCORE_START = 100
KEYWORD_SCORE_STEP = 5

# Timeouts (seconds)
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "30"))
EMBEDDING_TIMEOUT = float(os.getenv("EMBEDDING_TIMEOUT", "20"))
FETCH_TIMEOUT = float(os.getenv("FETCH_TIMEOUT", "5"))

# Text processing
MAX_INPUT_CHARS = 20_000

# HTTP hardening
HTTP_MAX_REDIRECTS = 3
HTTP_MAX_BYTES = 2_000_000
HTTP_USER_AGENT = "SHL-Assessment-Recommender/1.0"


def configure_logging(level: str = "INFO") -> None:
    """Install the stderr sink and a rotating file sink under ``logs/``."""
    logger.remove()
    logger.add(sys.stderr, level=level)
    LOG_DIR.mkdir(exist_ok=True)
    logger.add(LOG_DIR / "recommender.log", level=level, rotation="10 MB", retention=5)


def _env_flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Runtime options resolved once at process start."""

    rag_backend: Literal["auto", "remote", "local", "none"] = "auto"
    gemini_api_key: Optional[str] = None
    gemini_model: str = GEMINI_MODEL
    openai_api_key: Optional[str] = None
    openai_embedding_model: str = OPENAI_EMBEDDING_MODEL
    pinecone_api_key: Optional[str] = None
    pinecone_index: str = PINECONE_INDEX_NAME
    pinecone_namespace: str = PINECONE_NAMESPACE
    pinecone_cloud: str = PINECONE_CLOUD
    pinecone_region: str = PINECONE_REGION
    local_vector_db: Path = LOCAL_VECTOR_DB_PATH
    local_embedding_model: str = LOCAL_EMBEDDING_MODEL
    catalog_path: Path = CATALOG_PATH
    llm_timeout: float = LLM_TIMEOUT
    embedding_timeout: float = EMBEDDING_TIMEOUT
    fetch_timeout: float = FETCH_TIMEOUT

    @field_validator("gemini_api_key", "openai_api_key", "pinecone_api_key", mode="before")
    @classmethod
    def _blank_is_missing(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def llm_enabled(self) -> bool:
        return self.gemini_api_key is not None

    @property
    def remote_credentials(self) -> bool:
        return self.openai_api_key is not None and self.pinecone_api_key is not None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        backend = (env.get("RAG_BACKEND") or "auto").strip().lower()
        if _env_flag(env.get("USE_FREE_RAG")):
            backend = "local"
        values = {
            "rag_backend": backend,
            "gemini_api_key": env.get("GEMINI_API_KEY"),
            "openai_api_key": env.get("OPENAI_API_KEY"),
            "pinecone_api_key": env.get("PINECONE_API_KEY"),
        }
        optional = {
            "gemini_model": "GEMINI_MODEL",
            "openai_embedding_model": "OPENAI_EMBEDDING_MODEL",
            "pinecone_index": "PINECONE_INDEX",
            "pinecone_namespace": "PINECONE_NAMESPACE",
            "pinecone_cloud": "PINECONE_CLOUD",
            "pinecone_region": "PINECONE_REGION",
            "local_vector_db": "LOCAL_VECTOR_DB",
            "local_embedding_model": "LOCAL_EMBEDDING_MODEL",
            "catalog_path": "CATALOG_PATH",
            "llm_timeout": "LLM_TIMEOUT",
            "embedding_timeout": "EMBEDDING_TIMEOUT",
            "fetch_timeout": "FETCH_TIMEOUT",
        }
        for field, key in optional.items():
            if env.get(key):
                values[field] = env[key]
        return cls(**values)


# Pydantic schemas
class Assessment(BaseModel):
    """One immutable catalog entry."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    url: str = ""
    test_type: str = ""
    duration: str = ""
    description: str = ""
    remote_testing: bool = False
    adaptive_support: bool = False

    @field_validator("url", "test_type", "duration", "description", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        if v is None:
            return ""
        return str(v)


class Recommendation(Assessment):
    relevance_score: int = Field(ge=0, le=100)
    explanation: Optional[str] = None

    @classmethod
    def from_assessment(
        cls,
        assessment: Assessment,
        relevance_score: float,
        explanation: Optional[str] = None,
    ) -> "Recommendation":
        return cls(
            **assessment.model_dump(include=set(Assessment.model_fields)),
            relevance_score=clamp_score(relevance_score),
            explanation=explanation,
        )


def clamp_score(value: float) -> int:
    """Round half up and clamp into the 0..100 percentage range."""
    return max(0, min(100, int(float(value) + 0.5)))


class ExtractedRequirements(BaseModel):
    role: str = ""
    skills: List[str] = Field(default_factory=list)
    experience_level: str = ""
    domain: str = ""
    soft_skills: List[str] = Field(default_factory=list)
    technical_skills: List[str] = Field(default_factory=list)
    time_constraint: Optional[str] = None

    @field_validator("role", "experience_level", "domain", mode="before")
    @classmethod
    def _text_or_empty(cls, v):
        if v is None:
            return ""
        if isinstance(v, (int, float)):
            return str(v)
        return v

    @field_validator("skills", "soft_skills", "technical_skills", mode="before")
    @classmethod
    def _as_list(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("time_constraint", mode="before")
    @classmethod
    def _constraint_text(cls, v):
        if v is None or v == "":
            return None
        return str(v)


Method = Literal["rag", "ai", "keyword"]


class RecommendRequest(BaseModel):
    query: Optional[str] = None
    jobUrl: Optional[str] = None
    jobText: Optional[str] = None
    timeLimit: Optional[int] = None


class RecommendResponse(BaseModel):
    query: str
    timeLimit: int
    recommendations: List[Recommendation]
    method: Method


class HealthResponse(BaseModel):
    status: str
