from __future__ import annotations

"""
FastAPI application for the assessment recommender.

- ``POST /recommend`` accepts any of ``query``, ``jobUrl`` and ``jobText``
  plus an optional ``timeLimit`` (minutes, default 60)
- inputs are combined into one text (query, fetched page text, job text)
- the orchestrator picks the method; its name is returned as ``method``
- malformed input is the only client-visible error (HTTP 400)
"""

from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from .catalog import load_catalog
from .config import (
    DEFAULT_TIME_LIMIT,
    HealthResponse,
    RecommendRequest,
    RecommendResponse,
    Settings,
    configure_logging,
)
from .errors import InputValidationError, RecommenderError
from .jd_fetch import fetch_and_extract
from .normalize import join_inputs
from .pipeline import Recommender, build_recommender

app = FastAPI(title="Assessment Recommender")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

_recommender: Optional[Recommender] = None
_settings: Optional[Settings] = None


@app.exception_handler(InputValidationError)
def _input_error(request: Request, exc: InputValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(RequestValidationError)
def _request_shape_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        "{}: {}".format(".".join(str(p) for p in err.get("loc", ()) if p != "body"), err.get("msg", "invalid"))
        for err in exc.errors()
    )
    return JSONResponse(status_code=400, content={"error": f"Invalid request: {problems}"})


@app.exception_handler(RecommenderError)
def _internal_error(request: Request, exc: RecommenderError) -> JSONResponse:
    logger.error("Unhandled recommender error on {}: {}", request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error", "message": str(exc)})


def get_recommender() -> Recommender:
    global _recommender, _settings
    if _recommender is None:
        _settings = _settings or Settings.from_env()
        catalog = load_catalog(_settings.catalog_path)
        _recommender = build_recommender(_settings, catalog)
    return _recommender


@app.on_event("startup")
def startup_event() -> None:
    global _settings
    load_dotenv()
    configure_logging()
    logger.info("Starting app warmup...")
    _settings = Settings.from_env()
    recommender = get_recommender()
    if recommender.retrieval is not None:
        try:
            recommender.retrieval.ensure_ready()
        except RecommenderError as e:
            logger.warning("Vector index not ready at startup: {}", e)
    logger.info("Warmup complete.")


@app.get("/")
def root() -> dict:
    return {
        "message": "SHL Assessment Recommendation API",
        "endpoints": {"recommend": "POST /recommend", "health": "GET /health"},
    }


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="healthy")


def combine_inputs(req: RecommendRequest, fetch_timeout: Optional[float] = None) -> str:
    """Query, fetched page text and job text, space-joined and trimmed."""
    page = None
    if req.jobUrl:
        kwargs = {} if fetch_timeout is None else {"timeout": fetch_timeout}
        page = fetch_and_extract(req.jobUrl, **kwargs)
        if not page:
            logger.warning("Ignoring jobUrl {}; no text could be extracted", req.jobUrl)
    return join_inputs(req.query, page, req.jobText)


@app.post("/recommend", response_model=RecommendResponse, response_model_exclude_none=True)
def recommend(req: RecommendRequest) -> RecommendResponse:
    if not (req.query or req.jobUrl or req.jobText):
        raise InputValidationError("At least one of query, jobUrl, or jobText must be provided")
    time_limit = DEFAULT_TIME_LIMIT if req.timeLimit is None else req.timeLimit
    if time_limit <= 0:
        raise InputValidationError("Time limit must be a positive number")

    text = combine_inputs(req, _settings.fetch_timeout if _settings else None)
    if not text:
        raise InputValidationError("No valid input text could be processed")

    result = get_recommender().recommend(text, time_limit=time_limit)
    return RecommendResponse(
        query=text,
        timeLimit=time_limit,
        recommendations=result.recommendations,
        method=result.method,
    )
