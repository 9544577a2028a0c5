from __future__ import annotations

import json

import pandas as pd
import pytest

from assessment_recommender import cli
from assessment_recommender.config import Settings
from assessment_recommender.errors import ConfigurationError

from conftest import SAMPLE_RECORDS


@pytest.fixture
def settings(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(SAMPLE_RECORDS), encoding="utf-8")
    return Settings(rag_backend="none", catalog_path=path)


def _run(argv, settings):
    args = cli.build_parser().parse_args(argv)
    return args.func(args, settings)


def test_recommend_prints_response(settings, capsys):
    assert _run(["recommend", "Java developers needed", "--time-limit", "30"], settings) == 0
    body = json.loads(capsys.readouterr().out)
    assert body["method"] == "keyword"
    assert body["recommendations"][0]["name"] == "Verify - Java"


def test_batch_writes_two_column_csv(settings, tmp_path):
    inp = tmp_path / "queries.csv"
    pd.DataFrame({"Query": ["Java developers needed", "python  engineer", "Java developers needed"]}).to_csv(
        inp, index=False
    )
    out = tmp_path / "preds.csv"
    assert _run(["batch", "--in", str(inp), "--out", str(out), "--topk", "2"], settings) == 0

    df = pd.read_csv(out)
    assert list(df.columns) == ["Query", "Assessment_url"]
    java_rows = df[df["Query"] == "Java developers needed"]
    # each occurrence of a repeated query gets its own rows
    assert len(java_rows) == 2
    assert java_rows["Assessment_url"].iloc[0] == "https://example.com/verify-java"
    assert set(df["Query"]) == {"Java developers needed", "python engineer"}


def test_evaluate_prints_metrics(settings, tmp_path, capsys):
    labels = tmp_path / "labels.csv"
    pd.DataFrame(
        {"Query": ["Java developers needed"], "Assessment_url": ["https://example.com/verify-java"]}
    ).to_csv(labels, index=False)
    assert _run(["evaluate", "--in", str(labels), "--k", "3"], settings) == 0
    metrics = json.loads(capsys.readouterr().out)
    assert metrics["mean_recall@3"] == 1.0


def test_index_local_backend(settings, tmp_path, monkeypatch, capsys):
    from conftest import HashingEmbedder

    monkeypatch.setattr(cli, "create_retrieval_service", _local_service_factory(tmp_path, HashingEmbedder()))
    assert _run(["index", "--backend", "local", "--batch-size", "4"], settings) == 0
    assert f"Indexed {len(SAMPLE_RECORDS)} assessments" in capsys.readouterr().out


def _local_service_factory(tmp_path, embedder):
    from assessment_recommender.retrieval import RetrievalService
    from assessment_recommender.vector_store import SQLiteVectorStore

    def factory(settings):
        assert settings.rag_backend == "local"
        return RetrievalService(embedder, SQLiteVectorStore(tmp_path / "v.db", dimension=embedder.dimension))

    return factory


def test_index_without_credentials_fails(settings):
    with pytest.raises(ConfigurationError):
        _run(["index"], settings.model_copy(update={"rag_backend": "auto"}))
