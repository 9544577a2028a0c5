# assessment_recommender/cli.py
"""
Command line entrypoint for the assessment recommender.

Subcommands:
- index     build or refresh the vector index from the catalog (offline job)
- recommend run one query through the pipeline and print the response JSON
- batch     write a strict two-column CSV (Query, Assessment_url) for a query file
- evaluate  mean Recall@K / MAP@K against a labelled Query, Assessment_url file
"""

from __future__ import annotations
import argparse
import json
import sys
from pathlib import Path
from typing import Dict, List, Tuple

import pandas as pd
from dotenv import load_dotenv
from loguru import logger

from .catalog import load_catalog
from .config import DEFAULT_TIME_LIMIT, INDEX_BATCH_SIZE, RESULT_MAX, Settings, configure_logging
from .embed_index import index_catalog
from .errors import ConfigurationError, RecommenderError
from .evaluate import evaluate_predictions
from .normalize import normalize_whitespace
from .pipeline import Recommender, build_recommender
from .retrieval import create_retrieval_service


def load_queries(path: Path) -> List[str]:
    ext = path.suffix.lower()
    df = pd.read_excel(path) if ext in {".xlsx", ".xls"} else pd.read_csv(path)
    cols = {c.lower(): c for c in df.columns}
    qcol = cols.get("query")
    if not qcol:
        raise ValueError(f"Expected column 'Query' in {path}. Found: {list(df.columns)}")
    return [normalize_whitespace(str(q)) for q in df[qcol].dropna()]


def _dedup_preserve_order(seq: List[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for s in seq:
        if s not in seen:
            seen.add(s)
            out.append(s)
    return out


def write_two_column_csv(preds: List[Tuple[str, List[str]]], out_path: Path) -> None:
    """
    Write exactly two columns with required casing:
      - Query
      - Assessment_url

    Each (query, predicted_url) becomes a row, in input order.
    """
    rows: List[Tuple[str, str]] = []
    for q, urls in preds:
        for u in urls:
            rows.append((q, u))
    df = pd.DataFrame(rows, columns=["Query", "Assessment_url"])
    out_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(out_path, index=False)


def _urls_for(recommender: Recommender, query: str, time_limit: int, top_k: int) -> List[str]:
    result = recommender.recommend(query, time_limit=time_limit, max_results=top_k)
    return [r.url for r in result.recommendations if r.url]


def cmd_index(args, settings: Settings) -> int:
    if args.backend:
        settings = settings.model_copy(update={"rag_backend": args.backend})
    if settings.rag_backend == "auto":
        # auto resolves to remote for the offline job
        settings = settings.model_copy(update={"rag_backend": "remote"})
    service = create_retrieval_service(settings)
    if service is None:
        raise ConfigurationError("Vector retrieval is disabled; pass --backend local or remote")
    catalog = load_catalog(Path(args.catalog) if args.catalog else settings.catalog_path)
    try:
        n = index_catalog(catalog, service.embedder, service.store, batch_size=args.batch_size)
        print(f"Indexed {n} assessments; store now holds {service.store.count()} records")
    finally:
        service.store.close()
    return 0


def cmd_recommend(args, settings: Settings) -> int:
    recommender = build_recommender(settings, load_catalog(settings.catalog_path))
    result = recommender.recommend(args.text, time_limit=args.time_limit, max_results=args.max_results)
    payload = {
        "query": args.text.strip(),
        "timeLimit": args.time_limit,
        "recommendations": [r.model_dump(exclude_none=True) for r in result.recommendations],
        "method": result.method,
    }
    print(json.dumps(payload, indent=2))
    return 0


def cmd_batch(args, settings: Settings) -> int:
    recommender = build_recommender(settings, load_catalog(settings.catalog_path))
    inp = Path(args.inp)
    out = Path(args.out) if args.out else Path("artifacts") / f"{inp.stem}_predictions.csv"

    queries = load_queries(inp)
    print(f"Loaded {len(queries)} queries from {inp}")
    unique_queries = _dedup_preserve_order(queries)
    print(f"Unique queries to evaluate: {len(unique_queries)}")

    unique_preds: Dict[str, List[str]] = {}
    for i, uq in enumerate(unique_queries, 1):
        try:
            unique_preds[uq] = _urls_for(recommender, uq, args.time_limit, args.topk)
        except RecommenderError as e:
            logger.warning("{}/{} failed: {}", i, len(unique_queries), e)
            unique_preds[uq] = []
        if i % 10 == 0 or i == len(unique_queries):
            print(f"Processed {i}/{len(unique_queries)} unique queries")

    # fan out: repeated queries get the same list
    final_preds = [(q, unique_preds.get(q, [])) for q in queries]
    write_two_column_csv(final_preds, out)
    total_rows = sum(len(v) for _, v in final_preds)
    print(f"Wrote {total_rows} rows to {out}")
    return 0


def cmd_evaluate(args, settings: Settings) -> int:
    recommender = build_recommender(settings, load_catalog(settings.catalog_path))
    inp = Path(args.inp)
    labels = pd.read_excel(inp) if inp.suffix.lower() in {".xlsx", ".xls"} else pd.read_csv(inp)
    metrics = evaluate_predictions(
        labels,
        lambda q: _urls_for(recommender, q, args.time_limit, RESULT_MAX),
        k=args.k,
    )
    print(json.dumps(metrics, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="assessment-recommender")
    ap.add_argument("--log-level", default="INFO")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("index", help="embed the catalog into the vector store")
    p.add_argument("--catalog", type=str, default=None, help="catalog file (json/csv/xlsx)")
    p.add_argument("--backend", choices=["local", "remote"], default=None)
    p.add_argument("--batch-size", type=int, default=INDEX_BATCH_SIZE)
    p.set_defaults(func=cmd_index)

    p = sub.add_parser("recommend", help="recommend assessments for one text")
    p.add_argument("text")
    p.add_argument("--time-limit", type=int, default=DEFAULT_TIME_LIMIT)
    p.add_argument("--max-results", type=int, default=RESULT_MAX)
    p.set_defaults(func=cmd_recommend)

    p = sub.add_parser("batch", help="predictions CSV for a query file")
    p.add_argument("--in", dest="inp", required=True, help="csv/xlsx with a Query column")
    p.add_argument("--out", dest="out", default=None)
    p.add_argument("--topk", type=int, default=RESULT_MAX, help="max predictions per query (default 10)")
    p.add_argument("--time-limit", type=int, default=DEFAULT_TIME_LIMIT)
    p.set_defaults(func=cmd_batch)

    p = sub.add_parser("evaluate", help="mean Recall@K and MAP@K on labelled queries")
    p.add_argument("--in", dest="inp", required=True, help="csv/xlsx with Query, Assessment_url")
    p.add_argument("--k", type=int, default=3)
    p.add_argument("--time-limit", type=int, default=DEFAULT_TIME_LIMIT)
    p.set_defaults(func=cmd_evaluate)
    return ap


def main(argv: List[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    settings = Settings.from_env()
    return args.func(args, settings)


if __name__ == "__main__":
    sys.exit(main())
