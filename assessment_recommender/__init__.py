"""
Top-level package for the SHL assessment recommender.

This package loads a static assessment catalog, builds and queries a
vector index of assessment embeddings (Pinecone or a local SQLite
file), ranks candidates with an LLM and falls back to deterministic
keyword rules, all behind a small FastAPI service and an argparse CLI.
There are no side effects on import.
"""
