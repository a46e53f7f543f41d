"""
KBase — Versioned knowledge-base document store.

Multi-user documents with a bounded, diffable version ledger, an append-only
activity log and AI-derived summaries, tags and embeddings that degrade to
deterministic fallbacks.
"""

__version__ = "0.1.0"
