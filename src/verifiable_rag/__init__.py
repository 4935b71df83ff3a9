"""Provenance-preserving retrieval-augmented answers over uploaded document packs."""

__version__ = "0.1.0"
