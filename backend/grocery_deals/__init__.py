"""Grocery deal ingestion and cross-store price comparison engine."""

__version__ = "0.1.0"
