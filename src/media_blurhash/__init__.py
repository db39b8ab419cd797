"""Placeholder BlurHash generation and backfill for media libraries."""

__version__ = "0.1.0"
