"""Cartograph: codebase knowledge graph extraction and intent-driven querying."""

__version__ = "0.3.0"
