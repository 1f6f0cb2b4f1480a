"""Cross-extractor analysis passes."""

from cartograph.analysis.correlation import (
    DEFAULT_WEIGHTS,
    CorrelationWeights,
    correlate,
    deduplicate_relationships,
)

__all__ = ["CorrelationWeights", "DEFAULT_WEIGHTS", "correlate", "deduplicate_relationships"]
