"""Exception taxonomy and outcome labels shared by every Cartograph component."""

from __future__ import annotations

import enum


class OutcomeStatus(str, enum.Enum):
    """How an operation ended, as reported to callers."""

    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    NO_RESULTS = "NO_RESULTS"
    FAILED = "FAILED"


class CartographError(Exception):
    """Base class for all Cartograph errors."""


class ConfigurationError(CartographError):
    """Missing or malformed configuration.  Fatal; nothing is attempted."""

    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        super().__init__(message)
        self.problems = problems or []


class StoreNotConnectedError(CartographError):
    """A :class:`~cartograph.graph.database.GraphStore` was used before ``connect()``."""


class StoreConnectionError(CartographError):
    """The graph database is unreachable or rejected the credentials."""


class ExtractorTimeoutError(CartographError):
    """An extractor exceeded its time budget."""

    def __init__(self, extractor: str, timeout: float) -> None:
        super().__init__(f"Extractor '{extractor}' timed out after {timeout:.1f}s")
        self.extractor = extractor
        self.timeout = timeout


class BatchImportError(CartographError):
    """An import batch failed to commit.

    Batches before ``batch_index`` remain committed; import is idempotent
    so the failed batch can be retried as-is.
    """

    def __init__(self, batch_index: int, phase: str, cause: Exception) -> None:
        super().__init__(f"Import batch {batch_index} ({phase}) failed: {cause}")
        self.batch_index = batch_index
        self.phase = phase
        self.cause = cause


class QueryExecutionError(CartographError):
    """A query failed at the database layer (syntax, constraint, transport)."""


class QueryTimeoutError(QueryExecutionError):
    """A query exceeded its transaction timeout."""
