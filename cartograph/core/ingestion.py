"""Extraction runner: runs extractors concurrently and merges their output.

This is the main entry point for scanning a repository.  Each selected
extractor runs on a bounded thread pool with its own time budget,
measured from the moment it actually starts.  A failing or timed-out
extractor is recorded and the others carry on.  Once every extractor
has finished, failed or timed out, results are merged by id, the
correlation pass adds inferred relationships and duplicates are
collapsed.
"""

from __future__ import annotations

import concurrent.futures
import dataclasses
import pathlib
import threading
import time
from typing import Callable, Iterable, Optional

import structlog

from cartograph.analysis.correlation import (
    DEFAULT_WEIGHTS,
    CorrelationWeights,
    correlate,
    deduplicate_relationships,
)
from cartograph.config import Settings, settings as default_settings
from cartograph.errors import ExtractorTimeoutError, OutcomeStatus
from cartograph.extractors import EXTRACTOR_REGISTRY, Extractor, ExtractorKind, create_extractor
from cartograph.models.graph import (
    ExtractionError,
    ExtractionResult,
    GraphNode,
    GraphRelationship,
)

logger = structlog.get_logger(__name__)

_POLL_INTERVAL = 0.05


@dataclasses.dataclass
class ExtractorOutcome:
    """How one extractor finished."""

    kind: str
    status: str
    duration_seconds: float
    nodes: int = 0
    relationships: int = 0
    errors: int = 0


@dataclasses.dataclass
class ExtractionRun:
    """Merged, correlated graph of one extraction run plus its bookkeeping."""

    nodes: list[GraphNode]
    relationships: list[GraphRelationship]
    errors: list[ExtractionError]
    outcomes: list[ExtractorOutcome]
    inferred_relationships: int
    duration_seconds: float

    @property
    def status(self) -> OutcomeStatus:
        if self.outcomes and all(o.status != "ok" for o in self.outcomes):
            return OutcomeStatus.FAILED
        if self.errors:
            return OutcomeStatus.PARTIAL
        if not self.nodes:
            return OutcomeStatus.NO_RESULTS
        return OutcomeStatus.SUCCESS

    def summary(self) -> dict[str, object]:
        return {
            "status": self.status.value,
            "nodes": len(self.nodes),
            "relationships": len(self.relationships),
            "inferred_relationships": self.inferred_relationships,
            "errors": [e.model_dump() for e in self.errors],
            "extractors": [dataclasses.asdict(o) for o in self.outcomes],
            "duration_seconds": round(self.duration_seconds, 3),
        }


class _TimedTask:
    """Runs an extractor and records when it actually started."""

    def __init__(self, extractor: Extractor) -> None:
        self.extractor = extractor
        self._started = threading.Event()
        self.started_at: Optional[float] = None

    def __call__(self) -> ExtractionResult:
        self.started_at = time.monotonic()
        self._started.set()
        return self.extractor.extract()

    @property
    def started(self) -> bool:
        return self._started.is_set()


def run_extractors(
    extractors: Iterable[Extractor],
    *,
    max_workers: int,
    timeout_seconds: float,
) -> tuple[list[ExtractionResult], list[ExtractorOutcome]]:
    """Run *extractors* on a bounded pool, each with its own timeout.

    Args:
        extractors: Extractor instances to run.
        max_workers: Pool size.
        timeout_seconds: Per-extractor budget, counted from its start.

    Returns:
        One result per extractor (failures and timeouts become results
        holding a single :class:`ExtractionError`) and per-extractor
        outcomes, both in input order.
    """
    extractors = list(extractors)
    results: list[Optional[ExtractionResult]] = [None] * len(extractors)
    outcomes: list[Optional[ExtractorOutcome]] = [None] * len(extractors)

    pool = concurrent.futures.ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="extractor")
    tasks = [_TimedTask(e) for e in extractors]
    futures = {pool.submit(task): i for i, task in enumerate(tasks)}
    pending = set(futures)

    try:
        while pending:
            done, pending = concurrent.futures.wait(
                pending, timeout=_POLL_INTERVAL, return_when=concurrent.futures.FIRST_COMPLETED
            )
            now = time.monotonic()

            for future in done:
                i = futures[future]
                kind = extractors[i].kind.value
                elapsed = now - (tasks[i].started_at or now)
                try:
                    result = future.result()
                except Exception as exc:
                    logger.error("extractor_failed", extractor=kind, error=str(exc), exc_info=True)
                    result = ExtractionResult(
                        errors=[ExtractionError(extractor=kind, kind="exception", message=f"{type(exc).__name__}: {exc}")]
                    )
                    status = "failed"
                else:
                    status = "ok"
                    logger.info(
                        "extractor_finished",
                        extractor=kind,
                        nodes=len(result.nodes),
                        relationships=len(result.relationships),
                        errors=len(result.errors),
                        duration=round(elapsed, 3),
                    )
                results[i] = result
                outcomes[i] = ExtractorOutcome(
                    kind=kind,
                    status=status,
                    duration_seconds=round(elapsed, 3),
                    nodes=len(result.nodes),
                    relationships=len(result.relationships),
                    errors=len(result.errors),
                )

            for future in list(pending):
                i = futures[future]
                task = tasks[i]
                if not task.started or task.started_at is None:
                    continue
                if now - task.started_at < timeout_seconds:
                    continue
                pending.discard(future)
                future.cancel()
                error = ExtractorTimeoutError(extractors[i].kind.value, timeout_seconds)
                logger.warning("extractor_timed_out", extractor=error.extractor, timeout=timeout_seconds)
                results[i] = ExtractionResult(
                    errors=[ExtractionError(extractor=error.extractor, kind="timeout", message=str(error))]
                )
                outcomes[i] = ExtractorOutcome(
                    kind=error.extractor, status="timeout", duration_seconds=round(now - task.started_at, 3), errors=1
                )
    finally:
        # Timed-out threads cannot be interrupted; do not wait for them.
        pool.shutdown(wait=False, cancel_futures=True)

    return [r for r in results if r is not None], [o for o in outcomes if o is not None]


def extract_repository(
    repo_path: str | pathlib.Path,
    kinds: Iterable[ExtractorKind | str] | None = None,
    *,
    app_settings: Settings | None = None,
    blacklist: list[str] | None = None,
    weights: CorrelationWeights = DEFAULT_WEIGHTS,
    extractor_factory: Callable[[ExtractorKind, pathlib.Path], Extractor] | None = None,
) -> ExtractionRun:
    """Scan a local repository and produce its merged, correlated graph.

    Args:
        repo_path: Path to the repository root directory.
        kinds: Extractors to run (defaults to all registered kinds).
        app_settings: Settings providing worker count and timeout.
        blacklist: Optional override for the crawl blacklist.
        weights: Confidence table for the correlation pass.
        extractor_factory: Builds an extractor for a kind; defaults to the
            registry.

    Returns:
        An :class:`ExtractionRun`.

    Raises:
        FileNotFoundError: If *repo_path* does not exist.
        NotADirectoryError: If *repo_path* is not a directory.
        ValueError: If an unknown extractor kind is requested.
    """
    app_settings = app_settings or default_settings
    root = pathlib.Path(repo_path).resolve()

    if not root.exists():
        raise FileNotFoundError(f"Repository path does not exist: {root}")
    if not root.is_dir():
        raise NotADirectoryError(f"Repository path is not a directory: {root}")

    selected = [ExtractorKind(k) for k in kinds] if kinds else list(EXTRACTOR_REGISTRY)
    if extractor_factory is None:
        extractors = [create_extractor(kind, root, blacklist=blacklist) for kind in selected]
    else:
        extractors = [extractor_factory(kind, root) for kind in selected]

    logger.info("extraction_started", repo=str(root), extractors=[k.value for k in selected])
    started = time.monotonic()

    results, outcomes = run_extractors(
        extractors,
        max_workers=app_settings.extractor_workers,
        timeout_seconds=app_settings.extractor_timeout_seconds,
    )

    merged = ExtractionResult.merge(results)
    inferred = correlate(merged.nodes, merged.relationships, weights)
    relationships = deduplicate_relationships([*merged.relationships, *inferred])

    run = ExtractionRun(
        nodes=merged.nodes,
        relationships=relationships,
        errors=merged.errors,
        outcomes=outcomes,
        inferred_relationships=len(inferred),
        duration_seconds=time.monotonic() - started,
    )
    logger.info(
        "extraction_finished",
        repo=str(root),
        status=run.status.value,
        nodes=len(run.nodes),
        relationships=len(run.relationships),
        inferred=run.inferred_relationships,
        errors=len(run.errors),
        duration=round(run.duration_seconds, 3),
    )
    return run
