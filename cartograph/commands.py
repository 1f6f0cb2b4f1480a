"""Command surface invoked by an external dispatcher (CLI or HTTP).

Each command takes a :class:`CommandContext` and returns a
:class:`CommandResult`; none of them raise.  Configuration is loaded
before anything else is attempted, so a bad Neo4j setup fails the
command with every problem listed and no side effects.
"""

from __future__ import annotations

import dataclasses
import json
import pathlib
from collections import Counter
from typing import Any, Callable, Optional

import structlog

from cartograph.config import Settings, settings as default_settings
from cartograph.core.ingestion import ExtractionRun, extract_repository
from cartograph.errors import CartographError, ConfigurationError, OutcomeStatus
from cartograph.extractors import ExtractorKind
from cartograph.graph.database import GraphStore
from cartograph.graph.ingestor import import_to_store
from cartograph.query.context import build_context
from cartograph.query.engine import IntelligentQueryEngine

logger = structlog.get_logger(__name__)

EXTRACTOR_CHOICES: tuple[str, ...] = (*(k.value for k in ExtractorKind), "all")
OUTPUT_CHOICES: tuple[str, ...] = ("neo4j", "json", "console")

StoreFactory = Callable[[Settings], GraphStore]


# ----------------------------------------------------------------------
# Context / result
# ----------------------------------------------------------------------


@dataclasses.dataclass
class CommandContext:
    """Invocation data handed over by the dispatcher.

    Attributes:
        args: Positional arguments (e.g. the question words).
        options: Named options.
        log: Optional callback receiving human-readable progress lines.
        logger: Optional structured logger of the dispatcher; receives the
            same events as this module's logger.
    """

    args: list[str] = dataclasses.field(default_factory=list)
    options: dict[str, Any] = dataclasses.field(default_factory=dict)
    log: Optional[Callable[[str], None]] = None
    logger: Any = None

    def option(self, name: str, default: Any = None) -> Any:
        """Return an option, accepting ``working-dir`` and ``working_dir`` alike."""
        for key in (name, name.replace("_", "-"), name.replace("-", "_")):
            if key in self.options and self.options[key] is not None:
                return self.options[key]
        return default

    def emit(self, event: str, message: str, **kw: Any) -> None:
        logger.info(event, **kw)
        if self.logger is not None:
            self.logger.info(event, **kw)
        if self.log is not None:
            self.log(message)


@dataclasses.dataclass
class CommandResult:
    """Outcome of a command."""

    success: bool
    status: OutcomeStatus
    message: str = ""
    data: dict[str, Any] = dataclasses.field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str, message: str = "", data: dict[str, Any] | None = None) -> CommandResult:
        return cls(success=False, status=OutcomeStatus.FAILED, message=message or error, data=data or {}, error=error)

    @classmethod
    def from_status(cls, status: OutcomeStatus, message: str, data: dict[str, Any]) -> CommandResult:
        return cls(success=status is not OutcomeStatus.FAILED, status=status, message=message, data=data)


def _combine(*statuses: OutcomeStatus) -> OutcomeStatus:
    """Fold statuses: any failure wins, then partial, then no-results."""
    for status in (OutcomeStatus.FAILED, OutcomeStatus.PARTIAL, OutcomeStatus.NO_RESULTS):
        if status in statuses:
            return status
    return OutcomeStatus.SUCCESS


def _config_failure(ctx: CommandContext, exc: ConfigurationError) -> CommandResult:
    ctx.emit("command_configuration_invalid", f"Configuration error: {exc}", problems=exc.problems)
    return CommandResult.failed(str(exc), data={"problems": exc.problems})


def _open_store(
    ctx: CommandContext,
    app_settings: Settings,
    store_factory: Optional[StoreFactory],
) -> GraphStore:
    store = (store_factory or GraphStore.from_settings)(app_settings)
    store.connect()
    ctx.emit("store_connected", f"Connected to {store.config.connection_uri}")
    return store


def _question(ctx: CommandContext) -> str:
    return str(ctx.option("query") or " ".join(ctx.args)).strip()


# ----------------------------------------------------------------------
# extract
# ----------------------------------------------------------------------


def _parse_extractors(raw: Any) -> list[ExtractorKind]:
    values = raw if isinstance(raw, (list, tuple)) else str(raw or "all").split(",")
    names = [str(v).strip().lower() for v in values if str(v).strip()]
    invalid = [n for n in names if n not in EXTRACTOR_CHOICES]
    if invalid:
        raise ValueError(f"Invalid extractor(s) {', '.join(invalid)}. Choose from: {', '.join(EXTRACTOR_CHOICES)}")
    if not names or "all" in names:
        return list(ExtractorKind)
    return list(dict.fromkeys(ExtractorKind(n) for n in names))


def _write_json(run: ExtractionRun, target: Optional[str], working_dir: pathlib.Path) -> dict[str, str]:
    """Write ``nodes.json`` and ``relationships.json`` next to *target*."""
    out_dir = pathlib.Path(target).parent if target else working_dir / "graph-data"
    out_dir.mkdir(parents=True, exist_ok=True)
    nodes_file = out_dir / "nodes.json"
    rels_file = out_dir / "relationships.json"
    nodes_file.write_text(
        json.dumps([n.model_dump(mode="json") for n in run.nodes], indent=2), encoding="utf-8"
    )
    rels_file.write_text(
        json.dumps([r.model_dump(mode="json") for r in run.relationships], indent=2), encoding="utf-8"
    )
    return {"nodes_file": str(nodes_file), "relationships_file": str(rels_file)}


def extract_command(
    ctx: CommandContext,
    *,
    app_settings: Settings | None = None,
    store_factory: Optional[StoreFactory] = None,
) -> CommandResult:
    """Extract a repository and send the graph to Neo4j, JSON or the console.

    Options:
        extractors: Comma-separated kinds or ``all`` (default).
        output: ``neo4j``, ``json`` or ``console`` (default).
        clear: Wipe the graph before importing (``neo4j`` only).
        file: JSON output location (``json`` only).
        working_dir: Repository root (defaults to the first argument or
            the current directory).
    """
    app_settings = app_settings or default_settings
    output = str(ctx.option("output", "console")).lower()
    if output not in OUTPUT_CHOICES:
        return CommandResult.failed(f"Invalid output format '{output}'. Choose from: {', '.join(OUTPUT_CHOICES)}")
    try:
        kinds = _parse_extractors(ctx.option("extractors", "all"))
    except ValueError as exc:
        return CommandResult.failed(str(exc))

    working_dir = pathlib.Path(ctx.option("working_dir") or (ctx.args[0] if ctx.args else ".")).resolve()

    store: Optional[GraphStore] = None
    if output == "neo4j":
        try:
            store = (store_factory or GraphStore.from_settings)(app_settings)
        except ConfigurationError as exc:
            return _config_failure(ctx, exc)

    ctx.emit("extract_command_started", f"Extracting {working_dir} with {', '.join(k.value for k in kinds)}",
             repo=str(working_dir), extractors=[k.value for k in kinds], output=output)
    try:
        run = extract_repository(working_dir, kinds, app_settings=app_settings)
    except (FileNotFoundError, NotADirectoryError) as exc:
        return CommandResult.failed(str(exc))

    data: dict[str, Any] = run.summary()
    data["counts_by_type"] = dict(sorted(Counter(n.type.value for n in run.nodes).items()))
    data["relationship_counts_by_type"] = dict(sorted(Counter(r.type.value for r in run.relationships).items()))
    status = run.status

    if store is not None:
        try:
            store.connect()
            try:
                summary = import_to_store(store, run, clear_existing=bool(ctx.option("clear", False)))
            finally:
                store.disconnect()
        except CartographError as exc:
            logger.error("extract_import_failed", error=str(exc))
            return CommandResult.failed(str(exc), data=data)
        data["import"] = summary
        status = _combine(status, OutcomeStatus(summary["status"]))
        message = (
            f"Imported {summary['nodes_merged']} nodes and {summary['relationships_merged']} relationships"
            f" ({summary['relationships_dropped']} dropped, {len(summary['failed_batches'])} failed batches)"
        )
    elif output == "json":
        data.update(_write_json(run, ctx.option("file"), working_dir))
        message = f"Wrote {len(run.nodes)} nodes and {len(run.relationships)} relationships to {data['nodes_file']}"
    else:
        lines = [f"Nodes: {len(run.nodes)}", *(f"  {t}: {c}" for t, c in data["counts_by_type"].items())]
        lines += [f"Relationships: {len(run.relationships)}"]
        lines += [f"  {t}: {c}" for t, c in data["relationship_counts_by_type"].items()]
        message = "\n".join(lines)

    ctx.emit("extract_command_finished", message, status=status.value)
    return CommandResult.from_status(status, message, data)


# ----------------------------------------------------------------------
# query / context
# ----------------------------------------------------------------------


def _query_settings(ctx: CommandContext, app_settings: Settings) -> Settings:
    limit = ctx.option("limit")
    if limit is None:
        return app_settings
    return app_settings.model_copy(update={"query_limit": max(1, int(limit))})


def query_command(
    ctx: CommandContext,
    *,
    app_settings: Settings | None = None,
    store_factory: Optional[StoreFactory] = None,
) -> CommandResult:
    """Answer a free-text question from the graph.

    The question comes from the ``query`` option or the joined arguments.
    ``limit`` overrides the result limit.
    """
    app_settings = app_settings or default_settings
    text = _question(ctx)
    try:
        query_settings = _query_settings(ctx, app_settings)
    except (TypeError, ValueError) as exc:
        return CommandResult.failed(f"Invalid limit: {exc}")

    try:
        store = _open_store(ctx, query_settings, store_factory)
    except ConfigurationError as exc:
        return _config_failure(ctx, exc)
    except CartographError as exc:
        return CommandResult.failed(str(exc))

    try:
        response = IntelligentQueryEngine(store, query_settings).query(text)
    finally:
        store.disconnect()

    ctx.emit("query_command_finished", response.explanation, status=response.status.value,
             intent=response.intent.value, nodes=len(response.nodes))
    return CommandResult.from_status(response.status, response.explanation, response.model_dump(mode="json"))


def context_command(
    ctx: CommandContext,
    *,
    app_settings: Settings | None = None,
    store_factory: Optional[StoreFactory] = None,
) -> CommandResult:
    """Answer a question and return its surrounding graph context.

    Options:
        query: The question (or pass it as arguments).
        working_dir: Repository on disk for source snippets.
        top_k: Entry points to expand (default 5).
    """
    app_settings = app_settings or default_settings
    text = _question(ctx)
    try:
        store = _open_store(ctx, app_settings, store_factory)
    except ConfigurationError as exc:
        return _config_failure(ctx, exc)
    except CartographError as exc:
        return CommandResult.failed(str(exc))

    try:
        bundle = build_context(
            IntelligentQueryEngine(store, app_settings),
            text,
            ctx.option("working_dir"),
            top_k=int(ctx.option("top_k", 5)),
        )
    finally:
        store.disconnect()

    status = bundle.response.status
    message = (
        f"{bundle.response.explanation} Context: {len(bundle.related_nodes)} related nodes, "
        f"{len(bundle.documents)} documents, {len(bundle.snippets)} snippets."
    )
    ctx.emit("context_command_finished", message, status=status.value)
    return CommandResult.from_status(status, message, bundle.model_dump(mode="json"))


# ----------------------------------------------------------------------
# stats / clear
# ----------------------------------------------------------------------


def stats_command(
    ctx: CommandContext,
    *,
    app_settings: Settings | None = None,
    store_factory: Optional[StoreFactory] = None,
) -> CommandResult:
    """Report node and relationship counts."""
    app_settings = app_settings or default_settings
    try:
        store = _open_store(ctx, app_settings, store_factory)
    except ConfigurationError as exc:
        return _config_failure(ctx, exc)
    except CartographError as exc:
        return CommandResult.failed(str(exc))

    try:
        stats = store.stats()
    except CartographError as exc:
        return CommandResult.failed(str(exc))
    finally:
        store.disconnect()

    status = OutcomeStatus.SUCCESS if stats.node_count else OutcomeStatus.NO_RESULTS
    message = f"{stats.node_count} nodes, {stats.relationship_count} relationships"
    ctx.emit("stats_command_finished", message, nodes=stats.node_count, relationships=stats.relationship_count)
    return CommandResult.from_status(status, message, stats.model_dump())


def clear_command(
    ctx: CommandContext,
    *,
    app_settings: Settings | None = None,
    store_factory: Optional[StoreFactory] = None,
) -> CommandResult:
    """Delete the whole graph.  Requires the ``confirm`` option."""
    if not ctx.option("confirm", False):
        return CommandResult.failed("Refusing to clear the graph without the 'confirm' option")

    app_settings = app_settings or default_settings
    try:
        store = _open_store(ctx, app_settings, store_factory)
    except ConfigurationError as exc:
        return _config_failure(ctx, exc)
    except CartographError as exc:
        return CommandResult.failed(str(exc))

    try:
        deleted = store.clear()
    except CartographError as exc:
        return CommandResult.failed(str(exc))
    finally:
        store.disconnect()

    message = f"Deleted {deleted} nodes"
    ctx.emit("clear_command_finished", message, nodes_deleted=deleted)
    return CommandResult.from_status(OutcomeStatus.SUCCESS, message, {"nodes_deleted": deleted})
