"""Neo4j graph store with batched, idempotent import and result normalisation.

Uses the **synchronous** ``GraphDatabase.driver`` and ``execute_query``
API as recommended by the official Neo4j Python driver docs.  FastAPI
endpoints call these methods via ``asyncio.to_thread`` so the event
loop is never blocked.

Persisted layout: every node carries the shared ``CodeEntity`` label
plus one label per :class:`~cartograph.models.graph.NodeType`; every
relationship uses its :class:`~cartograph.models.graph.RelationType` as
the relationship type and stores its identity ``key``.
"""

from __future__ import annotations

import json
import re
import time
from typing import Any, Iterator, Optional

import structlog
from neo4j import Driver, GraphDatabase, Query, RoutingControl
from neo4j.exceptions import DriverError, Neo4jError
from pydantic import BaseModel, Field

from cartograph.config import Neo4jConfig, Settings, load_neo4j_config, settings as default_settings
from cartograph.errors import (
    BatchImportError,
    OutcomeStatus,
    QueryExecutionError,
    QueryTimeoutError,
    StoreConnectionError,
    StoreNotConnectedError,
)
from cartograph.identity import relationship_key
from cartograph.models.graph import GraphNode, GraphRelationship, NodeType, RelationType

logger = structlog.get_logger(__name__)

BASE_LABEL: str = "CodeEntity"
INDEXED_PROPERTIES: tuple[str, ...] = ("id", "type", "name")
ID_CONSTRAINT: str = "code_entity_id_unique"
DEFAULT_BATCH_SIZE: int = 100

# Reserved keys written explicitly by the MERGE templates.
_NODE_RESERVED = frozenset({"id", "name", "type", "path"})
# Prefix for node properties that collide with a reserved key.
RESERVED_PREFIX: str = "prop_"
_CLEAR_CHUNK = 10_000


# ----------------------------------------------------------------------
# Result models
# ----------------------------------------------------------------------


class FailedBatch(BaseModel):
    """One import batch that did not commit."""

    index: int = Field(..., description="0-based position among all batches of the import.")
    phase: str = Field(..., description="'nodes' or 'relationships'.")
    label: str = Field(..., description="Node label or relationship type of the batch.")
    size: int = Field(..., description="Number of records in the batch.")
    error: str = Field(..., description="Driver error message.")


class ImportReport(BaseModel):
    """Outcome of :meth:`GraphStore.import_graph`."""

    nodes_merged: int = 0
    relationships_merged: int = 0
    relationships_dropped: int = 0
    batches_committed: int = 0
    failed_batches: list[FailedBatch] = Field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def status(self) -> OutcomeStatus:
        if not self.failed_batches:
            return OutcomeStatus.SUCCESS
        return OutcomeStatus.PARTIAL if self.batches_committed else OutcomeStatus.FAILED


class GraphStats(BaseModel):
    """Node and relationship counts of the stored graph."""

    node_count: int = 0
    relationship_count: int = 0
    counts_by_type: dict[str, int] = Field(default_factory=dict)
    relationship_counts_by_type: dict[str, int] = Field(default_factory=dict)


class QueryResult(BaseModel):
    """Normalised output of :meth:`GraphStore.query`.

    Attributes:
        nodes: Distinct nodes found anywhere in the records.
        relationships: Distinct relationships found anywhere in the records.
        records: Raw rows as plain dicts.
        keys: Column names.
    """

    nodes: list[GraphNode] = Field(default_factory=list)
    relationships: list[GraphRelationship] = Field(default_factory=list)
    records: list[dict[str, Any]] = Field(default_factory=list)
    keys: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.nodes and not self.relationships and not self.records


# ----------------------------------------------------------------------
# Store
# ----------------------------------------------------------------------


class GraphStore:
    """Owns one Neo4j driver and every read/write against the graph.

    Usage::

        store = GraphStore(load_neo4j_config())
        store.connect()
        store.import_graph(nodes, relationships)
        store.disconnect()

    Or as a context manager::

        with GraphStore.from_settings() as store:
            stats = store.stats()

    Args:
        config: Validated connection settings.
        max_connection_pool_size: Upper bound on pooled connections.
        batch_size: Records per ``UNWIND`` transaction.
        query_timeout: Default transaction timeout for :meth:`query`.
    """

    def __init__(
        self,
        config: Neo4jConfig,
        *,
        max_connection_pool_size: int = 50,
        batch_size: int = DEFAULT_BATCH_SIZE,
        query_timeout: Optional[float] = None,
    ) -> None:
        self.config = config
        self.database = config.database
        self.max_connection_pool_size = max_connection_pool_size
        self.batch_size = max(1, batch_size)
        self.query_timeout = query_timeout
        self._driver: Optional[Driver] = None

    @classmethod
    def from_settings(cls, app_settings: Settings | None = None) -> GraphStore:
        """Build a store from :class:`Settings`, resolving the connection config.

        Raises:
            ConfigurationError: If the connection settings are invalid.
        """
        app_settings = app_settings or default_settings
        return cls(
            load_neo4j_config(app_settings),
            max_connection_pool_size=app_settings.neo4j_max_connection_pool_size,
            batch_size=app_settings.import_batch_size,
            query_timeout=app_settings.query_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._driver is not None

    def connect(self) -> None:
        """Open the driver, verify connectivity and ensure indexes.

        Calling ``connect()`` on a connected store does nothing.

        Raises:
            StoreConnectionError: If the database is unreachable or
                rejects the credentials.
        """
        if self._driver is not None:
            return
        driver = GraphDatabase.driver(
            self.config.connection_uri,
            auth=(self.config.username, self.config.password),
            max_connection_pool_size=self.max_connection_pool_size,
        )
        try:
            driver.verify_connectivity()
        except (Neo4jError, DriverError) as exc:
            driver.close()
            raise StoreConnectionError(f"Cannot connect to {self.config.connection_uri}: {exc}") from exc

        self._driver = driver
        logger.info("neo4j_connected", uri=self.config.connection_uri, database=self.database)
        self.ensure_indexes()

    def disconnect(self) -> None:
        """Gracefully close the driver connection."""
        if self._driver is not None:
            self._driver.close()
            self._driver = None
            logger.info("neo4j_disconnected")

    def __enter__(self) -> GraphStore:
        self.connect()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.disconnect()

    def _ensure_driver(self) -> Driver:
        """Return the driver, raising if not connected."""
        if self._driver is None:
            raise StoreNotConnectedError("GraphStore is not connected. Call connect() first.")
        return self._driver

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def ensure_indexes(self) -> list[str]:
        """Create the id constraint and per-label indexes if missing.

        Returns:
            Names of the managed constraint and indexes.
        """
        self._run(f"CREATE CONSTRAINT {ID_CONSTRAINT} IF NOT EXISTS FOR (n:{BASE_LABEL}) REQUIRE n.id IS UNIQUE")
        for name, label, prop in managed_indexes():
            self._run(f"CREATE INDEX {name} IF NOT EXISTS FOR (n:{label}) ON (n.{prop})")
        names = [ID_CONSTRAINT, *(name for name, _, _ in managed_indexes())]
        logger.debug("indexes_ensured", count=len(names))
        return names

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def import_graph(
        self,
        nodes: list[GraphNode],
        relationships: list[GraphRelationship],
        *,
        strict: bool = False,
    ) -> ImportReport:
        """MERGE *nodes* then *relationships* in bounded, sequential batches.

        Properties are merged with ``+=`` so a re-import only adds or
        refreshes keys.  Relationships whose endpoints are not in the
        database after the node phase are dropped with a warning.

        Args:
            nodes: Nodes to upsert.
            relationships: Relationships to upsert.
            strict: Raise on the first failing batch instead of recording
                it and continuing.

        Returns:
            An :class:`ImportReport`.

        Raises:
            BatchImportError: In strict mode, when a batch fails.  Earlier
                batches stay committed.
        """
        self._ensure_driver()
        started = time.monotonic()
        report = ImportReport()
        index = 0

        for label, cypher, batch in self._node_batches(nodes):
            report.nodes_merged += self._commit(report, index, "nodes", label, cypher, batch, strict)
            index += 1

        present = self._existing_ids({id_ for r in relationships for id_ in (r.source, r.target)})
        kept = [r for r in relationships if r.source in present and r.target in present]
        report.relationships_dropped = len(relationships) - len(kept)
        if report.relationships_dropped:
            dropped = [r for r in relationships if r.source not in present or r.target not in present]
            logger.warning(
                "relationships_dropped_missing_endpoint",
                count=report.relationships_dropped,
                sample=[f"{r.source} -{r.type.value}-> {r.target}" for r in dropped[:5]],
            )

        for rel_type, cypher, batch in self._relationship_batches(kept):
            report.relationships_merged += self._commit(
                report, index, "relationships", rel_type, cypher, batch, strict
            )
            index += 1

        report.duration_seconds = round(time.monotonic() - started, 3)
        logger.info(
            "graph_imported",
            nodes=report.nodes_merged,
            relationships=report.relationships_merged,
            dropped=report.relationships_dropped,
            batches=report.batches_committed,
            failed_batches=[b.index for b in report.failed_batches],
        )
        return report

    def _commit(
        self,
        report: ImportReport,
        index: int,
        phase: str,
        label: str,
        cypher: str,
        batch: list[dict[str, Any]],
        strict: bool,
    ) -> int:
        try:
            cnt = self._execute_write(cypher, {"batch": batch})
        except QueryExecutionError as exc:
            logger.error("batch_failed", index=index, phase=phase, label=label, size=len(batch), error=str(exc))
            if strict:
                raise BatchImportError(index, phase, exc) from exc
            report.failed_batches.append(
                FailedBatch(index=index, phase=phase, label=label, size=len(batch), error=str(exc))
            )
            return 0
        report.batches_committed += 1
        logger.debug("batch_committed", index=index, phase=phase, label=label, count=cnt)
        return cnt

    def _node_batches(self, nodes: list[GraphNode]) -> Iterator[tuple[str, str, list[dict[str, Any]]]]:
        """Yield ``(label, cypher, records)`` per label, serialised lazily."""
        by_type: dict[NodeType, list[GraphNode]] = {}
        for node in nodes:
            by_type.setdefault(node.type, []).append(node)
        for node_type in NodeType:
            typed = by_type.get(node_type)
            if not typed:
                continue
            cypher = _merge_nodes_cypher(node_type)
            for chunk in _chunked(typed, self.batch_size):
                yield node_type.value, cypher, [serialize_node(n) for n in chunk]

    def _relationship_batches(
        self, relationships: list[GraphRelationship]
    ) -> Iterator[tuple[str, str, list[dict[str, Any]]]]:
        by_type: dict[RelationType, list[GraphRelationship]] = {}
        for rel in relationships:
            by_type.setdefault(rel.type, []).append(rel)
        for rel_type in RelationType:
            typed = by_type.get(rel_type)
            if not typed:
                continue
            cypher = _merge_relationships_cypher(rel_type)
            for chunk in _chunked(typed, self.batch_size):
                yield rel_type.value, cypher, [serialize_relationship(r) for r in chunk]

    def _existing_ids(self, ids: set[str]) -> set[str]:
        present: set[str] = set()
        for chunk in _chunked(sorted(ids), max(self.batch_size, 500)):
            records, _ = self._run(
                f"UNWIND $ids AS id MATCH (n:{BASE_LABEL} {{id: id}}) RETURN n.id AS id",
                {"ids": chunk},
                read=True,
            )
            present.update(r.get("id") for r in records)
        return present

    # ------------------------------------------------------------------
    # Destructive
    # ------------------------------------------------------------------

    def clear(self) -> int:
        """Delete every node and relationship and drop the managed indexes.

        Never called implicitly.  Returns the number of nodes deleted.

        Raises:
            QueryExecutionError: If a statement fails.  Chunks deleted
                before the failure stay deleted.
        """
        deleted = 0
        while True:
            cnt = self._execute_write(f"MATCH (n) WITH n LIMIT {_CLEAR_CHUNK} DETACH DELETE n RETURN count(n) AS cnt")
            deleted += cnt
            if cnt < _CLEAR_CHUNK:
                break

        for name, _, _ in managed_indexes():
            self._run(f"DROP INDEX {name} IF EXISTS")
        self._run(f"DROP CONSTRAINT {ID_CONSTRAINT} IF EXISTS")
        logger.warning("neo4j_cleared_all", nodes_deleted=deleted)
        return deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query(
        self,
        cypher: str,
        parameters: dict[str, Any] | None = None,
        timeout: Optional[float] = None,
    ) -> QueryResult:
        """Run a read query and normalise its records.

        Nodes, relationships, paths and lists of these are collected
        wherever they appear in a row; scalar rows are kept in
        ``records``.

        Raises:
            QueryTimeoutError: If the transaction exceeded *timeout*.
            QueryExecutionError: On any other database or driver error.
        """
        effective_timeout = timeout if timeout is not None else self.query_timeout
        records, keys = self._run(cypher, parameters, read=True, timeout=effective_timeout)
        return normalize_records(records, keys)

    def stats(self) -> GraphStats:
        """Count nodes per type and relationships per type."""
        node_records, _ = self._run(
            f"MATCH (n:{BASE_LABEL}) RETURN n.type AS type, count(n) AS count",
            read=True,
        )
        rel_records, _ = self._run(
            f"MATCH (:{BASE_LABEL})-[r]->(:{BASE_LABEL}) RETURN type(r) AS type, count(r) AS count",
            read=True,
        )
        counts = {str(r.get("type")): int(r.get("count")) for r in node_records}
        rel_counts = {str(r.get("type")): int(r.get("count")) for r in rel_records}
        return GraphStats(
            node_count=sum(counts.values()),
            relationship_count=sum(rel_counts.values()),
            counts_by_type=dict(sorted(counts.items())),
            relationship_counts_by_type=dict(sorted(rel_counts.items())),
        )

    def find_node(self, node_id: str) -> Optional[GraphNode]:
        result = self.query(f"MATCH (n:{BASE_LABEL} {{id: $id}}) RETURN n", {"id": node_id})
        return result.nodes[0] if result.nodes else None

    def node_degrees(self, ids: list[str]) -> dict[str, int]:
        """Return the total degree of each node id (missing ids are omitted)."""
        if not ids:
            return {}
        result = self.query(
            f"UNWIND $ids AS id MATCH (n:{BASE_LABEL} {{id: id}}) "
            "OPTIONAL MATCH (n)-[r]-() RETURN n.id AS id, count(r) AS degree",
            {"ids": list(ids)},
        )
        return {str(r["id"]): int(r["degree"]) for r in result.records}

    def neighborhood(self, ids: list[str], limit: int = 50) -> QueryResult:
        """Return relationships touching *ids* together with their other endpoints."""
        return self.query(
            f"MATCH (n:{BASE_LABEL})-[r]-(m:{BASE_LABEL}) WHERE n.id IN $ids "
            "RETURN n, r, m LIMIT $limit",
            {"ids": list(ids), "limit": int(limit)},
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _run(
        self,
        cypher: str,
        parameters: dict[str, Any] | None = None,
        *,
        read: bool = False,
        timeout: Optional[float] = None,
    ) -> tuple[list[Any], list[str]]:
        """Run one statement via execute_query, wrapping driver errors.

        Raises:
            StoreNotConnectedError: If the store is not connected.
            QueryTimeoutError: If the transaction exceeded *timeout*.
            QueryExecutionError: On any other database or driver error.
        """
        driver = self._ensure_driver()
        query = Query(cypher, timeout=timeout) if timeout is not None else cypher
        try:
            records, _, keys = driver.execute_query(
                query,
                parameters_=parameters or {},
                database_=self.database,
                routing_=RoutingControl.READ if read else RoutingControl.WRITE,
            )
        except Neo4jError as exc:
            if _is_timeout(exc):
                raise QueryTimeoutError(f"Query exceeded {timeout}s: {exc}") from exc
            raise QueryExecutionError(str(exc)) from exc
        except DriverError as exc:
            raise QueryExecutionError(str(exc)) from exc
        return list(records), list(keys)

    def _execute_write(self, cypher: str, parameters: dict[str, Any] | None = None) -> int:
        """Run a write query and return the ``cnt`` scalar."""
        records, _ = self._run(cypher, parameters)
        if records:
            return records[0].get("cnt", 0)
        return 0


def _chunked(items: list[Any], size: int) -> list[list[Any]]:
    """Split *items* into sub-lists of at most *size* elements."""
    return [items[i : i + size] for i in range(0, len(items), size)]


# ----------------------------------------------------------------------
# Cypher templates
# ----------------------------------------------------------------------


def _snake(label: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", label).lower()


def managed_indexes() -> list[tuple[str, str, str]]:
    """Return ``(name, label, property)`` for every index the store manages."""
    indexes = [(f"{_snake(BASE_LABEL)}_{prop}", BASE_LABEL, prop) for prop in ("type", "name")]
    for node_type in NodeType:
        for prop in INDEXED_PROPERTIES:
            indexes.append((f"{_snake(node_type.value)}_{prop}", node_type.value, prop))
    return indexes


def _merge_nodes_cypher(node_type: NodeType) -> str:
    """Return the MERGE template for one node label.

    Labels cannot be parameterised, so each :class:`NodeType` gets its
    own template; the label comes from the closed enum, never from input.
    """
    return f"""
    UNWIND $batch AS rec
    MERGE (n:{BASE_LABEL}:{node_type.value} {{id: rec.id}})
    SET n += rec.properties,
        n.name = rec.name,
        n.type = rec.type,
        n.path = rec.path
    RETURN count(n) AS cnt
    """


def _merge_relationships_cypher(rel_type: RelationType) -> str:
    return f"""
    UNWIND $batch AS rec
    MATCH (s:{BASE_LABEL} {{id: rec.source}})
    MATCH (t:{BASE_LABEL} {{id: rec.target}})
    MERGE (s)-[r:{rel_type.value}]->(t)
    SET r += rec.properties,
        r.key = rec.key
    RETURN count(r) AS cnt
    """


def _is_timeout(exc: Neo4jError) -> bool:
    code = getattr(exc, "code", None) or ""
    return "TransactionTimedOut" in code or "Timeout" in code


# ----------------------------------------------------------------------
# Serialisation
# ----------------------------------------------------------------------


_PRIMITIVES = (str, int, float, bool)


def flatten_properties(properties: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Make *properties* storable as Neo4j properties.

    ``None`` values are dropped, nested maps are flattened into
    ``parent_child`` keys, homogeneous primitive lists are kept and any
    other list is stored as a JSON string.
    """
    flat: dict[str, Any] = {}
    for key, value in properties.items():
        name = f"{prefix}{key}"
        if value is None:
            continue
        if isinstance(value, dict):
            flat.update(flatten_properties(value, prefix=f"{name}_"))
        elif isinstance(value, (list, tuple, set, frozenset)):
            items = [v for v in value if v is not None]
            if all(isinstance(v, str) for v in items) or all(isinstance(v, bool) for v in items):
                flat[name] = list(items)
            elif all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in items):
                flat[name] = list(items)
            else:
                flat[name] = json.dumps(items, default=str, sort_keys=True)
        elif isinstance(value, _PRIMITIVES):
            flat[name] = value
        else:
            flat[name] = str(value)
    return flat


def serialize_node(node: GraphNode) -> dict[str, Any]:
    """Shape *node* as one MERGE record.

    Properties named like a reserved key are stored as ``prop_<key>``.
    """
    clashing = sorted(_NODE_RESERVED.intersection(node.properties))
    if clashing:
        logger.warning("reserved_properties_renamed", node_id=node.id, keys=clashing, prefix=RESERVED_PREFIX)
    properties = flatten_properties(
        {(RESERVED_PREFIX + k if k in _NODE_RESERVED else k): v for k, v in node.properties.items()}
    )
    return {
        "id": node.id,
        "name": node.name,
        "type": node.type.value,
        "path": node.path,
        "properties": properties,
    }


def serialize_relationship(rel: GraphRelationship) -> dict[str, Any]:
    return {
        "source": rel.source,
        "target": rel.target,
        "key": rel.key,
        "properties": flatten_properties({k: v for k, v in rel.properties.items() if k != "key"}),
    }


# ----------------------------------------------------------------------
# Record normalisation
# ----------------------------------------------------------------------


def _is_path(value: Any) -> bool:
    return hasattr(value, "nodes") and hasattr(value, "relationships") and not isinstance(value, dict)


def _is_relationship(value: Any) -> bool:
    return hasattr(value, "start_node") and hasattr(value, "end_node")


def _is_node(value: Any) -> bool:
    return hasattr(value, "labels") and hasattr(value, "element_id")


def _node_from_entity(entity: Any) -> Optional[GraphNode]:
    props = dict(entity.items())
    node_id = props.pop("id", None)
    if node_id is None:
        return None
    raw_type = props.pop("type", None)
    node_type = _node_type(raw_type, getattr(entity, "labels", ()))
    name = props.pop("name", None) or str(node_id)
    path = props.pop("path", None)
    return GraphNode(id=str(node_id), type=node_type, name=str(name), path=path, properties=props)


def _node_type(raw_type: Any, labels: Any) -> NodeType:
    values = {t.value for t in NodeType}
    if raw_type in values:
        return NodeType(raw_type)
    for label in sorted(labels or ()):
        if label in values:
            return NodeType(label)
    return NodeType.GENERIC_ENTITY


def _plain(value: Any) -> Any:
    """Convert graph entities inside a row to plain, JSON-friendly values."""
    if _is_path(value):
        return {"nodes": [_plain(n) for n in value.nodes], "relationships": [_plain(r) for r in value.relationships]}
    if _is_relationship(value):
        return {"type": value.type, **dict(value.items())}
    if _is_node(value):
        return dict(value.items())
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


def normalize_records(records: list[Any], keys: list[str]) -> QueryResult:
    """Collect nodes and relationships from driver records.

    Relationships reference their endpoints by ``element_id``; endpoints
    are mapped back to node ids through the nodes seen in the same result
    (or the endpoint's own ``id`` property when available).
    """
    nodes: dict[str, GraphNode] = {}
    element_ids: dict[str, str] = {}
    raw_relationships: list[Any] = []
    rows: list[dict[str, Any]] = []

    def visit(value: Any) -> None:
        if _is_path(value):
            for n in value.nodes:
                visit(n)
            for r in value.relationships:
                visit(r)
        elif _is_relationship(value):
            raw_relationships.append(value)
            visit(value.start_node)
            visit(value.end_node)
        elif _is_node(value):
            node = _node_from_entity(value)
            if node is not None:
                element_ids[value.element_id] = node.id
                nodes.setdefault(node.id, node)
        elif isinstance(value, (list, tuple)):
            for v in value:
                visit(v)

    for record in records:
        values = list(record.values())
        for value in values:
            visit(value)
        rows.append({k: _plain(v) for k, v in zip(record.keys(), values)})

    relationships: dict[str, GraphRelationship] = {}
    for raw in raw_relationships:
        source = element_ids.get(raw.start_node.element_id) or raw.start_node.get("id")
        target = element_ids.get(raw.end_node.element_id) or raw.end_node.get("id")
        if source is None or target is None or raw.type not in RelationType.__members__:
            continue
        props = {k: v for k, v in raw.items() if k != "key"}
        rel = GraphRelationship(source=source, target=target, type=RelationType(raw.type), properties=props)
        key = raw.get("key") or relationship_key(source, target, raw.type)
        relationships.setdefault(key, rel)

    return QueryResult(nodes=list(nodes.values()), relationships=list(relationships.values()), records=rows, keys=keys)
