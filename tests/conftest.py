"""Shared fixtures: a small monorepo on disk, an in-memory Neo4j stand-in
and a canned store for query engine tests."""

from __future__ import annotations

import itertools
import json
import pathlib
import re
import textwrap
from typing import Any, Optional

import pytest
from neo4j.exceptions import ServiceUnavailable

from cartograph.config import Neo4jConfig, Settings
from cartograph.errors import QueryExecutionError
from cartograph.graph import database
from cartograph.graph.database import GraphStore, QueryResult
from cartograph.identity import node_id
from cartograph.models.graph import GraphNode, GraphRelationship, NodeType, RelationType


# ----------------------------------------------------------------------
# Sample repository
# ----------------------------------------------------------------------


def _write(root: pathlib.Path, rel: str, content: str) -> None:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(content).lstrip("\n"), encoding="utf-8")


@pytest.fixture
def sample_repo(tmp_path: pathlib.Path) -> pathlib.Path:
    """A TypeScript + Python monorepo with two workspace packages."""
    root = tmp_path / "repo"
    _write(root, "package.json", json.dumps({"private": True, "workspaces": ["packages/*"]}))
    _write(
        root,
        "packages/core/package.json",
        json.dumps(
            {
                "name": "@scope/core",
                "version": "1.0.0",
                "description": "Core logging utilities",
                "main": "src/index.ts",
                "dependencies": {"@scope/schema": "workspace:*", "zod": "^3.22.0"},
                "devDependencies": {"vitest": "^1.0.0"},
            }
        ),
    )
    _write(
        root,
        "packages/core/README.md",
        """
        ---
        title: Core Package
        tags: logging, core
        ---
        # Core

        Structured logging helpers shared by every service.

        See [the guide](../../docs/guide.md).
        """,
    )
    _write(
        root,
        "packages/core/src/index.ts",
        """
        import { formatMessage } from './format';
        import { UserSchema } from '@scope/schema';

        export interface Logger {
          info(message: string): void;
          level?: string;
        }

        /** Build a logger writing to the console. */
        export function createLogger(name: string): Logger {
          return new ConsoleLogger(formatMessage(name));
        }

        export class ConsoleLogger implements Logger {
          constructor(private prefix: string) {}

          info(message: string): void {
            console.log(formatMessage(this.prefix + message));
          }
        }
        """,
    )
    _write(
        root,
        "packages/core/src/format.ts",
        """
        export function formatMessage(message: string): string {
          return `[core] ${message}`;
        }
        """,
    )
    _write(
        root,
        "packages/schema/package.json",
        json.dumps({"name": "@scope/schema", "version": "0.2.0", "dependencies": {"zod": "^3.22.0"}}),
    )
    _write(
        root,
        "packages/schema/src/user.ts",
        """
        import { z } from 'zod';

        export const UserSchema = z.object({
          id: z.string(),
          email: z.string().email(),
          nickname: z.string().optional(),
        });
        """,
    )
    _write(
        root,
        "packages/schema/user.schema.json",
        json.dumps(
            {
                "title": "User",
                "type": "object",
                "properties": {"id": {"type": "string"}, "address": {"$ref": "#/definitions/Address"}},
                "required": ["id"],
                "definitions": {
                    "Address": {"type": "object", "properties": {"street": {"type": "string"}}},
                },
            }
        ),
    )
    _write(
        root,
        "services/api/pyproject.toml",
        """
        [project]
        name = "api-service"
        version = "0.1.0"
        dependencies = ["pydantic>=2"]
        """,
    )
    _write(root, "services/api/app/__init__.py", "")
    _write(
        root,
        "services/api/app/models.py",
        """
        from pydantic import BaseModel


        class Address(BaseModel):
            street: str
            city: str | None = None


        class Customer(BaseModel):
            \"\"\"A paying customer.\"\"\"

            name: str
            address: Address
        """,
    )
    _write(
        root,
        "services/api/app/service.py",
        """
        from .models import Customer


        def load_customer(name: str) -> Customer:
            return build_customer(name)


        def build_customer(name: str) -> Customer:
            return Customer(name=name, address=None)
        """,
    )
    _write(root, "node_modules/zod/index.js", "module.exports = {};\n")
    _write(
        root,
        "docs/guide.md",
        """
        # Developer Guide

        How the packages fit together.
        """,
    )
    return root


# ----------------------------------------------------------------------
# In-memory Neo4j
# ----------------------------------------------------------------------


class FakeNode:
    """Stands in for ``neo4j.graph.Node``."""

    def __init__(self, element_id: str, labels: set[str], props: dict[str, Any]) -> None:
        self.element_id = element_id
        self.labels = frozenset(labels)
        self._props = dict(props)

    def items(self):
        return self._props.items()

    def get(self, key: str, default: Any = None) -> Any:
        return self._props.get(key, default)


class FakeRelationship:
    """Stands in for ``neo4j.graph.Relationship``."""

    def __init__(self, element_id: str, start: FakeNode, end: FakeNode, rel_type: str, props: dict[str, Any]) -> None:
        self.element_id = element_id
        self.start_node = start
        self.end_node = end
        self.type = rel_type
        self._props = dict(props)

    def items(self):
        return self._props.items()

    def get(self, key: str, default: Any = None) -> Any:
        return self._props.get(key, default)


class FakeNeo4j:
    """Just enough of a Neo4j server to back :class:`GraphStore` in tests.

    Statements are recognised by the fragments the store emits.  Records
    are plain dicts, which offer the ``keys``/``values``/``get`` subset of
    ``neo4j.Record`` the store relies on.
    """

    def __init__(self) -> None:
        self.nodes: dict[str, dict[str, Any]] = {}
        self.labels: dict[str, set[str]] = {}
        self.relationships: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.schema: set[str] = set()
        self.statements: list[tuple[str, dict[str, Any]]] = []
        self.available = True
        self._failures: list[tuple[str, int]] = []
        self._seen: dict[str, int] = {}

    def fail_on(self, fragment: str, occurrence: int = 1) -> None:
        """Make the *occurrence*-th statement containing *fragment* fail."""
        self._failures.append((fragment, occurrence))

    # -- entities ---------------------------------------------------------

    def _node(self, node_id_: str) -> FakeNode:
        return FakeNode(f"e:{node_id_}", {"CodeEntity", *self.labels[node_id_]}, self.nodes[node_id_])

    def _rel(self, key: tuple[str, str, str]) -> FakeRelationship:
        source, target, rel_type = key
        return FakeRelationship(
            f"r:{source}:{rel_type}:{target}",
            self._node(source),
            self._node(target),
            rel_type,
            self.relationships[key],
        )

    # -- dispatch ---------------------------------------------------------

    def run(self, text: str, params: dict[str, Any]) -> tuple[list[dict[str, Any]], list[str]]:
        self.statements.append((text, params))
        for fragment, occurrence in self._failures:
            if fragment in text:
                self._seen[fragment] = self._seen.get(fragment, 0) + 1
                if self._seen[fragment] == occurrence:
                    raise ServiceUnavailable(f"injected failure on {fragment!r}")

        if text.startswith(("CREATE CONSTRAINT", "CREATE INDEX")):
            self.schema.add(text.split()[2])
            return [], []
        if text.startswith(("DROP CONSTRAINT", "DROP INDEX")):
            self.schema.discard(text.split()[2])
            return [], []
        if "DETACH DELETE" in text:
            return self._delete(int(re.search(r"LIMIT (\d+)", text).group(1)))

        label = re.search(r"MERGE \(n:CodeEntity:(\w+)", text)
        if label:
            return self._merge_nodes(label.group(1), params["batch"])
        rel_type = re.search(r"MERGE \(s\)-\[r:(\w+)\]", text)
        if rel_type:
            return self._merge_relationships(rel_type.group(1), params["batch"])

        if "count(r) AS degree" in text:
            return self._degrees(params["ids"])
        if "RETURN n.id AS id" in text:
            return [{"id": i} for i in params["ids"] if i in self.nodes], ["id"]
        if "RETURN n.type AS type" in text:
            return self._group(n["type"] for n in self.nodes.values())
        if "RETURN type(r) AS type" in text:
            return self._group(key[2] for key in self.relationships)
        if "{id: $id}) RETURN n" in text:
            found = params["id"] in self.nodes
            return ([{"n": self._node(params["id"])}] if found else []), ["n"]
        if "RETURN n, r, m" in text:
            return self._neighbourhood(params["ids"], params["limit"])
        return [], []

    def _delete(self, limit: int) -> tuple[list[dict[str, Any]], list[str]]:
        doomed = list(self.nodes)[:limit]
        for id_ in doomed:
            del self.nodes[id_]
            del self.labels[id_]
        self.relationships = {
            k: v for k, v in self.relationships.items() if k[0] in self.nodes and k[1] in self.nodes
        }
        return [{"cnt": len(doomed)}], ["cnt"]

    def _merge_nodes(self, label: str, batch: list[dict[str, Any]]) -> tuple[list[dict[str, Any]], list[str]]:
        for rec in batch:
            props = self.nodes.setdefault(rec["id"], {"id": rec["id"]})
            props.update(rec["properties"])
            props.update({"name": rec["name"], "type": rec["type"]})
            if rec["path"] is None:
                props.pop("path", None)
            else:
                props["path"] = rec["path"]
            self.labels.setdefault(rec["id"], set()).add(label)
        return [{"cnt": len(batch)}], ["cnt"]

    def _merge_relationships(self, rel_type: str, batch: list[dict[str, Any]]) -> tuple[list[dict[str, Any]], list[str]]:
        count = 0
        for rec in batch:
            if rec["source"] not in self.nodes or rec["target"] not in self.nodes:
                continue
            props = self.relationships.setdefault((rec["source"], rec["target"], rel_type), {})
            props.update(rec["properties"])
            props["key"] = rec["key"]
            count += 1
        return [{"cnt": count}], ["cnt"]

    def _degrees(self, ids: list[str]) -> tuple[list[dict[str, Any]], list[str]]:
        records = []
        for id_ in ids:
            if id_ in self.nodes:
                degree = sum(1 for s, t, _ in self.relationships if id_ in (s, t))
                records.append({"id": id_, "degree": degree})
        return records, ["id", "degree"]

    @staticmethod
    def _group(values) -> tuple[list[dict[str, Any]], list[str]]:
        counts: dict[str, int] = {}
        for value in values:
            counts[value] = counts.get(value, 0) + 1
        return [{"type": t, "count": c} for t, c in counts.items()], ["type", "count"]

    def _neighbourhood(self, ids: list[str], limit: int) -> tuple[list[dict[str, Any]], list[str]]:
        records = []
        for key in self.relationships:
            source, target, _ = key
            for near, far in ((source, target), (target, source)):
                if near in ids:
                    records.append({"n": self._node(near), "r": self._rel(key), "m": self._node(far)})
        return records[:limit], ["n", "r", "m"]


class FakeDriver:
    def __init__(self, server: FakeNeo4j) -> None:
        self.server = server
        self.closed = False

    def verify_connectivity(self) -> None:
        if not self.server.available:
            raise ServiceUnavailable("Unable to retrieve routing information")

    def execute_query(self, query_, parameters_=None, database_=None, routing_=None):
        text = " ".join(str(getattr(query_, "text", query_)).split())
        records, keys = self.server.run(text, dict(parameters_ or {}))
        return records, None, keys

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_neo4j(monkeypatch: pytest.MonkeyPatch) -> FakeNeo4j:
    """Patch the driver factory so every :class:`GraphStore` talks to one in-memory server."""
    server = FakeNeo4j()

    class _GraphDatabase:
        @staticmethod
        def driver(uri: str, auth: Any = None, **kwargs: Any) -> FakeDriver:
            return FakeDriver(server)

    monkeypatch.setattr(database, "GraphDatabase", _GraphDatabase)
    return server


@pytest.fixture
def neo4j_config() -> Neo4jConfig:
    return Neo4jConfig(connection_uri="bolt://localhost:7687", username="neo4j", password="secret")


@pytest.fixture
def test_settings(tmp_path: pathlib.Path) -> Settings:
    """Settings with a complete connection and no config file on disk."""
    return Settings(
        neo4j_uri="bolt://localhost:7687",
        neo4j_user="neo4j",
        neo4j_password="secret",
        neo4j_config_file=str(tmp_path / "missing.json"),
        import_batch_size=2,
        extractor_timeout_seconds=60.0,
    )


@pytest.fixture
def store(fake_neo4j: FakeNeo4j, neo4j_config: Neo4jConfig):
    graph_store = GraphStore(neo4j_config, batch_size=2)
    graph_store.connect()
    yield graph_store
    graph_store.disconnect()


# ----------------------------------------------------------------------
# Canned store for the query engine
# ----------------------------------------------------------------------


def make_graph_node(node_type: NodeType, name: str, path: Optional[str] = None, **properties: Any) -> GraphNode:
    return GraphNode(id=node_id(node_type, name, path), type=node_type, name=name, path=path, properties=properties)


class FakeStore:
    """Answers generated queries from a fixed node list by their parameters.

    ``failures`` holds exceptions raised, in order, by the next ``query``
    calls.
    """

    def __init__(self, nodes: list[GraphNode], relationships: list[GraphRelationship]) -> None:
        self.nodes = nodes
        self.relationships = relationships
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.failures: list[Exception] = []
        self.neighbourhood_error: Optional[Exception] = None
        self.config = Neo4jConfig(connection_uri="bolt://fake:7687", username="neo4j", password="secret")
        self.connected = False

    # lifecycle
    def connect(self) -> None:
        self.connected = True

    def disconnect(self) -> None:
        self.connected = False

    def __enter__(self) -> FakeStore:
        self.connect()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.disconnect()

    # reads
    def _by_id(self) -> dict[str, GraphNode]:
        return {n.id: n for n in self.nodes}

    def query(self, cypher: str, parameters: dict[str, Any] | None = None, timeout: Optional[float] = None) -> QueryResult:
        params = dict(parameters or {})
        self.calls.append((cypher, params))
        if self.failures:
            raise self.failures.pop(0)

        if "first" in params:
            names = sorted({n.name for n in self.nodes if n.name.lower().startswith(params["first"])})
            return QueryResult(records=[{"name": n} for n in names], keys=["name"])
        if "terms" in params:
            hits = [
                n for n in self.nodes
                if any(t in n.name.lower() or t in (n.path or "").lower() for t in params["terms"])
            ]
            return QueryResult(nodes=hits[: params["limit"]])
        if "term" in params:
            term = params["term"].lower()
            hits = [
                n for n in self.nodes
                if (term in n.name.lower() or term in (n.path or "").lower())
                and params.get("type") in (None, n.type.value)
            ]
            return QueryResult(nodes=hits[: params["limit"]])
        if "source" in params:
            return self._around(params["source"], params.get("target"))
        if "CALLS|USES" in cypher:
            return self._edges((RelationType.CALLS, RelationType.USES), params["name"], incoming=True)
        if "DEPENDS_ON|IMPORTS" in cypher:
            return self._edges((RelationType.DEPENDS_ON, RelationType.IMPORTS), params["name"], incoming=False)

        name, node_type = params.get("name"), params.get("type")
        hits = [
            n for n in self.nodes
            if (name is None or name.lower() in n.name.lower()) and node_type in (None, n.type.value)
        ]
        return QueryResult(nodes=hits[: params["limit"]])

    def _edges(self, types: tuple[RelationType, ...], name: Optional[str], *, incoming: bool) -> QueryResult:
        by_id = self._by_id()
        nodes: dict[str, GraphNode] = {}
        rels = []
        for rel in self.relationships:
            anchor = by_id[rel.target] if incoming else by_id[rel.source]
            if rel.type in types and (name is None or anchor.name == name):
                rels.append(rel)
                nodes[rel.source] = by_id[rel.source]
                nodes[rel.target] = by_id[rel.target]
        return QueryResult(nodes=list(nodes.values()), relationships=rels)

    def _around(self, source: str, target: Optional[str]) -> QueryResult:
        by_id = self._by_id()
        names = {source, target} - {None}
        rels = [r for r in self.relationships if by_id[r.source].name in names or by_id[r.target].name in names]
        if target is not None:
            rels = [r for r in rels if {by_id[r.source].name, by_id[r.target].name} == names]
        ids = list(dict.fromkeys(itertools.chain.from_iterable((r.source, r.target) for r in rels)))
        return QueryResult(nodes=[by_id[i] for i in ids], relationships=rels)

    def find_node(self, node_id_: str) -> Optional[GraphNode]:
        return self._by_id().get(node_id_)

    def node_degrees(self, ids: list[str]) -> dict[str, int]:
        return {i: sum(1 for r in self.relationships if i in (r.source, r.target)) for i in ids}

    def neighborhood(self, ids: list[str], limit: int = 50) -> QueryResult:
        if self.neighbourhood_error is not None:
            raise self.neighbourhood_error
        by_id = self._by_id()
        rels = [r for r in self.relationships if r.source in ids or r.target in ids][:limit]
        nodes = {i: by_id[i] for r in rels for i in (r.source, r.target)}
        return QueryResult(nodes=list(nodes.values()), relationships=rels)


@pytest.fixture
def code_graph() -> tuple[list[GraphNode], list[GraphRelationship]]:
    """A small stored graph mirroring :func:`sample_repo`."""
    core = make_graph_node(NodeType.PACKAGE, "@scope/core", "packages/core", description="Core logging utilities")
    schema = make_graph_node(NodeType.PACKAGE, "@scope/schema", "packages/schema")
    index = make_graph_node(NodeType.FILE, "packages/core/src/index.ts", "packages/core/src/index.ts")
    create_logger = make_graph_node(
        NodeType.FUNCTION,
        "createLogger",
        "packages/core/src/index.ts",
        start_line=10,
        end_line=12,
        docstring="Build a logger writing to the console.",
    )
    create_logger_factory = make_graph_node(NodeType.CLASS, "LoggerFactory", "packages/core/src/factory.ts")
    format_message = make_graph_node(NodeType.FUNCTION, "formatMessage", "packages/core/src/format.ts", start_line=1, end_line=3)
    logger = make_graph_node(NodeType.INTERFACE, "Logger", "packages/core/src/index.ts", start_line=4, end_line=7)
    console_logger = make_graph_node(NodeType.CLASS, "ConsoleLogger", "packages/core/src/index.ts", start_line=14, end_line=20)
    user_schema = make_graph_node(NodeType.SCHEMA, "UserSchema", "packages/schema/src/user.ts")
    readme = make_graph_node(
        NodeType.DOCUMENT, "Core Package", "packages/core/README.md", summary="Structured logging helpers."
    )

    def rel(source: GraphNode, target: GraphNode, rel_type: RelationType) -> GraphRelationship:
        return GraphRelationship(source=source.id, target=target.id, type=rel_type)

    nodes = [core, schema, index, create_logger, create_logger_factory, format_message, logger, console_logger, user_schema, readme]
    relationships = [
        rel(create_logger, format_message, RelationType.CALLS),
        rel(console_logger, format_message, RelationType.CALLS),
        rel(console_logger, logger, RelationType.IMPLEMENTS),
        rel(create_logger, logger, RelationType.USES),
        rel(core, schema, RelationType.DEPENDS_ON),
        rel(index, create_logger, RelationType.CONTAINS),
        rel(core, readme, RelationType.CONTAINS),
    ]
    return nodes, relationships


@pytest.fixture
def fake_store(code_graph) -> FakeStore:
    nodes, relationships = code_graph
    return FakeStore(nodes, relationships)


@pytest.fixture
def failing_query() -> QueryExecutionError:
    return QueryExecutionError("Invalid input 'RETURN'")
