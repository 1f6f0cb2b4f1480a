"""FastAPI route definitions for the Cartograph API.

Provides endpoints for:

- ``POST /extract`` - extract a repository and import, dump or summarise it.
- ``POST /query`` - answer a free-text question from the graph.
- ``POST /context`` - answer a question and expand its graph context.
- ``GET /stats`` - node and relationship counts.
- ``GET /nodes/{node_id}`` - one stored node, optionally with its source.
- ``DELETE /graph`` - wipe all graph data (requires ``confirm=true``).

Every Neo4j call is synchronous and dispatched to a thread via
``asyncio.to_thread`` so the FastAPI event loop stays free.
"""

from __future__ import annotations

import asyncio
import dataclasses
import pathlib
from typing import Any, Callable, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from cartograph.commands import (
    CommandContext,
    CommandResult,
    StoreFactory,
    clear_command,
    context_command,
    extract_command,
    query_command,
    stats_command,
)
from cartograph.config import settings
from cartograph.core.content_reader import get_node_snippet
from cartograph.errors import CartographError, ConfigurationError, OutcomeStatus
from cartograph.graph.database import GraphStore
from cartograph.models.graph import GraphNode

router = APIRouter()


# ------------------------------------------------------------------
# Dependencies
# ------------------------------------------------------------------


def get_store_factory() -> StoreFactory:
    """Return the factory used to build a :class:`GraphStore` per request.

    Tests override this dependency to inject a fake store.
    """
    return GraphStore.from_settings


# ------------------------------------------------------------------
# Request / Response schemas
# ------------------------------------------------------------------


ExtractorName = Literal["package", "schema", "function", "import", "document", "all"]


class ExtractRequest(BaseModel):
    """Payload for ``POST /extract``.

    Attributes:
        path: Absolute local path to the repository to scan.
        extractors: Extractor kinds to run.
        output: Where the graph goes.
        clear: Wipe the graph before importing.
        file: JSON output location (``json`` output only).
    """

    path: str = Field(..., description="Absolute local path to the repository.")
    extractors: list[ExtractorName] = Field(default_factory=lambda: ["all"], description="Extractors to run.")
    output: Literal["neo4j", "json", "console"] = Field("neo4j", description="Output target.")
    clear: bool = Field(False, description="Wipe existing data first.")
    file: Optional[str] = Field(None, description="JSON output location.")


class QueryRequest(BaseModel):
    """Payload for ``POST /query``."""

    query: str = Field(..., description="Free-text question.")
    limit: Optional[int] = Field(None, ge=1, le=200, description="Maximum results.")


class ContextRequest(BaseModel):
    """Payload for ``POST /context``."""

    query: str = Field(..., description="Free-text question.")
    path: Optional[str] = Field(None, description="Repository on disk for source snippets.")
    top_k: int = Field(5, ge=1, le=20, description="Entry points to expand.")


class CommandResponse(BaseModel):
    """Uniform response of every command endpoint."""

    success: bool
    status: OutcomeStatus
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class NodeResponse(BaseModel):
    """Response from ``GET /nodes/{node_id}``."""

    node: GraphNode
    snippet: Optional[str] = None


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


async def _run_command(
    command: Callable[..., CommandResult],
    ctx: CommandContext,
    store_factory: StoreFactory,
) -> CommandResponse:
    result = await asyncio.to_thread(command, ctx, store_factory=store_factory)
    if not result.success:
        code = (
            status.HTTP_503_SERVICE_UNAVAILABLE
            if "problems" in result.data
            else status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        raise HTTPException(status_code=code, detail=result.error or result.message)
    return CommandResponse(**dataclasses.asdict(result))


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------


@router.post(
    "/extract",
    response_model=CommandResponse,
    status_code=status.HTTP_200_OK,
    summary="Extract a repository into the knowledge graph",
    description=(
        "Run the selected extractors concurrently, correlate their output and "
        "import the graph into Neo4j (or write it as JSON / summarise it)."
    ),
)
async def extract(request: ExtractRequest, store_factory: StoreFactory = Depends(get_store_factory)) -> CommandResponse:
    """Scan a repo and push its knowledge graph to the requested output."""
    repo = pathlib.Path(request.path)
    if not repo.is_dir():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Not a directory: {request.path}")

    ctx = CommandContext(
        args=[str(repo)],
        options={
            "extractors": list(request.extractors),
            "output": request.output,
            "clear": request.clear,
            "file": request.file,
        },
    )
    return await _run_command(extract_command, ctx, store_factory)


@router.post("/query", response_model=CommandResponse, summary="Answer a question from the graph")
async def query(request: QueryRequest, store_factory: StoreFactory = Depends(get_store_factory)) -> CommandResponse:
    ctx = CommandContext(options={"query": request.query, "limit": request.limit})
    return await _run_command(query_command, ctx, store_factory)


@router.post("/context", response_model=CommandResponse, summary="Answer a question with its graph context")
async def context(request: ContextRequest, store_factory: StoreFactory = Depends(get_store_factory)) -> CommandResponse:
    ctx = CommandContext(options={"query": request.query, "working_dir": request.path, "top_k": request.top_k})
    return await _run_command(context_command, ctx, store_factory)


@router.get("/stats", response_model=CommandResponse, summary="Graph statistics")
async def stats(store_factory: StoreFactory = Depends(get_store_factory)) -> CommandResponse:
    return await _run_command(stats_command, CommandContext(), store_factory)


@router.get(
    "/nodes/{node_id}",
    response_model=NodeResponse,
    summary="Fetch one node",
    description="Return a stored node; with ``repo`` set, also its source lines read from disk.",
)
async def get_node(
    node_id: str,
    repo: Optional[str] = Query(None, description="Repository root for the source snippet."),
    store_factory: StoreFactory = Depends(get_store_factory),
) -> NodeResponse:
    """Look a node up by id and lazily attach its source."""

    def _do_fetch() -> Optional[GraphNode]:
        with store_factory(settings) as store:
            return store.find_node(node_id)

    try:
        node = await asyncio.to_thread(_do_fetch)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    except CartographError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))

    if node is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Node '{node_id}' not found")
    snippet = get_node_snippet(node, pathlib.Path(repo).resolve()) if repo else None
    return NodeResponse(node=node, snippet=snippet)


@router.delete("/graph", response_model=CommandResponse, summary="Clear all graph data")
async def clear_graph(
    confirm: bool = Query(False, description="Must be true to delete anything."),
    store_factory: StoreFactory = Depends(get_store_factory),
) -> CommandResponse:
    """Wipe all data from the Neo4j database."""
    if not confirm:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Pass confirm=true to clear the graph.")
    return await _run_command(clear_command, CommandContext(options={"confirm": True}), store_factory)
