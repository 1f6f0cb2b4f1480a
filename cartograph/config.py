"""Application-wide configuration and settings.

Uses ``pydantic-settings`` so values can be overridden via environment
variables prefixed with ``CARTOGRAPH_``.  Neo4j connection settings are
resolved by :func:`load_neo4j_config`, which falls back to a local JSON
file for any value the environment leaves empty.
"""

from __future__ import annotations

import json
import pathlib
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from cartograph.errors import ConfigurationError

ALLOWED_URI_SCHEMES: tuple[str, ...] = ("neo4j://", "neo4j+s://", "bolt://", "bolt+s://")
DEFAULT_DATABASE: str = "neo4j"
DEFAULT_CONFIG_FILE: str = "cartograph.neo4j.json"


class Settings(BaseSettings):
    """Global settings for the Cartograph engine.

    Attributes:
        app_name: Display name of the application.
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        default_blacklist: Directory/file patterns to skip during crawling.
        max_file_size_bytes: Skip files larger than this threshold.
        neo4j_uri: Bolt/Neo4j connection string.
        neo4j_user: Database username.
        neo4j_password: Database password.
        neo4j_database: Target database name.
        neo4j_config_file: JSON fallback for connection values left empty.
        neo4j_max_connection_pool_size: Upper bound on pooled connections.
        import_batch_size: Records per ``UNWIND`` transaction.
        extractor_workers: Worker threads used to run extractors.
        extractor_timeout_seconds: Per-extractor time budget.
        query_timeout_seconds: Transaction timeout for generated queries.
        query_limit: Maximum rows returned by a generated query.
        path_max_length: Upper bound on ``shortestPath`` hops.
        relevance_threshold: Top score below which suggestions are added.
    """

    app_name: str = "Cartograph"
    log_level: str = "INFO"
    default_blacklist: list[str] = [
        ".git",
        "__pycache__",
        "node_modules",
        "venv",
        ".venv",
        "env",
        ".env",
        ".tox",
        ".mypy_cache",
        ".pytest_cache",
        ".next",
        "coverage",
        "dist",
        "build",
        ".eggs",
        "*.egg-info",
        ".idea",
        ".vscode",
    ]
    max_file_size_bytes: int = 1_048_576  # 1 MB

    neo4j_uri: str = ""
    neo4j_user: str = ""
    neo4j_password: str = ""
    neo4j_database: str = ""
    neo4j_config_file: str = DEFAULT_CONFIG_FILE
    neo4j_max_connection_pool_size: int = 50

    import_batch_size: int = 100
    extractor_workers: int = 4
    extractor_timeout_seconds: float = 120.0

    query_timeout_seconds: float = 10.0
    query_limit: int = 20
    path_max_length: int = 6
    relevance_threshold: float = 0.3

    model_config = {"env_prefix": "CARTOGRAPH_", "env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()


class Neo4jConfig(BaseModel):
    """Validated connection settings for the graph database."""

    connection_uri: str = Field(..., description="Bolt-compatible connection URI.")
    username: str = Field(..., description="Database username.")
    password: str = Field(..., description="Database password.")
    database: str = Field(DEFAULT_DATABASE, description="Target database name.")

    @field_validator("connection_uri")
    @classmethod
    def _check_uri(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("connection URI must not be empty")
        if not value.startswith(ALLOWED_URI_SCHEMES):
            raise ValueError(
                f"connection URI must use one of {', '.join(ALLOWED_URI_SCHEMES)} (got {value!r})"
            )
        return value

    @field_validator("username", "password")
    @classmethod
    def _check_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("database")
    @classmethod
    def _default_database(cls, value: str) -> str:
        return value.strip() or DEFAULT_DATABASE


# JSON file keys, keyed by Neo4jConfig field name.
_JSON_KEYS: dict[str, str] = {
    "connection_uri": "connectionUri",
    "username": "username",
    "password": "password",
    "database": "database",
}


def _read_config_file(path: pathlib.Path) -> dict[str, Any]:
    """Return the contents of the JSON fallback file, or ``{}`` if absent."""
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Cannot read Neo4j config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Neo4j config file {path} must contain a JSON object")
    # Accept the file either flat or under a top-level "neo4j" key.
    nested = data.get("neo4j")
    return nested if isinstance(nested, dict) else data


def load_neo4j_config(
    app_settings: Settings | None = None,
    config_file: str | pathlib.Path | None = None,
) -> Neo4jConfig:
    """Resolve and validate the Neo4j connection settings.

    Environment values (via :class:`Settings`) win; any value left empty
    falls back to the JSON file.  ``database`` defaults to ``"neo4j"``.

    Args:
        app_settings: Settings to read from (defaults to the module-level
            :data:`settings`).
        config_file: Override for the JSON fallback path.

    Returns:
        A validated :class:`Neo4jConfig`.

    Raises:
        ConfigurationError: If the merged configuration is incomplete or
            malformed.  No connection is attempted.
    """
    app_settings = app_settings or settings
    path = pathlib.Path(config_file or app_settings.neo4j_config_file)
    file_values = _read_config_file(path)

    env_values = {
        "connection_uri": app_settings.neo4j_uri,
        "username": app_settings.neo4j_user,
        "password": app_settings.neo4j_password,
        "database": app_settings.neo4j_database,
    }

    merged: dict[str, str] = {}
    for field_name, env_value in env_values.items():
        value = env_value or file_values.get(_JSON_KEYS[field_name]) or ""
        merged[field_name] = str(value)

    try:
        return Neo4jConfig(**merged)
    except ValidationError as exc:
        problems = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        ]
        raise ConfigurationError(
            "Invalid Neo4j configuration: " + "; ".join(problems),
            problems=problems,
        ) from exc
