import json
import logging

import pytest
import structlog

from cartograph.config import Settings, load_neo4j_config
from cartograph.errors import ConfigurationError
from cartograph.logging import setup_logging


def _settings(tmp_path, **overrides):
    values = {
        "neo4j_uri": "",
        "neo4j_user": "",
        "neo4j_password": "",
        "neo4j_database": "",
        "neo4j_config_file": str(tmp_path / "cartograph.neo4j.json"),
    }
    values.update(overrides)
    return Settings(**values)


def _write_config(tmp_path, data):
    (tmp_path / "cartograph.neo4j.json").write_text(json.dumps(data), encoding="utf-8")


class TestLoadNeo4jConfig:
    def test_environment_only(self, tmp_path):
        config = load_neo4j_config(
            _settings(tmp_path, neo4j_uri="bolt://db:7687", neo4j_user="neo4j", neo4j_password="pw")
        )

        assert config.connection_uri == "bolt://db:7687"
        assert config.database == "neo4j"

    def test_file_fills_gaps_and_environment_wins(self, tmp_path):
        _write_config(
            tmp_path,
            {"connectionUri": "neo4j://file:7687", "username": "file-user", "password": "file-pw", "database": "graphs"},
        )

        config = load_neo4j_config(_settings(tmp_path, neo4j_password="env-pw"))

        assert config.connection_uri == "neo4j://file:7687"
        assert config.username == "file-user"
        assert config.password == "env-pw"
        assert config.database == "graphs"

    def test_nested_neo4j_key(self, tmp_path):
        _write_config(
            tmp_path, {"neo4j": {"connectionUri": "bolt+s://nested:7687", "username": "u", "password": "p"}}
        )

        assert load_neo4j_config(_settings(tmp_path)).connection_uri == "bolt+s://nested:7687"

    def test_explicit_config_file_argument(self, tmp_path):
        other = tmp_path / "other.json"
        other.write_text(json.dumps({"connectionUri": "bolt://other:7687", "username": "u", "password": "p"}))

        assert load_neo4j_config(_settings(tmp_path), other).connection_uri == "bolt://other:7687"

    def test_missing_values_list_every_problem(self, tmp_path):
        with pytest.raises(ConfigurationError) as info:
            load_neo4j_config(_settings(tmp_path))

        fields = sorted(p.split(":")[0] for p in info.value.problems)
        assert fields == ["connection_uri", "password", "username"]

    def test_invalid_scheme(self, tmp_path):
        with pytest.raises(ConfigurationError) as info:
            load_neo4j_config(_settings(tmp_path, neo4j_uri="http://db:7474", neo4j_user="u", neo4j_password="p"))

        assert len(info.value.problems) == 1
        assert "bolt://" in info.value.problems[0]

    @pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
    def test_unreadable_file(self, tmp_path, content):
        (tmp_path / "cartograph.neo4j.json").write_text(content, encoding="utf-8")

        with pytest.raises(ConfigurationError):
            load_neo4j_config(_settings(tmp_path))


class TestSettings:
    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("CARTOGRAPH_QUERY_LIMIT", "7")
        monkeypatch.setenv("CARTOGRAPH_NEO4J_URI", "bolt://from-env:7687")

        loaded = Settings()

        assert loaded.query_limit == 7
        assert loaded.neo4j_uri == "bolt://from-env:7687"


def test_setup_logging_quiets_driver():
    try:
        setup_logging("DEBUG", json_output=True)

        assert logging.getLogger("neo4j").level == logging.WARNING
        structlog.get_logger("test").info("configured")
    finally:
        structlog.reset_defaults()
