import json

import pytest

from cartograph.commands import (
    CommandContext,
    clear_command,
    context_command,
    extract_command,
    query_command,
    stats_command,
)
from cartograph.config import Settings
from cartograph.errors import OutcomeStatus


@pytest.fixture
def broken_settings(tmp_path):
    return Settings(
        neo4j_uri="",
        neo4j_user="",
        neo4j_password="",
        neo4j_config_file=str(tmp_path / "missing.json"),
    )


def _fake_factory(store):
    return lambda _settings: store


class TestCommandContext:
    def test_option_aliases(self):
        ctx = CommandContext(options={"working-dir": "/repo", "top_k": 3, "limit": None})

        assert ctx.option("working_dir") == "/repo"
        assert ctx.option("top-k") == 3
        assert ctx.option("limit", 10) == 10

    def test_emit_forwards_to_callbacks(self):
        lines = []

        class Recorder:
            def __init__(self):
                self.events = []

            def info(self, event, **kw):
                self.events.append((event, kw))

        recorder = Recorder()
        CommandContext(log=lines.append, logger=recorder).emit("something_happened", "It happened", count=2)

        assert lines == ["It happened"]
        assert recorder.events == [("something_happened", {"count": 2})]


class TestExtractCommand:
    def test_console_output(self, sample_repo, test_settings):
        lines = []
        ctx = CommandContext(args=[str(sample_repo)], log=lines.append)

        result = extract_command(ctx, app_settings=test_settings)

        assert result.success
        assert result.status is OutcomeStatus.SUCCESS
        assert result.message.startswith(f"Nodes: {result.data['nodes']}")
        assert result.data["counts_by_type"]["Package"] == 3
        assert lines[-1] == result.message

    def test_json_output(self, sample_repo, test_settings, tmp_path):
        target = tmp_path / "out" / "graph.json"
        ctx = CommandContext(options={"working_dir": str(sample_repo), "output": "json", "file": str(target)})

        result = extract_command(ctx, app_settings=test_settings)

        assert result.success
        nodes = json.loads((tmp_path / "out" / "nodes.json").read_text(encoding="utf-8"))
        rels = json.loads((tmp_path / "out" / "relationships.json").read_text(encoding="utf-8"))
        assert len(nodes) == result.data["nodes"]
        assert len(rels) == result.data["relationships"]

    def test_neo4j_output(self, sample_repo, test_settings, fake_neo4j):
        ctx = CommandContext(options={"working_dir": str(sample_repo), "output": "neo4j", "extractors": "package,schema"})

        result = extract_command(ctx, app_settings=test_settings)

        assert result.success
        assert result.data["import"]["status"] == "SUCCESS"
        assert len(fake_neo4j.nodes) == result.data["nodes"]
        assert [e["kind"] for e in result.data["extractors"]] == ["package", "schema"]

    def test_configuration_error_fails_before_extraction(self, sample_repo, broken_settings):
        lines = []
        ctx = CommandContext(options={"working_dir": str(sample_repo), "output": "neo4j"}, log=lines.append)

        result = extract_command(ctx, app_settings=broken_settings)

        assert not result.success
        assert result.status is OutcomeStatus.FAILED
        assert len(result.data["problems"]) == 3
        assert "nodes" not in result.data
        assert lines[0].startswith("Configuration error")

    @pytest.mark.parametrize(
        "options",
        [{"output": "yaml"}, {"extractors": "package,rust"}],
    )
    def test_invalid_options(self, sample_repo, test_settings, options):
        result = extract_command(CommandContext(args=[str(sample_repo)], options=options), app_settings=test_settings)

        assert not result.success
        assert "Choose from" in result.error

    def test_missing_directory(self, tmp_path, test_settings):
        result = extract_command(CommandContext(args=[str(tmp_path / "nope")]), app_settings=test_settings)
        assert result.status is OutcomeStatus.FAILED


class TestQueryCommands:
    def test_query(self, fake_store, test_settings):
        ctx = CommandContext(args=["find", "createLogger", "function"])

        result = query_command(ctx, app_settings=test_settings, store_factory=_fake_factory(fake_store))

        assert result.success
        assert result.data["nodes"][0]["node"]["name"] == "createLogger"
        assert result.data["intent"] == "find_entity"
        assert not fake_store.connected

    def test_query_limit_option(self, fake_store, test_settings):
        ctx = CommandContext(options={"query": "find logger", "limit": 1})

        result = query_command(ctx, app_settings=test_settings, store_factory=_fake_factory(fake_store))

        assert len(result.data["nodes"]) == 1
        assert result.data["parameters"]["limit"] == 1

    def test_no_results_is_not_a_failure(self, fake_store, test_settings):
        ctx = CommandContext(options={"query": "find zzqx function"})

        result = query_command(ctx, app_settings=test_settings, store_factory=_fake_factory(fake_store))

        assert result.success
        assert result.status is OutcomeStatus.NO_RESULTS
        assert result.data["suggestions"]

    def test_unreachable_database(self, fake_neo4j, test_settings):
        fake_neo4j.available = False

        result = query_command(CommandContext(args=["find", "x"]), app_settings=test_settings)

        assert not result.success
        assert result.status is OutcomeStatus.FAILED

    def test_configuration_error(self, broken_settings):
        result = query_command(CommandContext(args=["find", "x"]), app_settings=broken_settings)
        assert result.data["problems"]

    def test_context(self, fake_store, test_settings, sample_repo):
        ctx = CommandContext(options={"query": "find createLogger function", "working_dir": str(sample_repo)})

        result = context_command(ctx, app_settings=test_settings, store_factory=_fake_factory(fake_store))

        assert result.success
        assert result.data["entry_points"][0]["name"] == "createLogger"
        assert len(result.data["snippets"]) >= 1
        assert "related nodes" in result.message


class TestAdminCommands:
    def test_stats_on_empty_graph(self, fake_neo4j, test_settings):
        result = stats_command(CommandContext(), app_settings=test_settings)

        assert result.success
        assert result.status is OutcomeStatus.NO_RESULTS
        assert result.data["node_count"] == 0

    def test_stats_after_extract(self, fake_neo4j, test_settings, sample_repo):
        extract_command(
            CommandContext(options={"working_dir": str(sample_repo), "output": "neo4j"}), app_settings=test_settings
        )

        result = stats_command(CommandContext(), app_settings=test_settings)

        assert result.status is OutcomeStatus.SUCCESS
        assert result.data["counts_by_type"]["Package"] == 3

    def test_clear_requires_confirm(self, fake_neo4j, test_settings):
        result = clear_command(CommandContext(), app_settings=test_settings)

        assert not result.success
        assert fake_neo4j.statements == []

    def test_clear(self, fake_neo4j, test_settings, sample_repo):
        extract_command(
            CommandContext(options={"working_dir": str(sample_repo), "output": "neo4j", "extractors": "package"}),
            app_settings=test_settings,
        )

        result = clear_command(CommandContext(options={"confirm": True}), app_settings=test_settings)

        assert result.success
        assert result.data["nodes_deleted"] > 0
        assert fake_neo4j.nodes == {}
