import pytest

from cartograph.query.generator import MAX_PATH_LENGTH, generate, relaxed, search_terms
from cartograph.query.intent import Intent, classify


class TestGenerate:
    def test_find_entity_binds_name_and_type(self):
        query = generate(classify("find createLogger function"))

        assert query.intent is Intent.FIND_ENTITY
        assert query.parameters == {"name": "createLogger", "type": "Function", "limit": 20}
        assert "createLogger" not in query.cypher
        assert "$name" in query.cypher and "$type" in query.cypher

    def test_user_text_never_reaches_cypher(self):
        hostile = "x}) DETACH DELETE n //"
        query = generate(classify(f'find "{hostile}"'))

        assert query.parameters["name"] == hostile
        assert "DETACH DELETE" not in query.cypher

    def test_usages_and_dependencies_templates(self):
        usages = generate(classify("who calls formatMessage"))
        deps = generate(classify("show dependencies of @scope/core"))

        assert "CALLS|USES" in usages.cypher
        assert usages.parameters["name"] == "formatMessage"
        assert "DEPENDS_ON|IMPORTS" in deps.cypher
        assert deps.parameters["name"] == "@scope/core"

    def test_path_interpolates_validated_bound(self):
        query = generate(classify("path from createLogger to formatMessage"), path_max_length=4)

        assert "[*..4]" in query.cypher
        assert "{max_length}" not in query.cypher
        assert query.parameters == {"source": "createLogger", "target": "formatMessage", "limit": 20}

    @pytest.mark.parametrize("bound", [0, -1, MAX_PATH_LENGTH + 1])
    def test_path_bound_out_of_range(self, bound):
        with pytest.raises(ValueError):
            generate(classify("path from a to b"), path_max_length=bound)

    def test_path_with_one_endpoint_is_neighbourhood(self):
        query = generate(classify("path around createLogger"))

        assert query.parameters == {"source": "createLogger", "limit": 20}
        assert "*1..2" in query.cypher

    def test_explain_uses_term(self):
        query = generate(classify("explain ConsoleLogger"), limit=5)
        assert query.parameters == {"term": "ConsoleLogger", "limit": 5}

    def test_unknown_with_entity_is_broad_search(self):
        query = generate(classify("createLogger"))

        assert query.intent is Intent.UNKNOWN
        assert query.parameters["term"] == "createLogger"

    @pytest.mark.parametrize("text", ["", "explain", "path"])
    def test_nothing_to_search_for(self, text):
        assert generate(classify(text)) is None

    def test_limit_is_at_least_one(self):
        assert generate(classify("find createLogger"), limit=0).parameters["limit"] == 1


class TestRelaxed:
    def test_search_terms_split_identifiers(self):
        assert search_terms("createLogger") == ["createlogger", "create", "logger"]
        assert search_terms("format_message", "@scope/core") == ["format", "message", "scope", "core"]
        assert search_terms("a", None, "") == []

    def test_relaxed_drops_type_filter(self):
        query = relaxed(classify("find createLoger function"))

        assert query.parameters["terms"] == ["createloger", "create", "loger"]
        assert "$type" not in query.cypher

    def test_relaxed_falls_back_to_question_words(self):
        query = relaxed(classify("explain"))
        assert query.parameters["terms"] == ["explain"]

    def test_relaxed_with_nothing_usable(self):
        assert relaxed(classify("")) is None
