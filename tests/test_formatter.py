from cartograph.models.graph import GraphRelationship, NodeType, RelationType
from cartograph.query.formatter import (
    GENERIC_SUGGESTION,
    RankedNode,
    explain,
    rank_nodes,
    score_node,
    suggest,
)
from cartograph.query.intent import classify

from tests.conftest import make_graph_node


def _nodes():
    return [
        make_graph_node(NodeType.CLASS, "LoggerFactory", "packages/core/src/factory.ts"),
        make_graph_node(NodeType.FUNCTION, "createLogger", "packages/core/src/index.ts"),
        make_graph_node(NodeType.FUNCTION, "createLoggerSync", "packages/core/src/index.ts"),
    ]


class TestRanking:
    def test_exact_match_ranks_first(self):
        ranked = rank_nodes(_nodes(), classify("find createLogger function"))

        assert [r.node.name for r in ranked] == ["createLogger", "createLoggerSync", "LoggerFactory"]
        assert all(0.0 <= r.score <= 1.0 for r in ranked)

    def test_perfect_score_is_one(self):
        node = make_graph_node(NodeType.FUNCTION, "createLogger", "a.ts")
        assert score_node(node, classify("find createLogger function"), degree=50) == 1.0

    def test_degree_breaks_otherwise_equal_scores(self):
        a = make_graph_node(NodeType.FUNCTION, "format", "a.ts")
        b = make_graph_node(NodeType.FUNCTION, "format", "b.ts")

        ranked = rank_nodes([a, b], classify("find format"), degrees={b.id: 10})

        assert ranked[0].node.id == b.id

    def test_ties_sorted_by_name(self):
        nodes = [make_graph_node(NodeType.FILE, name, name) for name in ("b.ts", "a.ts")]
        ranked = rank_nodes(nodes, classify("list files"))
        assert [r.node.name for r in ranked] == ["a.ts", "b.ts"]


class TestExplain:
    def test_find_entity(self):
        classification = classify("find createLogger function")
        ranked = rank_nodes(_nodes()[1:2], classification)

        text = explain(classification, ranked, [])

        assert text == (
            "Found 1 Function matching 'createLogger'. "
            "Best match: Function 'createLogger' in packages/core/src/index.ts."
        )

    def test_usages_counts_relationships(self):
        target = make_graph_node(NodeType.FUNCTION, "formatMessage", "f.ts")
        callers = [make_graph_node(NodeType.FUNCTION, n, "c.ts") for n in ("a", "b")]
        rels = [GraphRelationship(source=c.id, target=target.id, type=RelationType.CALLS) for c in callers]
        classification = classify("who calls formatMessage")

        text = explain(classification, rank_nodes([target, *callers], classification), rels)

        assert text == "Found 2 usages of 'formatMessage' across 3 nodes."

    def test_explain_concept_plural_and_summary(self):
        nodes = [
            make_graph_node(NodeType.CLASS, "ConsoleLogger", "i.ts", docstring="Writes to stdout.\nMore."),
            make_graph_node(NodeType.FILE, "ConsoleLogger.md", "docs/ConsoleLogger.md"),
        ]
        classification = classify("explain ConsoleLogger")

        text = explain(classification, rank_nodes(nodes, classification), [])

        assert text.startswith("Found 2 entities related to 'ConsoleLogger'. ConsoleLogger: Writes to stdout.")

    def test_empty_with_fallback(self):
        text = explain(classify("find zzqx"), [], [], used_fallback=True)
        assert text == "No results for 'zzqx'. A relaxed search was tried as well."

    def test_fallback_prefix(self):
        classification = classify("find createLoger")
        text = explain(classification, rank_nodes(_nodes()[1:2], classification), [], used_fallback=True)
        assert text.startswith("The exact query returned nothing; showing relaxed matches. ")


class TestSuggest:
    def test_no_results_gets_spelling_and_generic_hint(self):
        suggestions = suggest(
            classify("find createLoger function"),
            [],
            known_names=["createLogger", "formatMessage"],
        )

        assert suggestions[0] == "Try without the kind filter: find createLoger"
        assert "Did you mean 'createLogger'?" in suggestions
        assert suggestions[-1] == GENERIC_SUGGESTION

    def test_good_results_need_no_suggestions(self):
        classification = classify("find createLogger function")
        assert suggest(classification, rank_nodes(_nodes(), classification), limit=20) == []

    def test_truncated_results_get_narrowing_hint(self):
        classification = classify("find createLogger")
        suggestions = suggest(classification, rank_nodes(_nodes(), classification), limit=3)
        assert len(suggestions) == 1
        assert "truncated" in suggestions[0]

    def test_low_score_without_entity(self):
        node = make_graph_node(NodeType.FILE, "a.ts", "a.ts")
        suggestions = suggest(classify("list files"), [RankedNode(node=node, score=0.05)])
        assert suggestions == ["Name the entity you are looking for, for example: who calls createLogger"]
