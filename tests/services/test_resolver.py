"""Tests for dependency resolution."""

import itertools
import logging

from services.resolver import resolve
from tests.factories import DecisionFactory


def counter_ids():
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


def edges_by_title(graph) -> set[tuple[str, str]]:
    """Edges with durable ids mapped back to titles, for order-free comparison."""
    title_of = {d.id: d.decision.title for d in graph.decisions}
    result = set()
    for edge in graph.edges:
        target = edge.to_decision_ref
        if target.startswith("decision:"):
            target = title_of.get(target.removeprefix("decision:"), target)
        result.add((title_of[edge.from_decision_id], target))
    return result


class TestResolve:
    def test_temp_id_resolves_to_durable_reference(self):
        graph = resolve(
            [
                DecisionFactory.extracted("decision_1", "A"),
                DecisionFactory.extracted("decision_2", "B", depends_on=["decision_1"]),
            ],
            id_factory=counter_ids(),
        )

        assert [d.id for d in graph.decisions] == ["id-1", "id-2"]
        assert len(graph.edges) == 1
        assert graph.edges[0].from_decision_id == "id-2"
        assert graph.edges[0].to_decision_ref == "decision:id-1"
        assert graph.unresolved_refs == []

    def test_forward_reference_resolves(self):
        graph = resolve(
            [
                DecisionFactory.extracted("decision_1", "A", depends_on=["decision_2"]),
                DecisionFactory.extracted("decision_2", "B"),
            ],
            id_factory=counter_ids(),
        )
        assert graph.edges[0].to_decision_ref == "decision:id-2"

    def test_unknown_reference_passes_through(self, caplog):
        with caplog.at_level(logging.WARNING):
            graph = resolve(
                [DecisionFactory.extracted("decision_1", "A", depends_on=["decision_99"])],
                id_factory=counter_ids(),
            )

        assert graph.edges[0].to_decision_ref == "decision_99"
        assert graph.unresolved_refs == ["decision_99"]
        assert "decision_99" in caplog.text

    def test_external_reference_passes_through_silently(self):
        ref = "conversation:abc/decision:def"
        graph = resolve(
            [DecisionFactory.extracted("decision_1", "A", depends_on=[ref])],
            id_factory=counter_ids(),
        )

        assert graph.edges[0].to_decision_ref == ref
        assert graph.unresolved_refs == []

    def test_self_reference_and_cycles_are_kept(self):
        graph = resolve(
            [
                DecisionFactory.extracted("a", "A", depends_on=["a", "b"]),
                DecisionFactory.extracted("b", "B", depends_on=["a"]),
            ],
            id_factory=counter_ids(),
        )

        assert edges_by_title(graph) == {("A", "A"), ("A", "B"), ("B", "A")}

    def test_one_id_per_decision(self):
        graph = resolve(
            [DecisionFactory.extracted(f"d{i}", f"T{i}") for i in range(5)]
        )
        assert len({d.id for d in graph.decisions}) == 5

    def test_every_edge_originates_in_batch(self):
        graph = resolve(
            [
                DecisionFactory.extracted("a", "A", depends_on=["b", "zzz"]),
                DecisionFactory.extracted("b", "B", depends_on=["a"]),
            ]
        )
        ids = {d.id for d in graph.decisions}
        assert all(e.from_decision_id in ids for e in graph.edges)

    def test_resolution_is_order_independent(self):
        decisions = [
            DecisionFactory.extracted("a", "A", depends_on=["c"]),
            DecisionFactory.extracted("b", "B", depends_on=["a", "missing"]),
            DecisionFactory.extracted("c", "C", depends_on=["b"]),
        ]

        expected = edges_by_title(resolve(decisions))
        for permutation in itertools.permutations(decisions):
            assert edges_by_title(resolve(list(permutation))) == expected

    def test_empty_input(self):
        graph = resolve([])
        assert graph.decisions == []
        assert graph.edges == []
