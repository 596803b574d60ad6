# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for the conditional router
"""

from flowrunner.engine.graph import WorkflowGraph
from flowrunner.engine.router import BranchResults, handle_text, route
from tests.factories import make_edge, make_node


def _graph(nodes, edges):
    return WorkflowGraph(nodes, edges)


def test_unconditional_edges_always_valid():
    """Edges without a handle never gate a node"""
    graph = _graph([make_node("A"), make_node("B")], [make_edge("A", "B")])

    decision = route(graph.node("B"), graph, BranchResults())

    assert not decision.skip
    assert [e.source for e in decision.valid] == ["A"]


def test_if_else_true_branch():
    """Only the handle matching the recorded boolean is valid"""
    nodes = [make_node("if", "if_else"), make_node("yes"), make_node("no")]
    edges = [make_edge("if", "yes", "true"), make_edge("if", "no", "false")]
    graph = _graph(nodes, edges)
    branches = BranchResults()
    branches.record(graph.node("if"), {"condition": True, "input": {}})

    assert branches.if_else == {"if": True}
    assert not route(graph.node("yes"), graph, branches).skip
    assert route(graph.node("no"), graph, branches).skip


def test_if_else_false_branch():
    """A false outcome validates the false handle"""
    nodes = [make_node("if", "if_else"), make_node("yes"), make_node("no")]
    edges = [make_edge("if", "yes", "true"), make_edge("if", "no", "false")]
    graph = _graph(nodes, edges)
    branches = BranchResults()
    branches.record(graph.node("if"), {"condition": False, "input": {}})

    assert route(graph.node("yes"), graph, branches).skip
    assert not route(graph.node("no"), graph, branches).skip


def test_unrecorded_branch_is_invalid():
    """A branch node without an outcome validates nothing"""
    nodes = [make_node("if", "if_else"), make_node("yes")]
    graph = _graph(nodes, [make_edge("if", "yes", "true")])

    decision = route(graph.node("yes"), graph, BranchResults())

    assert decision.skip
    assert decision.valid == []


def test_switch_matches_case_value():
    """Only the edge whose handle equals the matched case is valid"""
    nodes = [make_node("sw", "switch"), make_node("a"), make_node("b")]
    edges = [make_edge("sw", "a", "a"), make_edge("sw", "b", "b")]
    graph = _graph(nodes, edges)
    branches = BranchResults()
    branches.record(graph.node("sw"), {"matchedCase": "a", "caseLabel": None, "input": {}})

    assert not route(graph.node("a"), graph, branches).skip
    assert route(graph.node("b"), graph, branches).skip


def test_switch_without_match_skips_every_case():
    """A null match leaves every tagged edge invalid"""
    nodes = [make_node("sw", "switch"), make_node("a")]
    graph = _graph(nodes, [make_edge("sw", "a", "a")])
    branches = BranchResults()
    branches.record(graph.node("sw"), {"matchedCase": None, "caseLabel": None, "input": {}})

    assert branches.switch == {"sw": None}
    assert route(graph.node("a"), graph, branches).skip


def test_switch_numeric_case_matches_text_handle():
    """Case values are compared the way handles are written"""
    nodes = [make_node("sw", "switch"), make_node("one")]
    graph = _graph(nodes, [make_edge("sw", "one", "1")])
    branches = BranchResults()
    branches.record(graph.node("sw"), {"matchedCase": 1, "input": {}})

    assert not route(graph.node("one"), graph, branches).skip
    assert handle_text(1.0) == "1"
    assert handle_text(True) == "true"


def test_tagged_edge_from_plain_node_is_invalid():
    """A handle on an edge from a non-branching node never validates"""
    nodes = [make_node("A"), make_node("B"), make_node("C")]
    edges = [make_edge("A", "C", "true"), make_edge("B", "C")]
    graph = _graph(nodes, edges)

    decision = route(graph.node("C"), graph, BranchResults())

    assert not decision.skip
    assert [e.source for e in decision.valid] == ["B"]


def test_mixed_inputs_run_with_valid_edges_only():
    """An unconditional edge keeps the node alive when its branch is dead"""
    nodes = [make_node("if", "if_else"), make_node("A"), make_node("join")]
    edges = [make_edge("if", "join", "true"), make_edge("A", "join")]
    graph = _graph(nodes, edges)
    branches = BranchResults()
    branches.record(graph.node("if"), {"condition": False, "input": {}})

    decision = route(graph.node("join"), graph, branches)

    assert not decision.skip
    assert [e.source for e in decision.valid] == ["A"]


def test_node_without_incoming_edges_runs():
    """Roots are never skipped"""
    graph = _graph([make_node("A")], [])

    decision = route(graph.node("A"), graph, BranchResults())

    assert not decision.skip
    assert decision.incoming == []


def test_record_ignores_non_envelope_outputs():
    """Outputs that are not branch envelopes record nothing"""
    branches = BranchResults()
    branches.record(make_node("if", "if_else"), "not a dict")
    branches.record(make_node("if2", "if_else"), {"condition": "yes"})
    branches.record(make_node("x", "noop"), {"condition": True})

    assert branches.if_else == {}
    assert branches.switch == {}
