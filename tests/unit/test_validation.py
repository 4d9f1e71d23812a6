"""Tests for structural flow validation."""

import pytest

from flowengine.contracts import Edge, Flow, Node
from flowengine.errors import ValidationError
from flowengine.validation import split_fanout_edges, validate_flow


def _flow(nodes, edges, flow_id="f"):
    return Flow(
        id=flow_id,
        nodes=[Node(id=node_id, type=node_type, config=config) for node_id, node_type, config in nodes],
        edges=[Edge(from_node_id=a, to_node_id=b, condition_label=label) for a, b, label in edges],
    )


def _problems(flow):
    with pytest.raises(ValidationError) as exc_info:
        validate_flow(flow)
    return " | ".join(exc_info.value.problems)


def test_linear_flow_is_valid():
    flow = _flow(
        [("t", "trigger", {}), ("a", "classify", {}), ("z", "terminal", {})],
        [("t", "a", None), ("a", "z", None)],
    )
    validate_flow(flow)


def test_empty_flow_is_rejected():
    assert "at least one node" in _problems(Flow(id="empty"))


def test_dangling_edge_is_reported():
    flow = _flow([("t", "trigger", {})], [("t", "ghost", None)])
    assert "missing node ghost" in _problems(flow)


def test_exactly_one_trigger_required():
    flow = _flow([("t1", "trigger", {}), ("t2", "trigger", {})], [])
    assert "exactly one trigger" in _problems(flow)


def test_unreachable_nodes_are_reported():
    flow = _flow([("t", "trigger", {}), ("a", "noop", {}), ("b", "noop", {})], [("t", "a", None)])
    assert "unreachable from trigger t: b" in _problems(flow)


def test_cycle_outside_loop_is_rejected():
    flow = _flow(
        [("t", "trigger", {}), ("a", "noop", {}), ("b", "noop", {})],
        [("t", "a", None), ("a", "b", None), ("b", "a", None)],
    )
    assert "Cycle" in _problems(flow)


def test_loop_body_may_return_to_loop_node():
    flow = _flow(
        [("t", "trigger", {}), ("l", "loop", {"items_path": "items"}), ("a", "noop", {})],
        [("t", "l", None), ("l", "a", None), ("a", "l", None)],
    )
    validate_flow(flow)


def test_loop_needs_items_and_single_body():
    flow = _flow(
        [("t", "trigger", {}), ("l", "loop", {}), ("a", "noop", {}), ("b", "noop", {})],
        [("t", "l", None), ("l", "a", None), ("l", "b", None)],
    )
    problems = _problems(flow)
    assert "exactly one body edge" in problems
    assert "needs 'items' or 'items_path'" in problems


def test_condition_labels_must_be_selectable():
    flow = _flow(
        [
            ("t", "trigger", {}),
            ("c", "condition", {"rules": [{"label": "high", "field": "score", "operator": "gt", "value": 5}]}),
            ("a", "noop", {}),
            ("b", "noop", {}),
        ],
        [("t", "c", None), ("c", "a", "high"), ("c", "b", "medium")],
    )
    assert "'medium' can never be selected" in _problems(flow)


def test_condition_unknown_operator_and_unlabelled_edge():
    flow = _flow(
        [("t", "trigger", {}), ("c", "condition", {"field": "x", "operator": "approx"}), ("a", "noop", {})],
        [("t", "c", None), ("c", "a", None)],
    )
    problems = _problems(flow)
    assert "unknown operator 'approx'" in problems
    assert "unlabelled outgoing edge" in problems


def test_action_with_two_outgoing_edges_is_rejected():
    flow = _flow(
        [("t", "trigger", {}), ("a", "noop", {}), ("b", "noop", {}), ("c", "noop", {})],
        [("t", "a", None), ("a", "b", None), ("a", "c", None)],
    )
    assert "Action node a has more than one outgoing edge" in _problems(flow)


def test_split_fanout_edges():
    flow = _flow(
        [("t", "trigger", {}), ("p", "parallel", {}), ("a", "noop", {}), ("b", "noop", {}), ("z", "terminal", {})],
        [("t", "p", None), ("p", "a", None), ("p", "b", None), ("p", "z", "done")],
    )
    validate_flow(flow)
    branches, done = split_fanout_edges(flow, "p")
    assert [e.to_node_id for e in branches] == ["a", "b"]
    assert [e.to_node_id for e in done] == ["z"]
