"""Structural validation of flow graphs.

A runnable flow has exactly one trigger node, every node reachable from it,
no dangling edges, and no cycle other than one closed through a Loop node's
body edge. Per-kind edge rules are checked as well so the scheduler can rely
on them while walking the graph.
"""

from __future__ import annotations

from collections import deque
from typing import Dict, List, Set

from . import conditions
from .constants import DONE_LABEL
from .contracts import Edge, Flow, NodeKind
from .errors import ValidationError


def split_fanout_edges(flow: Flow, node_id: str) -> tuple[List[Edge], List[Edge]]:
    """Split a Parallel/Loop node's outgoing edges into ``(branches, done)``."""
    branches: List[Edge] = []
    done: List[Edge] = []
    for edge in flow.outgoing(node_id):
        if edge.condition_label == DONE_LABEL:
            done.append(edge)
        else:
            branches.append(edge)
    return branches, done


def _check_node_edges(flow: Flow, problems: List[str]) -> None:
    for node in flow.nodes:
        outgoing = flow.outgoing(node.id)
        kind = node.kind

        if kind is NodeKind.TRIGGER:
            if flow.incoming(node.id):
                problems.append(f"Trigger node {node.id} has incoming edges")
            if len(outgoing) > 1:
                problems.append(f"Trigger node {node.id} has more than one outgoing edge")
        elif kind is NodeKind.ACTION:
            if len(outgoing) > 1:
                problems.append(f"Action node {node.id} has more than one outgoing edge")
        elif kind is NodeKind.TERMINAL:
            if outgoing:
                problems.append(f"Terminal node {node.id} has outgoing edges")
        elif kind is NodeKind.CONDITION:
            _check_condition(flow, node.id, problems)
        elif kind is NodeKind.PARALLEL:
            branches, done = split_fanout_edges(flow, node.id)
            if not branches:
                problems.append(f"Parallel node {node.id} has no branches")
            if len(done) > 1:
                problems.append(f"Parallel node {node.id} has more than one '{DONE_LABEL}' edge")
        elif kind is NodeKind.LOOP:
            branches, done = split_fanout_edges(flow, node.id)
            if len(branches) != 1:
                problems.append(f"Loop node {node.id} must have exactly one body edge")
            if len(done) > 1:
                problems.append(f"Loop node {node.id} has more than one '{DONE_LABEL}' edge")
            if "items" not in node.config and "items_path" not in node.config:
                problems.append(f"Loop node {node.id} needs 'items' or 'items_path'")


def _check_condition(flow: Flow, node_id: str, problems: List[str]) -> None:
    node = flow.get_node(node_id)
    outgoing = flow.outgoing(node_id)
    if not outgoing:
        problems.append(f"Condition node {node_id} has no outgoing edges")
        return

    labels = [edge.condition_label for edge in outgoing]
    if any(label is None for label in labels):
        problems.append(f"Condition node {node_id} has an unlabelled outgoing edge")
    present = [label for label in labels if label is not None]
    if len(present) != len(set(present)):
        problems.append(f"Condition node {node_id} has duplicate edge labels")

    reachable = conditions.possible_labels(node.config)
    for label in sorted(set(present) - reachable):
        problems.append(f"Condition node {node_id} edge label '{label}' can never be selected")
    for operator in sorted(conditions.unknown_operators(node.config)):
        problems.append(f"Condition node {node_id} uses unknown operator '{operator}'")


def _loop_body_edges(flow: Flow) -> Set[tuple[str, str]]:
    body: Set[tuple[str, str]] = set()
    for node in flow.nodes:
        if node.kind is NodeKind.LOOP:
            branches, _ = split_fanout_edges(flow, node.id)
            body.update((edge.from_node_id, edge.to_node_id) for edge in branches)
    return body


def _find_cycle(flow: Flow) -> List[str]:
    """Return node ids of a cycle not closed through a loop body edge, if any."""
    body = _loop_body_edges(flow)
    graph: Dict[str, List[str]] = {node.id: [] for node in flow.nodes}
    in_degree: Dict[str, int] = {node.id: 0 for node in flow.nodes}
    for edge in flow.edges:
        if (edge.from_node_id, edge.to_node_id) in body:
            continue
        graph[edge.from_node_id].append(edge.to_node_id)
        in_degree[edge.to_node_id] += 1

    queue = deque(node_id for node_id, degree in in_degree.items() if degree == 0)
    visited = 0
    while queue:
        node_id = queue.popleft()
        visited += 1
        for neighbor in graph[node_id]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    if visited == len(flow.nodes):
        return []
    return sorted(node_id for node_id, degree in in_degree.items() if degree > 0)


def _reachable_from(flow: Flow, start: str) -> Set[str]:
    seen = {start}
    queue = deque([start])
    while queue:
        node_id = queue.popleft()
        for edge in flow.outgoing(node_id):
            if edge.to_node_id not in seen:
                seen.add(edge.to_node_id)
                queue.append(edge.to_node_id)
    return seen


def validate_flow(flow: Flow) -> None:
    """Validate ``flow`` and raise :class:`ValidationError` listing every problem."""
    problems: List[str] = []

    if not flow.nodes:
        raise ValidationError(flow.id, ["Flow must have at least one node"])

    node_ids = [node.id for node in flow.nodes]
    duplicates = sorted({nid for nid in node_ids if node_ids.count(nid) > 1})
    if duplicates:
        problems.append(f"Duplicate node ids: {', '.join(duplicates)}")

    known = set(node_ids)
    for edge in flow.edges:
        for endpoint in (edge.from_node_id, edge.to_node_id):
            if endpoint not in known:
                problems.append(
                    f"Edge {edge.from_node_id}->{edge.to_node_id} references missing node {endpoint}"
                )
        if edge.from_node_id == edge.to_node_id:
            problems.append(f"Self-loop on node {edge.from_node_id}")

    # Graph walks below assume well-formed endpoints.
    if problems:
        raise ValidationError(flow.id, problems)

    triggers = flow.trigger_nodes()
    if len(triggers) != 1:
        problems.append(f"Flow must have exactly one trigger node, found {len(triggers)}")
    else:
        unreachable = known - _reachable_from(flow, triggers[0].id)
        if unreachable:
            problems.append(
                f"Nodes unreachable from trigger {triggers[0].id}: {', '.join(sorted(unreachable))}"
            )

    cycle = _find_cycle(flow)
    if cycle:
        problems.append(f"Cycle outside a loop body involving: {', '.join(cycle)}")

    _check_node_edges(flow, problems)

    if problems:
        raise ValidationError(flow.id, problems)
