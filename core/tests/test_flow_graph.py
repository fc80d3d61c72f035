"""Tests for flow graph loading and structural validation."""

import json

import pytest

from nexflow.errors import InvalidFlowGraphError
from nexflow.graph.edge import EdgeCondition, FlowGraph, load_flow_graph
from nexflow.graph.node import NodeType

CAMEL_GRAPH = {
    "id": "orders",
    "name": "Orders",
    "maxSteps": 50,
    "nodes": [
        {"id": "start", "nodeType": "START", "label": "Start"},
        {"id": "check", "type": "decision", "config": {"left": "1", "operator": "EQ", "right": "1"}},
        {"id": "ok", "nodeType": "SUCCESS"},
        {"id": "no", "nodeType": "FAILURE"},
    ],
    "edges": [
        {"sourceNodeId": "start", "targetNodeId": "check"},
        {"sourceNodeId": "check", "targetNodeId": "ok", "conditionType": "success"},
        {"source": "check", "target": "no", "condition": "FAILURE"},
    ],
}


def test_camel_case_graph_is_accepted():
    graph = FlowGraph.model_validate(CAMEL_GRAPH)

    assert graph.max_steps == 50
    assert graph.get_node("check").node_type == NodeType.DECISION
    assert [e.condition for e in graph.edges] == [
        EdgeCondition.DEFAULT,
        EdgeCondition.SUCCESS,
        EdgeCondition.FAILURE,
    ]
    assert graph.find_start_node().id == "start"
    assert graph.validate() == []


def test_validate_reports_structural_problems():
    graph = FlowGraph.model_validate(
        {
            "id": "broken",
            "nodes": [
                {"id": "s1", "nodeType": "START"},
                {"id": "s2", "nodeType": "START"},
                {"id": "loop", "nodeType": "LOOP", "label": "Pages"},
                {"id": "loop", "nodeType": "MAPPER"},
                {"id": "kafka", "nodeType": "KAFKA_PRODUCER"},
            ],
            "edges": [
                {"source": "s1", "target": "ghost"},
                {"source": "s2", "target": "loop", "conditionType": "CUSTOM", "conditionExpr": "x > 1"},
            ],
        }
    )

    problems = graph.validate({NodeType.START, NodeType.LOOP, NodeType.MAPPER})

    assert "Duplicate node id: 'loop'" in problems
    assert "Flow has 2 START nodes; only the first is used" in problems
    assert "Edge 's1->ghost' references missing target 'ghost'" in problems
    assert "Edge 's2->loop' uses CUSTOM condition, which is never followed" in problems
    assert "LOOP node 'Pages' has no outgoing CONTINUE edge" in problems
    assert any("KAFKA_PRODUCER" in p and "no registered executor" in p for p in problems)


def test_load_flow_graph_defaults_id_to_file_stem(tmp_path):
    path = tmp_path / "checkout.json"
    path.write_text(json.dumps({"nodes": [{"id": "start", "nodeType": "START"}], "edges": []}))

    graph = load_flow_graph(path)

    assert graph.id == "checkout"
    assert len(graph.nodes) == 1


@pytest.mark.parametrize(
    "content",
    ["{not json", json.dumps({"nodes": [{"id": "x", "nodeType": "TELEPORT"}]})],
)
def test_load_flow_graph_rejects_bad_documents(tmp_path, content):
    path = tmp_path / "bad.json"
    path.write_text(content)

    with pytest.raises(InvalidFlowGraphError):
        load_flow_graph(path)


def test_load_flow_graph_missing_file(tmp_path):
    with pytest.raises(InvalidFlowGraphError, match="Cannot read flow graph"):
        load_flow_graph(tmp_path / "nope.json")


def test_loop_body_follows_continue_edges_back_to_loop():
    graph = FlowGraph.model_validate(
        {
            "id": "paging",
            "nodes": [
                {"id": "start", "nodeType": "START"},
                {"id": "fetch", "nodeType": "NEXUS"},
                {"id": "parse", "nodeType": "SCRIPT"},
                {"id": "loop", "nodeType": "LOOP"},
                {"id": "done", "nodeType": "SUCCESS"},
            ],
            "edges": [
                {"sourceNodeId": "start", "targetNodeId": "fetch"},
                {"sourceNodeId": "fetch", "targetNodeId": "parse"},
                {"sourceNodeId": "parse", "targetNodeId": "loop"},
                {"sourceNodeId": "loop", "targetNodeId": "fetch", "conditionType": "CONTINUE"},
                {"sourceNodeId": "loop", "targetNodeId": "done", "conditionType": "SUCCESS"},
            ],
        }
    )

    assert graph.loop_body("loop") == ["fetch", "parse"]
    assert graph.loop_body("fetch") == []
