"""Tests for {{...}} reference resolution against an ExecutionContext."""

import pytest

from nexflow.graph.context import ExecutionContext, LoopState
from nexflow.graph.node import NodeResult, NodeStatus
from nexflow.graph.resolver import ReferenceResolver, get_nested, stringify


@pytest.fixture
def context():
    ctx = ExecutionContext.create("flow-1", "exec-1")
    ctx.set_node_output(
        "start",
        NodeResult(
            node_id="start",
            node_type="START",
            status=NodeStatus.SUCCESS,
            output={"body": {"user": {"email": "ada@example.com"}, "items": [1, 2]}},
        ),
    )
    fetch = NodeResult(
        node_id="n-42",
        node_type="NEXUS",
        status=NodeStatus.SUCCESS,
        success_output={"body": {"plan": "pro"}, "statusCode": 200},
    )
    ctx.set_node_output("n-42", fetch)
    ctx.set_node_alias("fetchUser", fetch)
    ctx.variables.update({"a": 2, "b": 3, "s1": "foo", "s2": "bar", "n": 42, "zero": 0})
    ctx.nex["order"] = {"lines": [{"sku": "A1"}, {"sku": "B2"}], "Total": 10}
    return ctx


@pytest.fixture
def resolver():
    return ReferenceResolver()


def test_numeric_addition(resolver, context):
    assert resolver.resolve("{{variables.a + variables.b}}", context) == "5"


def test_string_concatenation(resolver, context):
    assert resolver.resolve("{{variables.s1 + variables.s2}}", context) == "foobar"


@pytest.mark.parametrize(
    "template,expected",
    [
        ("{{variables.b - variables.a}}", "1"),
        ("{{variables.a * variables.b}}", "6"),
        ("{{variables.b / variables.a}}", "1.5"),
        ("{{variables.a / variables.zero}}", ""),
        ("{{variables.s1 * variables.a}}", ""),
    ],
)
def test_arithmetic(resolver, context, template, expected):
    assert resolver.resolve(template, context) == expected


def test_mixed_text_and_missing_reference(resolver, context):
    assert resolver.resolve("Hi {{variables.missing}}!", context) == "Hi !"
    assert resolver.resolve("no refs here", context) == "no refs here"
    assert resolver.resolve(None, context) is None


def test_node_paths_by_id_alias_and_start(resolver, context):
    assert resolver.resolve("{{nodes.n-42.successOutput.body.plan}}", context) == "pro"
    assert resolver.resolve("{{nodes.fetchUser.successOutput.statusCode}}", context) == "200"
    assert resolver.resolve("{{nodes.start.output.body.user.email}}", context) == "ada@example.com"
    assert resolver.resolve("{{input.nodes.start.output.body.user.email}}", context) == (
        "ada@example.com"
    )


def test_nex_paths_support_list_indices_and_case(resolver, context):
    assert resolver.resolve("{{nex.order.lines.1.sku}}", context) == "B2"
    assert resolver.resolve("{{nex.order.total}}", context) == ""
    assert resolver.resolve("{{nex.order.Total}}", context) == "10"


def test_meta_references(resolver, context):
    assert resolver.resolve("{{meta.flowId}}/{{meta.executionId}}", context) == "flow-1/exec-1"


def test_loop_references_need_loop_state(resolver, context):
    state = LoopState(loop_node_id="loop", index=2, accumulated=[{"v": 1}])
    assert resolver.resolve("{{loop.index}}", context, state) == "2"
    assert resolver.resolve("{{loop.accumulated}}", context, state) == '[{"v": 1}]'
    assert resolver.resolve("{{loop.index}}", context) == ""


def test_resolve_map_keeps_native_types(resolver, context):
    resolved = resolver.resolve_map(
        {
            "x": "{{variables.n}}",
            "user": "{{nodes.start.output.body.user}}",
            "text": "n={{variables.n}}",
            "missing": "{{variables.nope}}",
            "static": 7,
        },
        context,
    )

    assert resolved == {
        "x": 42,
        "user": {"email": "ada@example.com"},
        "text": "n=42",
        "missing": "",
        "static": 7,
    }


def test_resolve_to_object(resolver, context):
    assert resolver.resolve_to_object("nex.order.lines", context) == [{"sku": "A1"}, {"sku": "B2"}]
    assert resolver.resolve_to_object("{{variables.n}}", context) == 42
    assert resolver.resolve_to_object("", context) is None


def test_stringify_and_get_nested():
    assert stringify(True) == "true"
    assert stringify(None) == ""
    assert stringify({"a": 1}) == '{"a": 1}'
    assert get_nested({"a": [{"b": 1}]}, "a.0.b") == 1
    assert get_nested({"a": [1]}, "a.5") is None
    assert get_nested({"a": 1}, "a.b") is None
