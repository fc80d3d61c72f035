"""Tests for the AI node with a scripted LLM provider."""

import pytest

from nexflow.graph.context import ExecutionContext
from nexflow.graph.node import NodeResult, NodeSpec, NodeStatus, NodeType
from nexflow.llm import LLMCallResult, LLMCredentials, LLMProvider, LLMProviderName, LLMRequest
from nexflow.llm.litellm import litellm_model_name
from nexflow.nodes.ai import AiExecutor, extract_json, is_forbidden_path


class ScriptedProvider(LLMProvider):
    """Returns the queued replies in order and records every request."""

    def __init__(self, *replies: LLMCallResult):
        self.replies = list(replies)
        self.requests: list[LLMRequest] = []
        self.credentials: list[LLMCredentials] = []

    async def call(self, request: LLMRequest, credentials: LLMCredentials) -> LLMCallResult:
        self.requests.append(LLMRequest(**vars(request)))
        self.credentials.append(credentials)
        return self.replies.pop(0)


def reply(text: str) -> LLMCallResult:
    return LLMCallResult(success=True, raw_text=text, input_tokens=12, output_tokens=5, model="m-1")


CREDENTIALS = {"anthropic": LLMCredentials(api_key="sk-test")}


@pytest.fixture
def context():
    ctx = ExecutionContext.create("flow-1", "exec-1")
    ctx.set_node_output(
        "start",
        NodeResult(
            node_id="start",
            node_type="START",
            status=NodeStatus.SUCCESS,
            output={"body": {"ticket": "printer on fire"}},
        ),
    )
    ctx.nex["customer"] = {"name": "Ada", "tier": "gold"}
    return ctx


def ai_node(**config) -> NodeSpec:
    config.setdefault("prompt", "Classify {{ticket}}")
    return NodeSpec(id="ai", node_type=NodeType.AI, label="Classify", config=config)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ('{"a": 1}', {"a": 1}),
        ('```json\n{"a": 1}\n```', {"a": 1}),
        ('Sure! Here you go: {"a": [1, 2]} hope that helps', {"a": [1, 2]}),
        ("[1, 2, 3]", [1, 2, 3]),
        ("no json here", None),
        ("", None),
        ("{broken", None),
    ],
)
def test_extract_json(raw, expected):
    assert extract_json(raw) == expected


def test_forbidden_paths_are_case_insensitive():
    assert is_forbidden_path("nex.DBPassword")
    assert is_forbidden_path("input.nex.apikey.value")
    assert not is_forbidden_path("nex.customer.name")


def test_litellm_model_name():
    assert litellm_model_name(LLMProviderName.ANTHROPIC, "claude-3") == "anthropic/claude-3"
    assert litellm_model_name(LLMProviderName.OPENAI, "openai/gpt-4o") == "openai/gpt-4o"
    assert litellm_model_name(LLMProviderName.CUSTOM, None) is None


@pytest.mark.asyncio
async def test_success_output_and_prompt_construction(context):
    provider = ScriptedProvider(reply('{"category": "hardware"}'))
    node = ai_node(
        prompt="Classify {{ticket}} for {{nex.customer.name}}",
        inputBindings=[{"name": "ticket", "nexPath": "nodes.start.output.body.ticket"}],
        outputSchema={"category": "string"},
        maxTokens=200,
    )

    result = await AiExecutor(provider, CREDENTIALS).execute(node, context)

    assert result.status == NodeStatus.SUCCESS
    assert result.success_output == {
        "result": {"category": "hardware"},
        "model": "m-1",
        "inputTokens": 12,
        "outputTokens": 5,
        "provider": "anthropic",
        "rawResponse": '{"category": "hardware"}',
        "resolvedPrompt": "Classify printer on fire for Ada",
    }
    request = provider.requests[0]
    assert request.user_prompt == (
        "TASK:\nClassify printer on fire for Ada\n\n"
        'INPUTS:\n{"ticket": "printer on fire"}\n\n'
        "Respond with a valid JSON object only."
    )
    assert '{"category": "string"}' in request.system_prompt
    assert request.max_tokens == 200
    assert provider.credentials[0].api_key == "sk-test"


@pytest.mark.asyncio
async def test_non_json_reply_retried_once_with_nudge(context):
    provider = ScriptedProvider(reply("I think it is hardware."), reply('{"category": "hardware"}'))

    result = await AiExecutor(provider, CREDENTIALS).execute(ai_node(), context)

    assert result.status == NodeStatus.SUCCESS
    assert len(provider.requests) == 2
    assert provider.requests[1].user_prompt.endswith(
        "IMPORTANT: Your response must be valid JSON only. No explanation text."
    )


@pytest.mark.asyncio
async def test_still_not_json_after_retry_fails(context):
    provider = ScriptedProvider(reply("nope"), reply("still nope"))

    result = await AiExecutor(provider, CREDENTIALS).execute(ai_node(), context)

    assert result.status == NodeStatus.FAILURE
    assert "could not parse a valid JSON object" in result.error_message
    assert "still nope" in result.error_message


@pytest.mark.asyncio
async def test_nex_start_falls_back_to_start_node_output(context):
    provider = ScriptedProvider(reply("{}"))
    node = ai_node(prompt="Ticket: {{nex.start.body.ticket}} / {{variables.nothing}}")

    result = await AiExecutor(provider, CREDENTIALS).execute(node, context)

    assert result.success_output["resolvedPrompt"] == (
        "Ticket: printer on fire / [unresolved: variables.nothing]"
    )
    assert provider.requests[0].user_prompt.startswith("TASK:\nTicket: printer on fire")
    assert "INPUTS:" not in provider.requests[0].user_prompt


@pytest.mark.asyncio
async def test_forbidden_binding_rejected_before_call(context):
    provider = ScriptedProvider()
    node = ai_node(inputBindings=[{"name": "pw", "nexPath": "nex.dbPassword"}])

    result = await AiExecutor(provider, CREDENTIALS).execute(node, context)

    assert result.status == NodeStatus.FAILURE
    assert "forbidden path" in result.error_message
    assert provider.requests == []


@pytest.mark.asyncio
async def test_inputs_over_limit_fail(context):
    context.nex["blob"] = "x" * 200
    provider = ScriptedProvider()
    node = ai_node(inputBindings=[{"name": "blob", "nexPath": "nex.blob"}])

    result = await AiExecutor(provider, CREDENTIALS, max_input_chars=100).execute(node, context)

    assert result.status == NodeStatus.FAILURE
    assert "exceed maximum size (100 chars)" in result.error_message
    assert provider.requests == []


@pytest.mark.asyncio
async def test_missing_credentials(context):
    provider = ScriptedProvider()

    result = await AiExecutor(provider, {}).execute(ai_node(provider="openai"), context)

    assert result.status == NodeStatus.FAILURE
    assert "No API key configured for provider 'openai'" in result.error_message


@pytest.mark.asyncio
async def test_missing_prompt_and_unknown_provider(context):
    provider = ScriptedProvider()
    executor = AiExecutor(provider, CREDENTIALS)

    no_prompt = await executor.execute(ai_node(prompt="  "), context)
    unknown = await executor.execute(ai_node(provider="skynet"), context)

    assert no_prompt.error_message == "AI node has no prompt configured."
    assert unknown.error_message == "Unknown LLM provider: 'skynet'."


@pytest.mark.asyncio
async def test_llm_failure_is_node_failure(context):
    provider = ScriptedProvider(LLMCallResult.failed("rate limited"))

    result = await AiExecutor(provider, CREDENTIALS).execute(ai_node(), context)

    assert result.status == NodeStatus.FAILURE
    assert result.error_message == "LLM call failed: rate limited"
