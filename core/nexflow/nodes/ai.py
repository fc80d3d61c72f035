"""
AI executor - One LLM call that turns flow data into a JSON result.

Config:
    {
        "provider": "anthropic",
        "model": "claude-haiku-4-5-20251001",
        "prompt": "Classify the ticket: {{ticket}}",
        "outputSchema": {"category": "string"},
        "maxTokens": 1000,
        "temperature": 0.0,
        "inputBindings": [{"name": "ticket", "nexPath": "nex.ticket.body"}]
    }

Only data named by input bindings or prompt references reaches the model.
Bindings that look like credentials are rejected before any call.
"""

import json
import logging
import math
import re
from collections.abc import Mapping
from typing import Any

from nexflow.graph.context import ExecutionContext
from nexflow.graph.node import NodeResult, NodeSpec, NodeStatus, NodeType
from nexflow.graph.resolver import REFERENCE_PATTERN, ReferenceResolver, is_number
from nexflow.llm import LiteLLMProvider, LLMCredentials, LLMProvider, LLMProviderName, LLMRequest
from nexflow.nodes.base import ResolvingExecutor

logger = logging.getLogger(__name__)

DEFAULT_MAX_INPUT_CHARS = 12_000
DEFAULT_MAX_TOKENS = 1000

FORBIDDEN_BINDING_PATHS = (
    "nex.dbPassword",
    "nex.password",
    "nex.apiKey",
    "nex.authToken",
    "nex.secret",
    "nex.credentials",
)

JSON_NUDGE = "\n\nIMPORTANT: Your response must be valid JSON only. No explanation text."

SYSTEM_PROMPT = (
    "You are a data processing engine embedded inside an automation workflow.\n"
    "You will receive a task description and a JSON object called INPUTS.\n"
    "You must ONLY work with the data provided in INPUTS.\n"
    "You must return ONLY a valid JSON object, with no explanation, no markdown and no code fences.\n"
    "Do not attempt to access external systems, databases, credentials, or files.\n"
    "Do not include any text before or after the JSON object.\n"
)

_CODE_FENCE_OPEN = re.compile(r"^```[a-zA-Z]*\n?")
_CODE_FENCE_CLOSE = re.compile(r"```$")


def is_forbidden_path(path: str) -> bool:
    lowered = path.lower()
    return any(forbidden.lower() in lowered for forbidden in FORBIDDEN_BINDING_PATHS)


def normalize_nex_path(path: str | None) -> str:
    """input.nex.start.body.a -> nex.start.body.a"""
    if not path:
        return ""
    if path.startswith("input."):
        path = path[len("input.") :]
    return path.strip()


def build_system_prompt(output_schema: Any = None) -> str:
    prompt = SYSTEM_PROMPT
    if isinstance(output_schema, (dict, list)):
        output_schema = json.dumps(output_schema)
    if isinstance(output_schema, str) and output_schema.strip():
        prompt += f"\nYour output JSON must match this schema:\n{output_schema}\n"
    return prompt


def build_user_prompt(task_prompt: str, inputs_json: str, has_inputs: bool) -> str:
    if not has_inputs or inputs_json == "{}":
        return f"TASK:\n{task_prompt}\n\nRespond with a valid JSON object only."
    return f"TASK:\n{task_prompt}\n\nINPUTS:\n{inputs_json}\n\nRespond with a valid JSON object only."


def extract_json(raw: str | None) -> Any:
    """
    Pull the first JSON object or array out of a model reply.

    Code fences are stripped and parsing starts at the first '{' or '['.
    Text after the JSON value is ignored. Returns None when nothing parses.
    """
    if raw is None or not raw.strip():
        return None

    cleaned = raw.strip()
    if cleaned.startswith("```"):
        cleaned = _CODE_FENCE_CLOSE.sub("", _CODE_FENCE_OPEN.sub("", cleaned)).strip()

    starts = [i for i in (cleaned.find("{"), cleaned.find("[")) if i >= 0]
    if not starts:
        return None

    try:
        value, _ = json.JSONDecoder().raw_decode(cleaned[min(starts) :])
    except json.JSONDecodeError as e:
        logger.debug(f"JSON parse of model reply failed: {e}")
        return None
    return value


def _readable(value: Any) -> str:
    """Inline form of a value inside prompt text."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str) or is_number(value):
        return str(value)
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)


def _truncate(text: str | None, limit: int) -> str:
    if text is None:
        return "null"
    return text[:limit] + "..." if len(text) > limit else text


class AiExecutor(ResolvingExecutor):
    """
    Resolves inputs and prompt, calls the model, parses JSON from the reply.

    A reply that is not JSON gets exactly one more call with a JSON-only nudge.
    SUCCESS output:
        {result, model, inputTokens, outputTokens, provider, rawResponse, resolvedPrompt}
    """

    def __init__(
        self,
        provider: LLMProvider | None = None,
        credentials: Mapping[str, LLMCredentials] | None = None,
        resolver: ReferenceResolver | None = None,
        max_input_chars: int = DEFAULT_MAX_INPUT_CHARS,
        default_model: str | None = None,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
        default_temperature: float = 0.0,
    ):
        super().__init__(resolver)
        self.provider = provider or LiteLLMProvider()
        self.credentials = dict(credentials or {})
        self.max_input_chars = max_input_chars
        self.default_model = default_model
        self.default_max_tokens = default_max_tokens
        self.default_temperature = default_temperature

    def supported_type(self) -> NodeType:
        return NodeType.AI

    async def execute(self, node: NodeSpec, context: ExecutionContext) -> NodeResult:
        config = node.config
        prompt = config.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            return self._fail(node, "AI node has no prompt configured.")

        provider_name = LLMProviderName.parse(config.get("provider"))
        if provider_name is None:
            return self._fail(node, f"Unknown LLM provider: '{config.get('provider')}'.")

        credentials = self.credentials.get(provider_name.value)
        if credentials is None or not credentials.api_key:
            return self._fail(
                node,
                f"No API key configured for provider '{provider_name}'. "
                "Add the key to the nexflow configuration or environment.",
            )

        inputs: dict[str, Any] = {}
        for binding in config.get("inputBindings") or []:
            if not isinstance(binding, dict):
                continue
            name = str(binding.get("name") or "").strip()
            nex_path = str(binding.get("nexPath") or "").strip()
            if not name or not nex_path:
                continue
            if is_forbidden_path(nex_path):
                return self._fail(
                    node,
                    f"AI node input binding '{name}' references a forbidden path. "
                    "Credentials cannot be passed to AI nodes.",
                )
            resolved = self.resolver.resolve_to_object(normalize_nex_path(nex_path), context)
            inputs[name] = resolved if resolved is not None else ""

        try:
            inputs_json = json.dumps(inputs, default=str)
        except (TypeError, ValueError) as e:
            return self._fail(node, f"Failed to serialise AI node inputs: {e}")
        if len(inputs_json) > self.max_input_chars:
            return self._fail(
                node,
                f"AI node inputs exceed maximum size ({self.max_input_chars} chars). "
                "Reduce the data passed via input bindings.",
            )

        resolved_prompt = self._resolve_prompt(prompt, inputs, context)
        if len(resolved_prompt) > self.max_input_chars:
            return self._fail(
                node,
                f"Resolved prompt is too large ({len(resolved_prompt)} chars). Reduce referenced data.",
            )

        user_prompt = build_user_prompt(resolved_prompt, inputs_json, bool(inputs))
        request = LLMRequest(
            user_prompt=user_prompt,
            system_prompt=build_system_prompt(config.get("outputSchema")),
            provider=provider_name,
            model=config.get("model") or self.default_model,
            max_tokens=self._int_setting(config.get("maxTokens"), self.default_max_tokens),
            temperature=self._float_setting(config.get("temperature"), self.default_temperature),
        )

        response = await self.provider.call(request, credentials)
        if not response.success:
            return self._fail(
                node,
                f"LLM call failed: {response.error_message}",
                input={"provider": provider_name.value},
            )

        parsed = extract_json(response.raw_text)
        if parsed is None:
            logger.warning(f"AI node {node.display_name}: reply was not JSON, retrying with JSON nudge")
            request.user_prompt = user_prompt + JSON_NUDGE
            response = await self.provider.call(request, credentials)
            if not response.success:
                return self._fail(node, f"LLM retry failed: {response.error_message}")
            parsed = extract_json(response.raw_text)

        if parsed is None:
            return self._fail(
                node,
                "AI node could not parse a valid JSON object from the model response. "
                f"Raw: {_truncate(response.raw_text, 300)}",
            )

        logger.info(
            f"AI node {node.display_name} completed. "
            f"Tokens: {response.input_tokens}in/{response.output_tokens}out. Provider: {provider_name}",
            extra={"model": response.model},
        )
        return self._result(
            node,
            NodeStatus.SUCCESS,
            input={"provider": provider_name.value, "prompt": prompt},
            success_output={
                "result": parsed,
                "model": response.model,
                "inputTokens": response.input_tokens,
                "outputTokens": response.output_tokens,
                "provider": provider_name.value,
                "rawResponse": response.raw_text,
                "resolvedPrompt": resolved_prompt,
            },
        )

    def _resolve_prompt(self, prompt: str, inputs: dict[str, Any], context: ExecutionContext) -> str:
        """Binding names win; anything else is resolved as a path against the context."""
        if "{{" not in prompt:
            return prompt

        def _replace(match: re.Match) -> str:
            token = match.group(1).strip()
            if token in inputs:
                return _readable(inputs[token])

            path = normalize_nex_path(token)
            value = self.resolver.resolve_to_object(path, context)
            if value is None and path.startswith("nex.start."):
                fallback = "nodes.start.output." + path[len("nex.start.") :]
                value = self.resolver.resolve_to_object(fallback, context)
            if value is None:
                logger.warning(f"Could not resolve prompt reference {{{{{token}}}}}, leaving placeholder")
                return f"[unresolved: {token}]"
            return _readable(value)

        return REFERENCE_PATTERN.sub(_replace, prompt)

    def _fail(self, node: NodeSpec, message: str, input: dict[str, Any] | None = None) -> NodeResult:
        logger.error(f"AI node {node.display_name} failed: {message}")
        return NodeResult.failed(node, message, input=input)

    @staticmethod
    def _int_setting(value: Any, default: int) -> int:
        if is_number(value) and math.isfinite(value) and value > 0:
            return int(value)
        return default

    @staticmethod
    def _float_setting(value: Any, default: float) -> float:
        if is_number(value) and math.isfinite(value):
            return float(value)
        return default
