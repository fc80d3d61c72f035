"""LiteLLM-backed provider: one interface for every supported vendor."""

import logging
from typing import Any

import litellm

from nexflow.llm.provider import (
    LLMCallResult,
    LLMCredentials,
    LLMProvider,
    LLMProviderName,
    LLMRequest,
)

logger = logging.getLogger(__name__)

DEFAULT_MODELS: dict[LLMProviderName, str] = {
    LLMProviderName.ANTHROPIC: "claude-haiku-4-5-20251001",
    LLMProviderName.OPENAI: "gpt-4o-mini",
    LLMProviderName.GEMINI: "gemini-2.0-flash",
    LLMProviderName.GROQ: "llama-3.3-70b-versatile",
    LLMProviderName.MISTRAL: "mistral-small-latest",
}

# Self-hosted endpoints are expected to speak the OpenAI chat API
_LITELLM_PREFIX: dict[LLMProviderName, str] = {
    LLMProviderName.ANTHROPIC: "anthropic",
    LLMProviderName.OPENAI: "openai",
    LLMProviderName.GEMINI: "gemini",
    LLMProviderName.GROQ: "groq",
    LLMProviderName.MISTRAL: "mistral",
    LLMProviderName.CUSTOM: "openai",
}


def litellm_model_name(provider: LLMProviderName, model: str | None) -> str | None:
    """Prefix the model for LiteLLM (claude-3 -> anthropic/claude-3). None when no model is known."""
    model = (model or "").strip() or DEFAULT_MODELS.get(provider)
    if not model:
        return None
    prefix = _LITELLM_PREFIX[provider]
    if model.startswith(f"{prefix}/"):
        return model
    return f"{prefix}/{model}"


class LiteLLMProvider(LLMProvider):
    """
    Calls any provider through `litellm.acompletion`.

    Examples:
        provider = LiteLLMProvider()
        result = await provider.call(
            LLMRequest(user_prompt="...", provider=LLMProviderName.OPENAI, model="gpt-4o"),
            LLMCredentials(api_key=os.environ["OPENAI_API_KEY"]),
        )
    """

    def __init__(self, timeout: float = 60.0, **kwargs: Any):
        self.timeout = timeout
        self.extra_kwargs = kwargs

    async def call(self, request: LLMRequest, credentials: LLMCredentials) -> LLMCallResult:
        model = litellm_model_name(request.provider, request.model)
        if model is None:
            return LLMCallResult.failed(f"No model configured for provider '{request.provider}'")
        if request.provider == LLMProviderName.CUSTOM and not credentials.api_base:
            return LLMCallResult.failed("Custom provider requires an endpoint (api_base)", model)

        messages: list[dict[str, str]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.user_prompt})

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "api_key": credentials.api_key,
            "timeout": self.timeout,
            **self.extra_kwargs,
        }
        if credentials.api_base:
            kwargs["api_base"] = credentials.api_base

        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            logger.error(f"LLM call to {model} failed: {e}")
            return LLMCallResult.failed(str(e) or type(e).__name__, model)

        choices = getattr(response, "choices", None) or []
        if not choices:
            return LLMCallResult.failed("LLM returned no choices", model)
        content = choices[0].message.content or ""
        usage = getattr(response, "usage", None)

        return LLMCallResult(
            success=True,
            raw_text=content,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            model=getattr(response, "model", None) or model,
        )
