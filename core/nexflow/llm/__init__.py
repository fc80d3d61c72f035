"""LLM provider abstraction."""

from nexflow.llm.litellm import LiteLLMProvider
from nexflow.llm.provider import (
    LLMCallResult,
    LLMCredentials,
    LLMProvider,
    LLMProviderName,
    LLMRequest,
)

__all__ = [
    "LLMCallResult",
    "LLMCredentials",
    "LLMProvider",
    "LLMProviderName",
    "LLMRequest",
    "LiteLLMProvider",
]
