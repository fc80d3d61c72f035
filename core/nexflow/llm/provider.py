"""LLM Provider abstraction used by AI nodes."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import StrEnum


class LLMProviderName(StrEnum):
    """Providers an AI node can name in its `provider` field."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GEMINI = "gemini"
    GROQ = "groq"
    MISTRAL = "mistral"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: str | None) -> "LLMProviderName | None":
        try:
            return cls((value or "anthropic").strip().lower())
        except ValueError:
            return None


@dataclass
class LLMCredentials:
    """API key for one provider, plus an endpoint for self-hosted models."""

    api_key: str
    api_base: str | None = None


@dataclass
class LLMRequest:
    """One single-turn completion request."""

    user_prompt: str
    system_prompt: str = ""
    provider: LLMProviderName = LLMProviderName.ANTHROPIC
    model: str | None = None
    max_tokens: int = 1000
    temperature: float = 0.0


@dataclass
class LLMCallResult:
    """Outcome of a call. `raw_text` on success, `error_message` otherwise."""

    success: bool
    raw_text: str | None = None
    error_message: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    model: str | None = None

    @classmethod
    def failed(cls, error_message: str, model: str | None = None) -> "LLMCallResult":
        return cls(success=False, error_message=error_message, model=model)


class LLMProvider(ABC):
    """
    Abstract LLM provider - plug in any LLM backend.

    Implementations should handle:
    - Request/response formatting
    - Token counting
    - Error handling: failures come back as LLMCallResult(success=False),
      they are never raised
    """

    @abstractmethod
    async def call(self, request: LLMRequest, credentials: LLMCredentials) -> LLMCallResult:
        """
        Generate a completion.

        Args:
            request: Prompts and sampling settings
            credentials: Key (and optional endpoint) for request.provider

        Returns:
            LLMCallResult with the raw text and token usage
        """
        pass
