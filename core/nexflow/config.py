"""Shared nexflow configuration utilities.

Centralises reading of ~/.nexflow/configuration.json so that the CLI, the
runtime and embedding applications share one implementation. The file is
optional; every setting has a default.

Example configuration.json:
    {
        "engine": {"max_steps": 2000, "script_timeout_seconds": 5},
        "llm": {"provider": "anthropic", "model": "claude-haiku-4-5-20251001",
                "api_key_env_var": "ANTHROPIC_API_KEY", "max_tokens": 1000}
    }
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from nexflow.llm import LLMCredentials, LLMProviderName

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

NEXFLOW_CONFIG_FILE = Path.home() / ".nexflow" / "configuration.json"


def config_path() -> Path:
    override = os.environ.get("NEXFLOW_CONFIG")
    return Path(override) if override else NEXFLOW_CONFIG_FILE


def get_nexflow_config() -> dict[str, Any]:
    """Load nexflow configuration from ~/.nexflow/configuration.json."""
    path = config_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def _section(name: str) -> dict[str, Any]:
    value = get_nexflow_config().get(name, {})
    return value if isinstance(value, dict) else {}


def _engine_setting(key: str, default: Any) -> Any:
    return _section("engine").get(key, default)


def get_llm_model() -> str | None:
    """Return the configured default model name, if any."""
    return _section("llm").get("model")


def get_llm_credentials() -> dict[str, LLMCredentials]:
    """
    API keys by provider name.

    The configured provider reads its key from `llm.api_key_env_var`. Every
    provider also picks up <PROVIDER>_API_KEY from the environment
    (ANTHROPIC_API_KEY, OPENAI_API_KEY, ...).
    """
    credentials: dict[str, LLMCredentials] = {}
    for provider in LLMProviderName:
        key = os.environ.get(f"{provider.value.upper()}_API_KEY")
        if key:
            credentials[provider.value] = LLMCredentials(api_key=key)

    llm = _section("llm")
    api_key_env_var = llm.get("api_key_env_var")
    provider = LLMProviderName.parse(llm.get("provider"))
    if api_key_env_var and provider is not None:
        key = os.environ.get(api_key_env_var)
        if key:
            credentials[provider.value] = LLMCredentials(api_key=key, api_base=llm.get("api_base"))
    return credentials


# ---------------------------------------------------------------------------
# EngineConfig
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Engine and executor settings loaded from ~/.nexflow/configuration.json."""

    max_steps: int = field(default_factory=lambda: _engine_setting("max_steps", 5000))
    script_timeout_seconds: float = field(
        default_factory=lambda: _engine_setting("script_timeout_seconds", 10)
    )
    http_timeout_seconds: float = field(
        default_factory=lambda: _engine_setting("http_timeout_seconds", 30.0)
    )
    llm_model: str | None = field(default_factory=get_llm_model)
    llm_max_tokens: int = field(default_factory=lambda: _section("llm").get("max_tokens", 1000))
    llm_temperature: float = field(default_factory=lambda: _section("llm").get("temperature", 0.0))
    ai_max_input_chars: int = field(
        default_factory=lambda: _engine_setting("ai_max_input_chars", 12_000)
    )
    max_sub_flow_depth: int = field(
        default_factory=lambda: _engine_setting("max_sub_flow_depth", 16)
    )
    llm_credentials: dict[str, LLMCredentials] = field(default_factory=get_llm_credentials)
