"""Configuration system for ctxcompact using Pydantic."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CompactionStrategy(str, Enum):
    EVICT = "evict"
    SUMMARIZE = "summarize"


class TagConfig(BaseModel):
    """Tag names the caller uses to mark lifecycle messages."""

    instructions_prompt: str = "INSTRUCTIONS_PROMPT"
    subagent_spawn: str = "SUBAGENT_SPAWN"
    user_prompt: str = "USER_PROMPT"
    step_prompt: str = "STEP_PROMPT"


class EvictionConfig(BaseModel):
    """Tunables for the staged eviction strategy."""

    recent_shell_results: int = Field(default=5, ge=0)
    shell_tool_names: list[str] = Field(
        default_factory=lambda: ["run_terminal_command"]
    )
    large_result_chars: int = Field(default=1000, ge=0)
    shortened_factor: float = Field(default=0.5, ge=0.0, lt=1.0)
    placeholder_text: str = "Earlier message(s) omitted for length."


class SummaryConfig(BaseModel):
    """Tunables for the summarization strategy."""

    summary_fraction: float = Field(default=0.1, gt=0.0, le=1.0)
    user_message_limit: int = Field(default=15_000, ge=0)
    assistant_message_limit: int = Field(default=4_000, ge=0)
    error_chars: int = Field(default=100, ge=0)
    answer_chars: int = Field(default=10_000, ge=0)
    shell_tool_names: list[str] = Field(
        default_factory=lambda: ["run_terminal_command"]
    )


class BudgetConfig(BaseModel):
    """Context budget and accounting parameters."""

    max_context_tokens: int = Field(default=200_000, gt=0)
    system_prompt_tokens: int = Field(default=0, ge=0)
    tool_definition_tokens: int = Field(default=0, ge=0)
    tool_definition_weight: float = Field(default=0.5, ge=0.0, le=1.0)
    cache_ttl_ms: int = Field(default=5 * 60 * 1000, ge=0)
    media_part_tokens: int = Field(default=1000, ge=0)
    eviction: EvictionConfig = Field(default_factory=EvictionConfig)
    summary: SummaryConfig = Field(default_factory=SummaryConfig)


class CompactorConfig(BaseModel):
    """Root configuration model."""

    strategy: CompactionStrategy = CompactionStrategy.EVICT
    tags: TagConfig = Field(default_factory=TagConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)


class EnvSettings(BaseSettings):
    """Environment variable overrides."""

    model_config = SettingsConfigDict(
        env_prefix="CTXCOMPACT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    max_context_tokens: int | None = None
    strategy: CompactionStrategy | None = None
    log_level: str = "INFO"


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dicts, override wins on conflicts."""
    result = {**base}
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_yaml_config(path: Path) -> dict[str, Any]:
    """Load a YAML config file, return empty dict if not found."""
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data if isinstance(data, dict) else {}


def _resolve_env_vars(value: Any) -> Any:
    """Recursively replace ${ENV_VAR} references with actual env values.

    If an env var is not set, the placeholder is preserved as-is.
    """
    import os
    import re

    if isinstance(value, str):
        pattern = re.compile(r"\$\{(\w+)\}")
        return pattern.sub(
            lambda m: os.environ.get(m.group(1), m.group(0)),
            value,
        )
    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]
    return value


def load_config(
    project_dir: Path | None = None,
    global_dir: Path | None = None,
) -> CompactorConfig:
    """Load configuration with layered precedence.

    Order (later overrides earlier):
    1. Built-in defaults (Pydantic defaults)
    2. ~/.ctxcompact/config.yaml (global user config)
    3. .ctxcompact/config.yaml (project-level config)
    4. Environment variables (CTXCOMPACT_*)
    """
    global_config_dir = global_dir or Path.home() / ".ctxcompact"
    project_config_dir = (project_dir or Path.cwd()) / ".ctxcompact"

    merged: dict[str, Any] = {}
    for config_path in [
        global_config_dir / "config.yaml",
        project_config_dir / "config.yaml",
    ]:
        layer = load_yaml_config(config_path)
        merged = _deep_merge(merged, layer)

    config = CompactorConfig(**_resolve_env_vars(merged))

    env = EnvSettings()
    if env.max_context_tokens:
        config = config.model_copy(
            update={
                "budget": config.budget.model_copy(
                    update={"max_context_tokens": env.max_context_tokens}
                )
            }
        )
    if env.strategy:
        config = config.model_copy(update={"strategy": env.strategy})

    return config
