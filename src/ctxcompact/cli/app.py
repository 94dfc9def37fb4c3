"""CLI commands: compact or estimate a JSON message log."""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

from rich.console import Console

from ctxcompact.cli.renderer import Renderer
from ctxcompact.core.compaction import compact
from ctxcompact.core.config import CompactionStrategy, CompactorConfig
from ctxcompact.core.messages import (
    Message,
    MessageFormatError,
    messages_from_list,
    messages_to_list,
)
from ctxcompact.core.token_budget import ContextBudget
from ctxcompact.core.token_estimation import estimate_conversation_tokens
from ctxcompact.plugins.manager import PluginManager

logger = logging.getLogger(__name__)


@dataclass
class CompactOptions:
    """Options for the ``compact`` sub-command."""

    log_path: Path
    strategy: CompactionStrategy | None = None
    max_tokens: int | None = None
    output: Path | None = None
    plugins_dir: Path | None = None


def load_log(path: Path) -> tuple[Message, ...]:
    """Read a message log from a JSON file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise MessageFormatError(f"{path} is not valid JSON: {e}") from e
    return messages_from_list(data)


def _with_max_tokens(config: CompactorConfig, max_tokens: int | None) -> CompactorConfig:
    if not max_tokens:
        return config
    return config.model_copy(
        update={"budget": config.budget.model_copy(update={"max_context_tokens": max_tokens})}
    )


def _stderr_renderer() -> Renderer:
    return Renderer(Console(stderr=True))


def run_compact(
    options: CompactOptions,
    config: CompactorConfig,
    renderer: Renderer | None = None,
) -> int:
    """Compact a log file and write the result. Returns the exit code."""
    renderer = renderer or _stderr_renderer()
    config = _with_max_tokens(config, options.max_tokens)

    try:
        messages = load_log(options.log_path)
    except (OSError, MessageFormatError) as e:
        renderer.error(str(e))
        return 1

    plugins = PluginManager()
    if options.plugins_dir is not None:
        plugins.load_from_directory(options.plugins_dir)

    result = compact(
        messages,
        config.tags,
        config.budget,
        strategy=options.strategy or config.strategy,
        digesters=plugins.build_digest_registry(),
        warning_callback=renderer.warning,
    )
    plugins.hooks.run_post_compaction(result)

    payload = json.dumps(messages_to_list(result.messages), indent=2, ensure_ascii=False)
    if options.output is not None:
        options.output.write_text(payload + "\n", encoding="utf-8")
        logger.info("Wrote %d message(s) to %s", len(result.messages), options.output)
    else:
        sys.stdout.write(payload + "\n")

    renderer.compaction(result)
    return 0


def run_estimate(
    log_path: Path,
    config: CompactorConfig,
    max_tokens: int | None = None,
    renderer: Renderer | None = None,
) -> int:
    """Print a token estimate for a log file. Returns the exit code."""
    renderer = renderer or Renderer()
    config = _with_max_tokens(config, max_tokens)

    try:
        messages = load_log(log_path)
    except (OSError, MessageFormatError) as e:
        renderer.error(str(e))
        return 1

    tokens = estimate_conversation_tokens(messages, config.budget.media_part_tokens)
    renderer.estimate(messages, tokens, ContextBudget.from_config(config.budget))
    return 0
