"""Per-request context budget."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from ctxcompact.core.config import BudgetConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContextBudget:
    """Token budget left for conversation messages on the next request.

    The system prompt and tool definitions are sent with every request,
    so they are subtracted up front. Tool definitions are only weighted
    in partially since their estimate tends to run high.
    """

    max_context_tokens: int
    system_prompt_tokens: int = 0
    tool_definition_tokens: int = 0
    tool_definition_weight: float = 0.5

    @classmethod
    def from_config(cls, config: BudgetConfig) -> ContextBudget:
        return cls(
            max_context_tokens=config.max_context_tokens,
            system_prompt_tokens=config.system_prompt_tokens,
            tool_definition_tokens=config.tool_definition_tokens,
            tool_definition_weight=config.tool_definition_weight,
        )

    @property
    def effective(self) -> int:
        """Tokens available to the message log."""
        overhead = self.system_prompt_tokens + self.tool_definition_tokens * self.tool_definition_weight
        return max(0, int(self.max_context_tokens - overhead))

    def fits(self, tokens: int) -> bool:
        return tokens <= self.effective

    def usage_ratio(self, tokens: int) -> float:
        if self.effective <= 0:
            return float("inf") if tokens > 0 else 0.0
        return tokens / self.effective

    def check(
        self,
        tokens: int,
        required_tokens: int = 0,
        warning_callback: Callable[[str], None] | None = None,
    ) -> bool:
        """Return True if *tokens* is over budget, warning when it is.

        *required_tokens* is the share that could not be evicted; it is
        included in the warning so callers can tell a best-effort result
        from a strategy that fell short.
        """
        if self.fits(tokens):
            return False
        message = (
            f"Compacted context still over budget: {tokens}/{self.effective} "
            f"({self.usage_ratio(tokens):.0%}), {required_tokens} tokens protected"
        )
        logger.warning(message)
        if warning_callback is not None:
            warning_callback(message)
        return True

    def summary(self, tokens: int) -> str:
        """Human-readable usage summary."""
        parts = [f"Messages: {tokens} tokens", f"Budget: {self.effective}"]
        if self.system_prompt_tokens or self.tool_definition_tokens:
            parts.append(
                f"Overhead: system {self.system_prompt_tokens}, "
                f"tools {self.tool_definition_tokens} x {self.tool_definition_weight}"
            )
        parts.append(f"Usage: {self.usage_ratio(tokens):.0%}")
        return " | ".join(parts)
