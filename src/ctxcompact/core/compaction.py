"""Top-level context compaction.

``compact`` decides whether a conversation needs shrinking and, if so,
runs exactly one strategy over it:

- EVICT: staged lossy eviction, cheap and incremental
- SUMMARIZE: fold everything into one narrative message

Compaction is triggered when the log exceeds the effective budget, or
when the provider's prompt cache has expired anyway, since the next
request is uncached regardless of its size.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from ctxcompact.core.cache_policy import cache_will_miss
from ctxcompact.core.config import BudgetConfig, CompactionStrategy, TagConfig
from ctxcompact.core.digest import DigestRegistry
from ctxcompact.core.eviction import drop_fresh_markers, evict, protected_indices
from ctxcompact.core.messages import Message
from ctxcompact.core.orphans import resolve_orphans
from ctxcompact.core.summarizer import summarize
from ctxcompact.core.token_budget import ContextBudget
from ctxcompact.core.token_estimation import estimate_conversation_tokens, estimate_message_tokens

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class CompactionResult:
    """Outcome of a compaction call.

    ``changed`` is False when the log came back exactly as given.
    ``over_budget`` marks a best-effort result: protected content alone
    did not fit, so the output still exceeds the budget.
    """

    messages: tuple[Message, ...]
    strategy: CompactionStrategy | None
    original_tokens: int
    final_tokens: int
    budget_tokens: int
    changed: bool
    cache_miss: bool = False
    over_budget: bool = False
    passes: tuple[str, ...] = ()


def _required_tokens(messages: Sequence[Message], media_tokens: int) -> int:
    protected, _ = protected_indices(messages)
    return sum(
        estimate_message_tokens(m, media_tokens) for m, p in zip(messages, protected) if p
    )


def compact(
    messages: Sequence[Message],
    tags: TagConfig | None = None,
    budget: BudgetConfig | None = None,
    *,
    strategy: CompactionStrategy = CompactionStrategy.EVICT,
    digesters: DigestRegistry | None = None,
    clock: Callable[[], int] | None = None,
    warning_callback: Callable[[str], None] | None = None,
) -> CompactionResult:
    """Return a compacted copy of *messages* that fits the budget.

    The input sequence and its messages are never modified.
    """
    tags = tags or TagConfig()
    budget = budget or BudgetConfig()
    strategy = CompactionStrategy(strategy)
    clock = clock or _now_ms
    media_tokens = budget.media_part_tokens

    context_budget = ContextBudget.from_config(budget)
    limit = context_budget.effective
    original = tuple(messages)
    original_tokens = estimate_conversation_tokens(original, media_tokens)

    current = drop_fresh_markers(original, tags)
    tokens = estimate_conversation_tokens(current, media_tokens)
    cache_miss = cache_will_miss(current, tags.user_prompt, budget.cache_ttl_ms)

    logger.debug(
        "Compaction check: %d tokens, budget %d, cache miss %s, %d messages",
        tokens,
        limit,
        cache_miss,
        len(current),
    )

    if context_budget.fits(tokens) and not cache_miss:
        return CompactionResult(
            messages=current,
            strategy=None,
            original_tokens=original_tokens,
            final_tokens=tokens,
            budget_tokens=limit,
            changed=len(current) != len(original),
            passes=("tag_hygiene",),
        )

    logger.info(
        "Compacting context with %s strategy (%d/%d tokens%s)",
        strategy.value,
        tokens,
        limit,
        ", prompt cache expired" if cache_miss else "",
    )

    if strategy == CompactionStrategy.SUMMARIZE:
        summary = summarize(
            current,
            tags,
            limit,
            budget.summary,
            digesters=digesters,
            now=clock(),
        )
        compacted = summary.messages
        passes = ("tag_hygiene", "summarize")
    else:
        eviction = evict(
            current,
            tags,
            limit,
            budget.eviction,
            media_tokens=media_tokens,
            tag_hygiene=False,
        )
        compacted = eviction.messages
        passes = ("tag_hygiene", *eviction.passes)

    compacted = resolve_orphans(compacted)
    final_tokens = estimate_conversation_tokens(compacted, media_tokens)
    required = 0 if context_budget.fits(final_tokens) else _required_tokens(compacted, media_tokens)
    over_budget = context_budget.check(final_tokens, required, warning_callback)

    logger.info(
        "Compaction complete: %d -> %d messages, %d -> %d tokens",
        len(original),
        len(compacted),
        original_tokens,
        final_tokens,
    )

    return CompactionResult(
        messages=compacted,
        strategy=strategy,
        original_tokens=original_tokens,
        final_tokens=final_tokens,
        budget_tokens=limit,
        changed=compacted != original,
        cache_miss=cache_miss,
        over_budget=over_budget,
        passes=passes,
    )
