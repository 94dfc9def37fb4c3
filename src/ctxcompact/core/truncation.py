"""Text truncation helpers shared by the compaction strategies."""

from __future__ import annotations

# Room reserved for the "[...truncated N chars...]" marker.
_NOTICE_RESERVE = 50

_PREFIX_SHARE = 0.8


def truncate_middle(text: str, limit: int) -> str:
    """Truncate *text* to at most *limit* chars, keeping head and tail.

    Keeps ~80% of the budget from the start and ~20% from the end, so
    both the original ask and any trailing conclusion survive.
    """
    if len(text) <= limit:
        return text

    available = limit - _NOTICE_RESERVE
    if available <= 0:
        return f"[...truncated {len(text)} chars...]"

    prefix_len = int(available * _PREFIX_SHARE)
    suffix_len = available - prefix_len
    omitted = len(text) - prefix_len - suffix_len
    prefix = text[:prefix_len]
    suffix = text[-suffix_len:] if suffix_len > 0 else ""

    return f"{prefix}\n\n[...truncated {omitted} chars...]\n\n{suffix}"


def truncate_head(text: str, max_chars: int) -> str:
    """Hard truncate with an ellipsis at the cut point."""
    if len(text) <= max_chars:
        return text
    return text[: max(max_chars, 0)] + "..."
