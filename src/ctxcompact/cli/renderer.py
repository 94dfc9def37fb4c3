"""Rich-based output rendering for the CLI."""

from __future__ import annotations

from collections import Counter
from typing import Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ctxcompact.core.compaction import CompactionResult
from ctxcompact.core.messages import Message
from ctxcompact.core.token_budget import ContextBudget


class Renderer:
    """Renders compaction reports to the terminal."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def compaction(self, result: CompactionResult) -> None:
        """Display the outcome of a compaction run."""
        table = Table(show_header=False, box=None, pad_edge=False)
        table.add_column(style="bold")
        table.add_column()
        table.add_row("Strategy", result.strategy.value if result.strategy else "none (fast path)")
        table.add_row("Tokens", f"{result.original_tokens} -> {result.final_tokens}")
        table.add_row("Budget", str(result.budget_tokens))
        table.add_row("Cache miss", "yes" if result.cache_miss else "no")
        table.add_row("Passes", ", ".join(result.passes))
        table.add_row("Messages", str(len(result.messages)))

        if result.over_budget:
            style, title = "yellow", "Compacted (best effort, over budget)"
        elif result.changed:
            style, title = "green", "Compacted"
        else:
            style, title = "dim", "Unchanged"
        self.console.print(Panel(table, title=title, border_style=style, expand=False))

    def estimate(self, messages: Sequence[Message], tokens: int, budget: ContextBudget) -> None:
        """Display a token estimate for a message log."""
        roles = Counter(m.role for m in messages)
        table = Table(title="Message log")
        table.add_column("Role")
        table.add_column("Count", justify="right")
        for role, count in sorted(roles.items()):
            table.add_row(role, str(count))
        self.console.print(table)

        style = "green" if budget.fits(tokens) else "red"
        self.console.print(Text(budget.summary(tokens), style=style))

    def error(self, message: str) -> None:
        """Display an error message."""
        self.console.print(Text(f"Error: {message}", style="bold red"))

    def warning(self, message: str) -> None:
        """Display a warning."""
        self.console.print(Text(f"Warning: {message}", style="yellow"))
