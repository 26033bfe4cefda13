"""
Usage report rendering.

Works on the JSON-ready form produced by UsageLedger.to_dict(), so the same
report serves the in-process ledger and a saved statistics file.
"""

from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console
from rich.table import Table

from bmad_chat.core.cost_policy import CostLimitConfig, daily_limit_status
from bmad_chat.core.ledger import DailyStats
from bmad_chat.storage.export import list_exports

DAILY_ROWS = 7
CONVERSATION_ROWS = 10
SCANNED_EXPORTS = 5


def _format_currency(amount: float) -> str:
    return f"${amount:,.4f}"


def _format_day(day: str) -> str:
    try:
        return date.fromisoformat(day).strftime("%a, %b %d")
    except ValueError:
        return day


def _format_conversation_id(conversation_id: str) -> str:
    try:
        return datetime.fromtimestamp(int(conversation_id) / 1000).strftime("%Y-%m-%d %H:%M:%S")
    except (ValueError, OverflowError, OSError):
        return conversation_id


def _today_stats(stats: Dict[str, Any], today: date) -> Optional[DailyStats]:
    for entry in stats.get("daily", []):
        if entry.get("date") == today.isoformat():
            return DailyStats(
                conversations=entry.get("conversations", 0),
                total_tokens=entry.get("total_tokens", 0),
                total_cost=entry.get("total_cost", 0.0),
            )
    return None


def render_usage_report(
    console: Console,
    stats: Dict[str, Any],
    limits: Optional[CostLimitConfig] = None,
    today_only: bool = False,
    detailed: bool = False,
    export_dir: Optional[str] = None,
    today: Optional[date] = None,
) -> None:
    """Print usage statistics, limits and export hints."""
    today = today or date.today()
    total = stats.get("total", {})

    if not total.get("conversations"):
        console.print("\n[yellow]No usage data available yet.[/]")
        console.print("[dim]Start a chat with OpenAI enabled to track usage.[/]\n")
        return

    console.print("\n[bold cyan]Token Usage Statistics[/]\n")

    today_stats = _today_stats(stats, today)
    if today_only:
        if today_stats:
            console.print("[cyan]Today's Usage:[/]")
            console.print(f"  Total Tokens: {today_stats.total_tokens:,}")
            console.print(f"  Total Cost: [yellow]{_format_currency(today_stats.total_cost)}[/]")
        else:
            console.print("[yellow]No usage data for today.[/]")
        console.print()
        return

    conversations = total["conversations"]
    console.print("[cyan]Overall Statistics:[/]")
    console.print(f"  Total Conversations: {conversations}")
    console.print(f"  Total Messages: {total.get('messages', 0)}")
    console.print(f"  Total Tokens: {total.get('total_tokens', 0):,}")
    console.print(f"    • Prompt Tokens: {total.get('prompt_tokens', 0):,}")
    console.print(f"    • Completion Tokens: {total.get('completion_tokens', 0):,}")
    console.print(f"  Total Cost: [yellow]{_format_currency(total.get('total_cost', 0.0))}[/]")
    avg_tokens = round(total.get("total_tokens", 0) / conversations)
    avg_cost = total.get("total_cost", 0.0) / conversations
    console.print(f"  Avg per Conversation: {avg_tokens:,} tokens ([yellow]{_format_currency(avg_cost)}[/])")

    daily = sorted(stats.get("daily", []), key=lambda e: e.get("date", ""), reverse=True)
    if daily:
        table = Table(title="Daily Breakdown", title_justify="left")
        table.add_column("Day")
        table.add_column("Conversations", justify="right")
        table.add_column("Tokens", justify="right")
        table.add_column("Cost", justify="right")
        for entry in daily[:DAILY_ROWS]:
            table.add_row(
                _format_day(entry.get("date", "")),
                str(entry.get("conversations", 0)),
                f"{entry.get('total_tokens', 0):,}",
                _format_currency(entry.get("total_cost", 0.0)),
            )
        console.print()
        console.print(table)

    if detailed and stats.get("conversations"):
        recent = sorted(
            stats["conversations"],
            key=lambda e: e.get("conversation_id", ""),
            reverse=True,
        )
        table = Table(title="Recent Conversations", title_justify="left")
        table.add_column("Started")
        table.add_column("Messages", justify="right")
        table.add_column("Prompt", justify="right")
        table.add_column("Completion", justify="right")
        table.add_column("Cost", justify="right")
        for entry in recent[:CONVERSATION_ROWS]:
            table.add_row(
                _format_conversation_id(entry.get("conversation_id", "")),
                str(entry.get("messages", 0)),
                f"{entry.get('prompt_tokens', 0):,}",
                f"{entry.get('completion_tokens', 0):,}",
                _format_currency(entry.get("total_cost", 0.0)),
            )
        console.print()
        console.print(table)

    if limits is not None:
        console.print("\n[cyan]Cost Limits:[/]")
        if limits.per_conversation is not None:
            console.print(f"  Per Conversation: ${limits.per_conversation:.2f}")
        status = daily_limit_status(limits, today_stats)
        if status is not None:
            console.print(f"  Daily Limit: ${status.limit:.2f}")
            console.print(f"  Today's Usage: ${status.spent:.4f} ({status.percent_used:.1f}%)")
            console.print(f"  Remaining Today: ${status.remaining:.4f}")
            if status.approaching:
                console.print("\n[yellow]Warning: Approaching daily cost limit![/]")

    if export_dir:
        with_tokens = 0
        for info in list_exports(export_dir)[:SCANNED_EXPORTS]:
            if "Token Usage" in Path(info.path).read_text(encoding="utf-8"):
                with_tokens += 1
        if with_tokens:
            console.print(f"\n[dim]{with_tokens} exported conversation(s) include token usage data.[/]")

    console.print()
