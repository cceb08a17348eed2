from __future__ import annotations

from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from blockcache.domain.models import (
    BlockRecord,
    CacheStatistics,
    ProgramRangeAnalysis,
    RangeAnalysis,
)

_SEVERITY_STYLES = {
    "low": "green",
    "medium": "yellow",
    "high": "bold red",
    "critical": "bold white on red",
}


def _cache_line(hits: int, misses: int) -> str:
    total = hits + misses
    rate = hits / total * 100 if total > 0 else 0.0
    return f"{hits:,} hits / {misses:,} misses ({rate:.1f}%)"


def print_range_analysis(analysis: RangeAnalysis, console: Optional[Console] = None) -> None:
    """
    Render a sampled range analysis as a two-column table.
    """
    console = console or Console()
    if analysis.start_height is not None:
        title = f"Heights [{analysis.start_height:,}, {analysis.end_height:,})"
    else:
        title = f"Slots [{analysis.start_slot:,}, {analysis.end_slot:,})"

    table = Table(title=title, box=box.ROUNDED, caption="Totals are extrapolated from the sample")
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right", style="magenta")

    table.add_row("Blocks sampled", f"{analysis.blocks_sampled:,} / {analysis.slots_requested:,}")
    table.add_row("Slots failed", f"{analysis.slots_failed:,}")
    table.add_row("Sampled transactions", f"{analysis.total_transactions:,}")
    table.add_row("Avg tx / block", f"{analysis.average_transactions_per_block:,.2f}")
    table.add_row("Min / Max tx", f"{analysis.min_transactions:,} / {analysis.max_transactions:,}")
    table.add_row("Estimated total tx", f"[bold green]{analysis.estimated_total_transactions:,}[/bold green]")
    table.add_row("Cache", _cache_line(analysis.cache_hits, analysis.cache_misses))
    console.print(table)


def print_program_analysis(analysis: ProgramRangeAnalysis, console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(
        title=f"{analysis.program_id}\n[dim]Slots [{analysis.start_slot:,}, {analysis.end_slot:,})[/dim]",
        box=box.ROUNDED,
        caption="Totals are extrapolated from the sample",
    )
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right", style="magenta")

    table.add_row("Blocks sampled", f"{analysis.blocks_sampled:,} / {analysis.slots_requested:,}")
    table.add_row("Slots failed", f"{analysis.slots_failed:,}")
    table.add_row("Program tx (sampled)", f"{analysis.total_program_transactions:,}")
    table.add_row("Network tx (sampled)", f"{analysis.total_network_transactions:,}")
    table.add_row("Avg program tx / block", f"{analysis.average_program_transactions_per_block:,.2f}")
    table.add_row("Avg network tx / block", f"{analysis.average_network_transactions_per_block:,.2f}")
    table.add_row("Market share", f"[yellow]{analysis.program_percentage:.2f}%[/yellow]")
    table.add_row(
        "Estimated program tx",
        f"[bold green]{analysis.estimated_total_program_transactions:,}[/bold green]",
    )
    table.add_row("Cache", _cache_line(analysis.cache_hits, analysis.cache_misses))
    console.print(table)


def print_comparison(payload: Dict[str, Any], console: Optional[Console] = None) -> None:
    """
    Render a comparison payload (network or program) as a per-window table.

    Handles both payload shapes; program payloads carry a `program` section and
    program-prefixed metric names.
    """
    console = console or Console()
    event = payload["event"]
    analysis = payload["analysis"]
    is_program = "program" in payload

    severity = analysis["disruption_severity"]
    style = _SEVERITY_STYLES.get(severity, "white")
    title = f"{event.get('label') or 'Event'}: slots [{event['start_slot']:,}, {event['end_slot']:,})"
    if is_program:
        title = f"{title}\n[dim]Program: {payload['program']['address']}[/dim]"

    table = Table(
        title=title,
        box=box.ROUNDED,
        caption=f"Severity: [{style}]{severity.upper()}[/{style}]"
        f" | Fully recovered: {'yes' if analysis['fully_recovered'] else 'no'}",
    )
    table.add_column("Window", style="cyan", no_wrap=True)
    table.add_column("Slots", justify="right")
    table.add_column("Sampled", justify="right", style="blue")
    table.add_column("Avg tx / block", justify="right", style="green")
    table.add_column("Estimated total", justify="right", style="bold green")
    table.add_column("Change", justify="right", style="yellow")

    avg_key = "average_program_transactions_per_block" if is_program else "average_transactions_per_block"
    total_key = "estimated_total_program_transactions" if is_program else "estimated_total_transactions"
    change_key = "avg_program_transactions_per_block" if is_program else "avg_transactions_per_block"

    periods = payload["periods"]
    rows: List[tuple] = [
        ("Pre-event", periods["pre_event"], "baseline"),
        ("During", periods["during_event"], periods["during_event"]["change_from_baseline"][change_key]),
        ("Post-event", periods["post_event"], periods["post_event"]["recovery_rate"]),
    ]
    for name, period, change in rows:
        metrics = period["metrics"]
        slot_range = period["slot_range"]
        table.add_row(
            name,
            f"{slot_range['start']:,}-{slot_range['end']:,}",
            f"{metrics['blocks_sampled']:,}",
            f"{metrics[avg_key]:,.2f}",
            f"{metrics[total_key]:,}",
            change,
        )
    console.print(table)

    cache = payload["metadata"]["cache_statistics"]
    console.print(
        f"[dim]Cache: {cache['total_cache_hits']:,} hits / {cache['total_cache_misses']:,} misses "
        f"({cache['cache_hit_rate']})[/dim]"
    )


def print_cache_statistics(stats: CacheStatistics, console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title=f"Cache statistics (last {stats.window_seconds:,}s)", box=box.ROUNDED)
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right", style="magenta")
    table.add_row("Cached blocks", f"{stats.total_cached_records:,}")
    table.add_row("Requests", f"{stats.total_requests:,}")
    table.add_row("Hits / Misses", f"{stats.cache_hits:,} / {stats.cache_misses:,}")
    table.add_row("Hit rate", f"[bold green]{stats.cache_hit_rate_percent:.2f}%[/bold green]")
    table.add_row("Avg response (ms)", f"{stats.avg_response_time_ms:,}")
    console.print(table)


def print_recent_blocks(blocks: List[BlockRecord], console: Optional[Console] = None) -> None:
    console = console or Console()
    if not blocks:
        console.print("[yellow]No cached blocks yet.[/yellow]")
        return

    table = Table(title="Recently cached blocks", box=box.ROUNDED, caption="Sorted by slot (descending)")
    table.add_column("Slot", style="cyan", justify="right", no_wrap=True)
    table.add_column("Height", justify="right")
    table.add_column("Transactions", justify="right", style="bold green")
    table.add_column("Block time", justify="right", style="yellow")
    table.add_column("Hash", style="dim")
    for block in blocks:
        table.add_row(
            f"{block.slot:,}",
            f"{block.height:,}" if block.height is not None else "N/A",
            f"{block.transaction_count:,}",
            str(block.time) if block.time is not None else "N/A",
            block.block_hash,
        )
    console.print(table)


__all__ = [
    "print_cache_statistics",
    "print_comparison",
    "print_program_analysis",
    "print_range_analysis",
    "print_recent_blocks",
]
