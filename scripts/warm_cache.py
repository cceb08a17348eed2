"""
Cache warming script for the block cache.

Resolves the stride-sampled slots of the pre, during and post windows around an
event so that later comparisons are served from the cache.
"""

from __future__ import annotations

import asyncio
import sys
import time
from typing import List, Optional

import typer

from blockcache.config import get_settings
from blockcache.context import AppContext, open_context
from blockcache.errors import BlockCacheError
from blockcache.orchestrator import event_windows
from blockcache.sampler import stride_sample
from blockcache.utils.logging import configure_logging

app = typer.Typer(help="Pre-resolve the sampled slots of an event's comparison windows.")


def _window_slots(start: int, end: int, sample_size: int) -> List[List[int]]:
    windows = event_windows(start, end)
    return [
        stride_sample(window.start, window.end, sample_size)
        for window in (windows.pre, windows.during, windows.post)
    ]


async def _warm(
    ctx: AppContext, slot_groups: List[List[int]], program_id: Optional[str]
) -> tuple:
    requested = resolved = 0
    for slots in slot_groups:
        requested += len(slots)
        if program_id:
            resolved += len(await ctx.resolver.resolve_program_range(slots, program_id))
        else:
            resolved += len(await ctx.resolver.resolve_range(slots))
    return requested, resolved


@app.command()
def main(
    start: Optional[int] = typer.Option(None, "--start", help="Event start slot (default from settings)."),
    end: Optional[int] = typer.Option(None, "--end", help="Event end slot, exclusive (default from settings)."),
    sample_size: Optional[int] = typer.Option(
        None, "--sample-size", "-s", help="Slots to sample per window (default from settings)."
    ),
    program_id: Optional[str] = typer.Option(
        None, "--program-id", "-p", help="Also warm program counts for this program address."
    ),
) -> None:
    """
    Resolve every sampled slot of the three event windows through the cache.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    event_start = start if start is not None else settings.event_start_slot
    event_end = end if end is not None else settings.event_end_slot
    if sample_size is None:
        sample_size = settings.program_sample_size if program_id else settings.default_sample_size

    began = time.perf_counter()
    try:
        slot_groups = _window_slots(event_start, event_end, sample_size)
        typer.echo(
            f"Warming {sum(len(g) for g in slot_groups):,} slots around "
            f"[{event_start:,}, {event_end:,}) (sample={sample_size})"
        )

        async def runner() -> tuple:
            async with open_context(settings) as ctx:
                return await _warm(ctx, slot_groups, program_id)

        requested, resolved = asyncio.run(runner())
    except BlockCacheError as exc:
        typer.echo(f"Error ({exc.status_code}): {exc.message}", err=True)
        raise typer.Exit(code=1)

    duration = time.perf_counter() - began
    typer.echo(
        f"Resolved {resolved:,}/{requested:,} slots in {duration:.2f}s "
        f"({requested - resolved:,} failed)."
    )


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
