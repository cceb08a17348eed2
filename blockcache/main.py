from __future__ import annotations

import asyncio
import json
import sys
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer

from blockcache.config import get_settings
from blockcache.context import AppContext, open_context
from blockcache.errors import BlockCacheError, HeightIndexError, InvalidInputError
from blockcache.orchestrator import AnalysisThresholds, run_comparison
from blockcache.reporter import (
    print_cache_statistics,
    print_comparison,
    print_program_analysis,
    print_range_analysis,
    print_recent_blocks,
)
from blockcache.utils.logging import configure_logging

app = typer.Typer(help="Solana block cache and throughput analysis CLI.")

T = TypeVar("T")


def _execute(action: Callable[[AppContext], Awaitable[T]]) -> T:
    """
    Run `action` inside a fresh application context and map errors to exit codes.

    Invalid input exits with 2; any other block cache error exits with 1.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    async def runner() -> T:
        async with open_context(settings) as ctx:
            return await action(ctx)

    try:
        return asyncio.run(runner())
    except InvalidInputError as exc:
        typer.echo(f"Invalid input: {exc.message}", err=True)
        raise typer.Exit(code=2)
    except HeightIndexError as exc:
        typer.echo(f"Not found: {exc.message}", err=True)
        raise typer.Exit(code=1)
    except BlockCacheError as exc:
        typer.echo(f"Error ({exc.status_code}): {exc.message}", err=True)
        raise typer.Exit(code=1)


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"rpc={settings.rpc_url} | batch={settings.resolve_batch_size}/{settings.program_batch_size} "
        f"sample={settings.default_sample_size}/{settings.program_sample_size} | "
        f"event=[{settings.event_start_slot}, {settings.event_end_slot})"
    )


@app.command()
def block(slot: str = typer.Argument(..., help="Slot to resolve.")) -> None:
    """
    Resolve one block through the cache.
    """

    async def action(ctx: AppContext) -> dict:
        resolution = await ctx.resolver.resolve_block(slot)
        return {"cached": resolution.hit, "block": resolution.value.model_dump(mode="json")}

    _echo_json(_execute(action))


@app.command(name="block-at-height")
def block_at_height(height: str = typer.Argument(..., help="Block height to look up in the cache.")) -> None:
    """
    Show the cached block at a block height. Only heights already in the height index are known.
    """

    async def action(ctx: AppContext) -> dict:
        record = await ctx.stats.block_at_height(height)
        if record is None:
            raise HeightIndexError([int(height)])
        return {"cached": True, "block": record.model_dump(mode="json")}

    _echo_json(_execute(action))


@app.command(name="program-counts")
def program_counts(
    start: str = typer.Argument(..., help="First slot (inclusive)."),
    end: str = typer.Argument(..., help="Last slot (exclusive)."),
    program_id: Optional[str] = typer.Option(
        None, "--program-id", "-p", help="Program address (default from settings)."
    ),
) -> None:
    """
    List program transaction counts already cached for a slot range.
    """

    async def action(ctx: AppContext) -> list:
        counts = await ctx.stats.cached_program_counts(
            start, end, program_id or ctx.settings.default_program_id
        )
        return [count.model_dump(mode="json") for count in counts]

    _echo_json(_execute(action))


@app.command()
def current(
    fetch_block: bool = typer.Option(
        False, "--fetch-block", help="Also resolve the block at the current slot."
    ),
) -> None:
    """
    Show the current head slot of the chain.
    """

    async def action(ctx: AppContext) -> dict:
        if not fetch_block:
            return {"slot": await ctx.resolver.current_head()}
        head, resolution = await ctx.resolver.resolve_current_block()
        return {
            "slot": head,
            "cached": resolution.hit,
            "block": resolution.value.model_dump(mode="json"),
        }

    _echo_json(_execute(action))


@app.command()
def recent(
    limit: Optional[int] = typer.Option(
        None, "--limit", "-n", help="Number of blocks to list (default from settings, max 100)."
    ),
) -> None:
    """
    List the most recently cached blocks and the cache statistics.
    """

    async def action(ctx: AppContext) -> tuple:
        blocks = await ctx.stats.recent_blocks(limit or ctx.settings.recent_blocks_limit)
        stats = await ctx.stats.cache_statistics(ctx.settings.stats_window_seconds)
        return blocks, stats

    blocks, stats = _execute(action)
    print_recent_blocks(blocks)
    print_cache_statistics(stats)


@app.command(name="range")
def range_(
    start: str = typer.Argument(..., help="First slot (inclusive)."),
    end: str = typer.Argument(..., help="Last slot (exclusive)."),
    sample_size: Optional[int] = typer.Option(None, "--sample-size", "-s", help="Slots to sample."),
    table: bool = typer.Option(False, "--table", help="Render a table instead of JSON."),
) -> None:
    """
    Sample a slot range and report transaction metrics.
    """

    async def action(ctx: AppContext):
        return await ctx.sampler.analyze_range(start, end, sample_size)

    analysis = _execute(action)
    if table:
        print_range_analysis(analysis)
    else:
        _echo_json(analysis.model_dump(mode="json"))


@app.command(name="program-range")
def program_range(
    start: str = typer.Argument(..., help="First slot (inclusive)."),
    end: str = typer.Argument(..., help="Last slot (exclusive)."),
    program_id: Optional[str] = typer.Option(
        None, "--program-id", "-p", help="Program address (default from settings)."
    ),
    sample_size: Optional[int] = typer.Option(None, "--sample-size", "-s", help="Slots to sample."),
    table: bool = typer.Option(False, "--table", help="Render a table instead of JSON."),
) -> None:
    """
    Sample a slot range and report one program's transaction metrics.
    """

    async def action(ctx: AppContext):
        return await ctx.sampler.analyze_program_range(
            start, end, program_id or ctx.settings.default_program_id, sample_size
        )

    analysis = _execute(action)
    if table:
        print_program_analysis(analysis)
    else:
        _echo_json(analysis.model_dump(mode="json"))


@app.command(name="height-range")
def height_range(
    start: str = typer.Argument(..., help="First block height (inclusive)."),
    end: str = typer.Argument(..., help="Last block height (exclusive)."),
    sample_size: Optional[int] = typer.Option(None, "--sample-size", "-s", help="Heights to sample."),
    table: bool = typer.Option(False, "--table", help="Render a table instead of JSON."),
) -> None:
    """
    Sample a block-height range. Heights must already be in the cache's height index.
    """

    async def action(ctx: AppContext):
        return await ctx.sampler.analyze_height_range(start, end, sample_size)

    analysis = _execute(action)
    if table:
        print_range_analysis(analysis)
    else:
        _echo_json(analysis.model_dump(mode="json"))


def _compare(
    start: Optional[int],
    end: Optional[int],
    sample_size: Optional[int],
    program_id: Optional[str],
    persist: bool,
    table: bool,
) -> None:
    async def action(ctx: AppContext) -> dict:
        settings = ctx.settings
        return await run_comparison(
            ctx.sampler,
            start if start is not None else settings.event_start_slot,
            end if end is not None else settings.event_end_slot,
            sample_size=sample_size,
            program_id=program_id,
            thresholds=AnalysisThresholds.from_settings(settings),
            label=settings.event_label,
            results_dir=settings.results_dir,
            persist=persist,
        )

    payload = _execute(action)
    if table:
        print_comparison(payload)
    else:
        _echo_json(payload)


@app.command()
def compare(
    start: Optional[int] = typer.Option(None, "--start", help="Event start slot (default from settings)."),
    end: Optional[int] = typer.Option(None, "--end", help="Event end slot, exclusive (default from settings)."),
    sample_size: Optional[int] = typer.Option(None, "--sample-size", "-s", help="Slots to sample per window."),
    persist: bool = typer.Option(True, "--persist/--no-persist", help="Write results to the results directory."),
    table: bool = typer.Option(False, "--table", help="Render a table instead of JSON."),
) -> None:
    """
    Compare network throughput before, during and after an event.
    """
    _compare(start, end, sample_size, None, persist, table)


@app.command(name="compare-program")
def compare_program(
    start: Optional[int] = typer.Option(None, "--start", help="Event start slot (default from settings)."),
    end: Optional[int] = typer.Option(None, "--end", help="Event end slot, exclusive (default from settings)."),
    program_id: Optional[str] = typer.Option(
        None, "--program-id", "-p", help="Program address (default from settings)."
    ),
    sample_size: Optional[int] = typer.Option(None, "--sample-size", "-s", help="Slots to sample per window."),
    persist: bool = typer.Option(True, "--persist/--no-persist", help="Write results to the results directory."),
    table: bool = typer.Option(False, "--table", help="Render a table instead of JSON."),
) -> None:
    """
    Compare one program's throughput before, during and after an event.
    """
    _compare(start, end, sample_size, program_id or get_settings().default_program_id, persist, table)


@app.command()
def stats(
    window: Optional[int] = typer.Option(
        None, "--window", "-w", help="Trailing window in seconds (default from settings)."
    ),
    table: bool = typer.Option(False, "--table", help="Render a table instead of JSON."),
) -> None:
    """
    Show cache statistics over a trailing time window.
    """

    async def action(ctx: AppContext):
        return await ctx.stats.cache_statistics(window or ctx.settings.stats_window_seconds)

    result = _execute(action)
    if table:
        print_cache_statistics(result)
    else:
        _echo_json(result.model_dump(mode="json"))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
