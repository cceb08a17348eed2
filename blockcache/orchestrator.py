"""
Comparative "before / during / after" analysis around an event window.

Given an event window ``[E_start, E_end)`` of length ``L``, three equal windows
are analyzed independently with the range sampler:

- pre-event    ``[E_start - L, E_start)``
- during-event ``[E_start, E_end)``
- post-event   ``[E_end, E_end + L)``

The during and post windows are then compared against the pre-event baseline.

Usage (example from CLI):
    from blockcache.orchestrator import run_comparison

    payload = await run_comparison(sampler, 374_563_500, 374_591_000, sample_size=100)

Outputs can be saved to `results/` by default:
- `results/latest.json` (last run)
- `results/run-<timestamp>.json` (timestamped archive)
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel

from blockcache.config import Settings
from blockcache.domain.models import ProgramRangeAnalysis, RangeAnalysis
from blockcache.errors import InvalidInputError
from blockcache.resolver import parse_slot
from blockcache.sampler import RangeSampler
from blockcache.utils.logging import get_logger
from blockcache.utils.profiler import profile_block

log = get_logger(__name__)


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class AnalysisThresholds:
    """
    Percent thresholds applied to the during-vs-baseline change.

    Drops are compared strictly: a change of exactly -50% is `high`, not
    `critical`.
    """

    disruption_pct: float = 10.0
    critical_pct: float = 50.0
    high_pct: float = 30.0
    medium_pct: float = 10.0
    recovery_tolerance_pct: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "AnalysisThresholds":
        return cls(
            disruption_pct=settings.disruption_threshold_pct,
            critical_pct=settings.severity_critical_pct,
            high_pct=settings.severity_high_pct,
            medium_pct=settings.severity_medium_pct,
            recovery_tolerance_pct=settings.recovery_tolerance_pct,
        )


@dataclass(frozen=True)
class SlotWindow:
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start

    def as_dict(self) -> Dict[str, int]:
        return {"start": self.start, "end": self.end}


@dataclass(frozen=True)
class EventWindows:
    pre: SlotWindow
    during: SlotWindow
    post: SlotWindow


def event_windows(event_start: int, event_end: int) -> EventWindows:
    """
    Derive the pre, during and post windows for an event.

    Raises
    ------
    InvalidInputError
        If the event window is empty or the pre-event window would start
        before slot 0.
    """
    event_start = parse_slot(event_start, name="event start")
    event_end = parse_slot(event_end, name="event end")
    if event_end <= event_start:
        raise InvalidInputError(
            f"Invalid event window [{event_start}, {event_end}): end must be greater than start."
        )
    length = event_end - event_start
    if event_start - length < 0:
        raise InvalidInputError(
            f"Event window [{event_start}, {event_end}) leaves no room for a pre-event window."
        )
    return EventWindows(
        pre=SlotWindow(event_start - length, event_start),
        during=SlotWindow(event_start, event_end),
        post=SlotWindow(event_end, event_end + length),
    )


def calculate_change(current: float, baseline: float) -> float:
    """
    Percent change of `current` relative to `baseline`.

    Returns 0.0 when the baseline is 0. This is a saturating convention to
    avoid dividing by zero, not a signal about data quality.
    """
    if baseline == 0:
        return 0.0
    return (current - baseline) / baseline * 100


def classify_severity(change: float, thresholds: AnalysisThresholds = AnalysisThresholds()) -> Severity:
    if change < -thresholds.critical_pct:
        return Severity.CRITICAL
    if change < -thresholds.high_pct:
        return Severity.HIGH
    if change < -thresholds.medium_pct:
        return Severity.MEDIUM
    return Severity.LOW


def is_disruption(change: float, thresholds: AnalysisThresholds = AnalysisThresholds()) -> bool:
    return change < -thresholds.disruption_pct


def is_recovered(recovery_change: float, thresholds: AnalysisThresholds = AnalysisThresholds()) -> bool:
    return abs(recovery_change) < thresholds.recovery_tolerance_pct


def format_change(value: float) -> str:
    return f"{value:.2f}%"


def _hit_rate(hits: int, misses: int) -> str:
    total = hits + misses
    return format_change(hits / total * 100 if total > 0 else 0.0)


class EventComparison(BaseModel):
    event_start: int
    event_end: int
    sample_size: int
    pre: RangeAnalysis
    during: RangeAnalysis
    post: RangeAnalysis
    avg_change_pct: float
    total_change_pct: float
    during_to_post_change_pct: float
    recovery_rate_pct: float
    disruption_detected: bool
    severity: Severity
    fully_recovered: bool
    estimated_transaction_loss: int

    model_config = {"frozen": True}

    @property
    def cache_hits(self) -> int:
        return self.pre.cache_hits + self.during.cache_hits + self.post.cache_hits

    @property
    def cache_misses(self) -> int:
        return self.pre.cache_misses + self.during.cache_misses + self.post.cache_misses


class ProgramEventComparison(BaseModel):
    event_start: int
    event_end: int
    program_id: str
    sample_size: int
    pre: ProgramRangeAnalysis
    during: ProgramRangeAnalysis
    post: ProgramRangeAnalysis
    avg_change_pct: float
    total_change_pct: float
    market_share_change_pct: float
    during_to_post_change_pct: float
    recovery_rate_pct: float
    disruption_detected: bool
    severity: Severity
    fully_recovered: bool
    estimated_transaction_loss: int

    model_config = {"frozen": True}

    @property
    def cache_hits(self) -> int:
        return self.pre.cache_hits + self.during.cache_hits + self.post.cache_hits

    @property
    def cache_misses(self) -> int:
        return self.pre.cache_misses + self.during.cache_misses + self.post.cache_misses


async def compare_event(
    sampler: RangeSampler,
    event_start: int,
    event_end: int,
    sample_size: Optional[int] = None,
    thresholds: Optional[AnalysisThresholds] = None,
) -> EventComparison:
    """
    Compare network throughput before, during and after an event.

    Windows are analyzed one after another so upstream concurrency stays
    bounded by the resolver's batch size.
    """
    thresholds = thresholds or AnalysisThresholds()
    windows = event_windows(event_start, event_end)
    size = sample_size if sample_size is not None else sampler.default_sample_size

    analyses: Dict[str, RangeAnalysis] = {}
    for name, window in (("pre", windows.pre), ("during", windows.during), ("post", windows.post)):
        log.info(f"[WINDOW START] {name}", extra={"window": name, **window.as_dict()})
        analyses[name] = await sampler.analyze_range(window.start, window.end, size)
        log.info(
            f"[WINDOW COMPLETE] {name}",
            extra={
                "window": name,
                "blocks_sampled": analyses[name].blocks_sampled,
                "slots_failed": analyses[name].slots_failed,
            },
        )
    pre, during, post = analyses["pre"], analyses["during"], analyses["post"]

    avg_change = calculate_change(
        during.average_transactions_per_block, pre.average_transactions_per_block
    )
    recovery = calculate_change(
        post.average_transactions_per_block, pre.average_transactions_per_block
    )
    return EventComparison(
        event_start=windows.during.start,
        event_end=windows.during.end,
        sample_size=size,
        pre=pre,
        during=during,
        post=post,
        avg_change_pct=avg_change,
        total_change_pct=calculate_change(
            during.estimated_total_transactions, pre.estimated_total_transactions
        ),
        during_to_post_change_pct=calculate_change(
            post.average_transactions_per_block, during.average_transactions_per_block
        ),
        recovery_rate_pct=recovery,
        disruption_detected=is_disruption(avg_change, thresholds),
        severity=classify_severity(avg_change, thresholds),
        fully_recovered=is_recovered(recovery, thresholds),
        estimated_transaction_loss=max(
            0, pre.estimated_total_transactions - during.estimated_total_transactions
        ),
    )


async def compare_program_event(
    sampler: RangeSampler,
    event_start: int,
    event_end: int,
    program_id: str,
    sample_size: Optional[int] = None,
    thresholds: Optional[AnalysisThresholds] = None,
) -> ProgramEventComparison:
    """
    Compare one program's throughput before, during and after an event.

    Severity and recovery use the program's average transactions per block;
    market share change compares its percentage of network transactions.
    """
    thresholds = thresholds or AnalysisThresholds()
    windows = event_windows(event_start, event_end)
    size = sample_size if sample_size is not None else sampler.program_sample_size

    analyses: Dict[str, ProgramRangeAnalysis] = {}
    for name, window in (("pre", windows.pre), ("during", windows.during), ("post", windows.post)):
        log.info(
            f"[WINDOW START] {name}",
            extra={"window": name, "program_id": program_id, **window.as_dict()},
        )
        analyses[name] = await sampler.analyze_program_range(
            window.start, window.end, program_id, size
        )
        log.info(
            f"[WINDOW COMPLETE] {name}",
            extra={
                "window": name,
                "blocks_sampled": analyses[name].blocks_sampled,
                "slots_failed": analyses[name].slots_failed,
            },
        )
    pre, during, post = analyses["pre"], analyses["during"], analyses["post"]

    avg_change = calculate_change(
        during.average_program_transactions_per_block,
        pre.average_program_transactions_per_block,
    )
    recovery = calculate_change(
        post.average_program_transactions_per_block,
        pre.average_program_transactions_per_block,
    )
    return ProgramEventComparison(
        event_start=windows.during.start,
        event_end=windows.during.end,
        program_id=pre.program_id,
        sample_size=size,
        pre=pre,
        during=during,
        post=post,
        avg_change_pct=avg_change,
        total_change_pct=calculate_change(
            during.estimated_total_program_transactions,
            pre.estimated_total_program_transactions,
        ),
        market_share_change_pct=calculate_change(
            during.program_percentage, pre.program_percentage
        ),
        during_to_post_change_pct=calculate_change(
            post.average_program_transactions_per_block,
            during.average_program_transactions_per_block,
        ),
        recovery_rate_pct=recovery,
        disruption_detected=is_disruption(avg_change, thresholds),
        severity=classify_severity(avg_change, thresholds),
        fully_recovered=is_recovered(recovery, thresholds),
        estimated_transaction_loss=max(
            0,
            pre.estimated_total_program_transactions
            - during.estimated_total_program_transactions,
        ),
    )


def _metrics(analysis: Union[RangeAnalysis, ProgramRangeAnalysis]) -> Dict[str, Any]:
    return analysis.model_dump(exclude={"sampled_slots", "start_slot", "end_slot"}, exclude_none=True)


def comparison_payload(report: EventComparison, label: Optional[str] = None) -> Dict[str, Any]:
    """
    JSON-ready view of an event comparison.

    Percent changes are rendered as strings with two decimals.
    """
    windows = event_windows(report.event_start, report.event_end)
    pre_avg = report.pre.average_transactions_per_block
    during_avg = report.during.average_transactions_per_block
    post_avg = report.post.average_transactions_per_block
    return {
        "event": {
            "label": label,
            "start_slot": report.event_start,
            "end_slot": report.event_end,
            "length_slots": windows.during.length,
        },
        "analysis": {
            "disruption_detected": report.disruption_detected,
            "disruption_severity": report.severity.value,
            "fully_recovered": report.fully_recovered,
            "transaction_drop_percentage": f"{report.avg_change_pct:.2f}",
            "estimated_transaction_loss": report.estimated_transaction_loss,
        },
        "periods": {
            "pre_event": {
                "slot_range": windows.pre.as_dict(),
                "metrics": _metrics(report.pre),
            },
            "during_event": {
                "slot_range": windows.during.as_dict(),
                "metrics": _metrics(report.during),
                "change_from_baseline": {
                    "avg_transactions_per_block": format_change(report.avg_change_pct),
                    "total_transactions": format_change(report.total_change_pct),
                },
            },
            "post_event": {
                "slot_range": windows.post.as_dict(),
                "metrics": _metrics(report.post),
                "recovery_rate": format_change(report.recovery_rate_pct),
            },
        },
        "comparison": {
            "pre_vs_during": {
                "avg_transactions_per_block": {
                    "pre": f"{pre_avg:.2f}",
                    "during": f"{during_avg:.2f}",
                    "change": format_change(report.avg_change_pct),
                },
                "total_transactions": {
                    "pre": report.pre.estimated_total_transactions,
                    "during": report.during.estimated_total_transactions,
                    "change": format_change(report.total_change_pct),
                },
            },
            "during_vs_post": {
                "avg_transactions_per_block": {
                    "during": f"{during_avg:.2f}",
                    "post": f"{post_avg:.2f}",
                    "change": format_change(report.during_to_post_change_pct),
                },
            },
            "pre_vs_post": {
                "avg_transactions_per_block": {
                    "pre": f"{pre_avg:.2f}",
                    "post": f"{post_avg:.2f}",
                    "change": format_change(report.recovery_rate_pct),
                },
                "recovered": report.fully_recovered,
            },
        },
        "metadata": _metadata(report),
    }


def program_comparison_payload(
    report: ProgramEventComparison, label: Optional[str] = None
) -> Dict[str, Any]:
    """JSON-ready view of a program-filtered event comparison."""
    windows = event_windows(report.event_start, report.event_end)
    pre_avg = report.pre.average_program_transactions_per_block
    during_avg = report.during.average_program_transactions_per_block
    post_avg = report.post.average_program_transactions_per_block
    return {
        "event": {
            "label": label,
            "start_slot": report.event_start,
            "end_slot": report.event_end,
            "length_slots": windows.during.length,
        },
        "program": {"address": report.program_id},
        "analysis": {
            "disruption_detected": report.disruption_detected,
            "disruption_severity": report.severity.value,
            "fully_recovered": report.fully_recovered,
            "program_transaction_drop_percentage": f"{report.avg_change_pct:.2f}",
            "estimated_program_transaction_loss": report.estimated_transaction_loss,
            "market_share_impact": f"{report.market_share_change_pct:.2f}",
        },
        "periods": {
            "pre_event": {
                "slot_range": windows.pre.as_dict(),
                "metrics": _metrics(report.pre),
            },
            "during_event": {
                "slot_range": windows.during.as_dict(),
                "metrics": _metrics(report.during),
                "change_from_baseline": {
                    "avg_program_transactions_per_block": format_change(report.avg_change_pct),
                    "total_program_transactions": format_change(report.total_change_pct),
                    "program_market_share": format_change(report.market_share_change_pct),
                },
            },
            "post_event": {
                "slot_range": windows.post.as_dict(),
                "metrics": _metrics(report.post),
                "recovery_rate": format_change(report.recovery_rate_pct),
            },
        },
        "comparison": {
            "pre_vs_during": {
                "avg_program_transactions_per_block": {
                    "pre": f"{pre_avg:.2f}",
                    "during": f"{during_avg:.2f}",
                    "change": format_change(report.avg_change_pct),
                },
                "program_market_share": {
                    "pre": format_change(report.pre.program_percentage),
                    "during": format_change(report.during.program_percentage),
                    "change": format_change(report.market_share_change_pct),
                },
            },
            "during_vs_post": {
                "avg_program_transactions_per_block": {
                    "during": f"{during_avg:.2f}",
                    "post": f"{post_avg:.2f}",
                    "change": format_change(report.during_to_post_change_pct),
                },
            },
            "pre_vs_post": {
                "avg_program_transactions_per_block": {
                    "pre": f"{pre_avg:.2f}",
                    "post": f"{post_avg:.2f}",
                    "change": format_change(report.recovery_rate_pct),
                },
                "recovered": report.fully_recovered,
            },
        },
        "metadata": _metadata(report),
    }


def _metadata(report: Union[EventComparison, ProgramEventComparison]) -> Dict[str, Any]:
    windows = (report.pre, report.during, report.post)
    return {
        "sample_size": report.sample_size,
        "total_blocks_analyzed": sum(w.blocks_sampled for w in windows),
        "total_slots_failed": sum(w.slots_failed for w in windows),
        "cache_statistics": {
            "total_cache_hits": report.cache_hits,
            "total_cache_misses": report.cache_misses,
            "cache_hit_rate": _hit_rate(report.cache_hits, report.cache_misses),
        },
        "note": "Estimated totals extrapolate the sampled per-block average over each window.",
    }


def persist_results(payload: dict, results_dir: Path) -> Path:
    results_dir.mkdir(parents=True, exist_ok=True)
    latest_path = results_dir / "latest.json"
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    archive_path = results_dir / f"run-{timestamp}.json"

    for path in (latest_path, archive_path):
        with path.open("w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, sort_keys=True)

    log.info("Results persisted", extra={"latest": str(latest_path), "archive": str(archive_path)})
    return latest_path


async def run_comparison(
    sampler: RangeSampler,
    event_start: int,
    event_end: int,
    sample_size: Optional[int] = None,
    program_id: Optional[str] = None,
    thresholds: Optional[AnalysisThresholds] = None,
    label: Optional[str] = None,
    results_dir: Union[Path, str] = "results",
    persist: bool = False,
) -> Dict[str, Any]:
    """
    Run a (optionally program-filtered) event comparison under the profiler.

    Parameters
    ----------
    program_id : str | None
        When given, run the program-filtered comparison for that program.
    persist : bool
        Whether to write the payload to `results_dir`.

    Returns
    -------
    dict
        The comparison payload with a `profile` section and a `timestamp`.
    """
    kind = "program" if program_id else "network"
    log.info(
        f"[COMPARISON START] {kind}",
        extra={"event_start": event_start, "event_end": event_end, "program_id": program_id},
    )
    with profile_block(f"compare-{kind}") as stats:
        if program_id:
            program_report = await compare_program_event(
                sampler, event_start, event_end, program_id, sample_size, thresholds
            )
            payload = program_comparison_payload(program_report, label=label)
        else:
            report = await compare_event(sampler, event_start, event_end, sample_size, thresholds)
            payload = comparison_payload(report, label=label)

    payload["profile"] = stats.as_dict()
    payload["timestamp"] = datetime.now(timezone.utc).isoformat()

    if persist:
        persist_results(payload, Path(results_dir))

    log.info(
        f"[COMPARISON COMPLETE] {kind}",
        extra={
            "severity": payload["analysis"]["disruption_severity"],
            "duration": round(stats.duration_seconds, 2),
        },
    )
    return payload


__all__ = [
    "AnalysisThresholds",
    "EventComparison",
    "EventWindows",
    "ProgramEventComparison",
    "Severity",
    "SlotWindow",
    "calculate_change",
    "classify_severity",
    "compare_event",
    "compare_program_event",
    "comparison_payload",
    "event_windows",
    "format_change",
    "is_disruption",
    "is_recovered",
    "persist_results",
    "program_comparison_payload",
    "run_comparison",
]
