from __future__ import annotations

import json
from contextlib import asynccontextmanager

import pytest
from typer.testing import CliRunner

from blockcache import main
from blockcache.config import Settings
from blockcache.context import AppContext
from tests.fakes import InMemoryBlockStore, ScriptedBlockSource, make_block

EVENT_START = 1_000
EVENT_END = 1_100
SLOT = 1_050

runner = CliRunner()


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    counts = {slot: (100 if EVENT_START <= slot < EVENT_END else 1_000) for slot in range(900, 1_200)}
    store = InMemoryBlockStore(blocks=[make_block(5_000, 3, height=4_000)])
    source = ScriptedBlockSource(counts, program_counts=counts, head=SLOT)
    settings = Settings(
        _env_file=None,
        log_level="ERROR",
        results_dir=str(tmp_path),
        default_sample_size=10,
        program_sample_size=10,
        event_start_slot=EVENT_START,
        event_end_slot=EVENT_END,
    )

    @asynccontextmanager
    async def fake_open_context(_settings=None):
        yield AppContext.build(settings, store, source)

    monkeypatch.setattr(main, "open_context", fake_open_context)
    monkeypatch.setattr(main, "get_settings", lambda: settings)
    return store, source, tmp_path


def test_block_reports_cached_flag(cli_env) -> None:
    first = runner.invoke(main.app, ["block", str(SLOT)])
    second = runner.invoke(main.app, ["block", str(SLOT)])

    assert first.exit_code == 0
    assert json.loads(first.stdout)["cached"] is False
    assert json.loads(second.stdout)["cached"] is True
    assert json.loads(second.stdout)["block"]["transaction_count"] == 100


def test_invalid_slot_exits_with_usage_code(cli_env) -> None:
    result = runner.invoke(main.app, ["block", "abc"])

    assert result.exit_code == 2


def test_missing_block_exits_with_failure(cli_env) -> None:
    result = runner.invoke(main.app, ["block", "99999"])

    assert result.exit_code == 1


def test_current_with_block(cli_env) -> None:
    result = runner.invoke(main.app, ["current", "--fetch-block"])

    payload = json.loads(result.stdout)
    assert result.exit_code == 0
    assert payload["slot"] == SLOT
    assert payload["block"]["slot"] == SLOT


def test_range_outputs_analysis(cli_env) -> None:
    result = runner.invoke(main.app, ["range", "900", "1000", "--sample-size", "5"])

    payload = json.loads(result.stdout)
    assert result.exit_code == 0
    assert payload["blocks_sampled"] == 5
    assert payload["average_transactions_per_block"] == 1000.0


def test_program_range_outputs_analysis(cli_env) -> None:
    result = runner.invoke(main.app, ["program-range", "900", "1000", "-p", "Prog1111", "--sample-size", "5"])

    payload = json.loads(result.stdout)
    assert result.exit_code == 0
    assert payload["start_slot"] == 900
    assert payload["program_id"] == "Prog1111"
    assert payload["blocks_sampled"] == 5
    assert payload["program_percentage"] == 100.0


def test_height_range_with_indexed_height_outputs_analysis(cli_env) -> None:
    result = runner.invoke(main.app, ["height-range", "4000", "4001"])

    payload = json.loads(result.stdout)
    assert result.exit_code == 0
    assert payload["start_height"] == 4000
    assert payload["sampled_slots"] == [5000]
    assert payload["total_transactions"] == 3
    assert payload["cache_hits"] == 1


def test_height_range_without_index_fails(cli_env) -> None:
    result = runner.invoke(main.app, ["height-range", "4000", "4010"])

    assert result.exit_code == 1


def test_compare_uses_configured_event_and_persists(cli_env) -> None:
    _, _, results_dir = cli_env

    result = runner.invoke(main.app, ["compare"])

    payload = json.loads(result.stdout)
    assert result.exit_code == 0
    assert payload["analysis"]["disruption_severity"] == "critical"
    assert payload["analysis"]["transaction_drop_percentage"] == "-90.00"
    assert (results_dir / "latest.json").exists()


def test_compare_program_table_output(cli_env) -> None:
    _, _, results_dir = cli_env

    result = runner.invoke(main.app, ["compare-program", "--no-persist", "--table", "-p", "Prog1111"])

    assert result.exit_code == 0
    assert "CRITICAL" in result.stdout
    assert not (results_dir / "latest.json").exists()


def test_stats_counts_requests(cli_env) -> None:
    runner.invoke(main.app, ["block", str(SLOT)])
    runner.invoke(main.app, ["block", str(SLOT)])

    result = runner.invoke(main.app, ["stats"])

    payload = json.loads(result.stdout)
    assert payload["total_requests"] == 2
    assert payload["cache_hits"] == 1
    assert payload["cache_hit_rate_percent"] == 50.0


def test_block_at_height_reads_the_height_index(cli_env) -> None:
    found = runner.invoke(main.app, ["block-at-height", "4000"])
    missing = runner.invoke(main.app, ["block-at-height", "4001"])
    invalid = runner.invoke(main.app, ["block-at-height", "abc"])

    assert found.exit_code == 0
    assert json.loads(found.stdout)["block"]["slot"] == 5_000
    assert missing.exit_code == 1
    assert invalid.exit_code == 2


def test_program_counts_lists_cached_counts(cli_env) -> None:
    runner.invoke(main.app, ["program-range", "900", "910", "-p", "Prog1111", "--sample-size", "10"])

    result = runner.invoke(main.app, ["program-counts", "900", "905", "-p", "Prog1111"])
    other = runner.invoke(main.app, ["program-counts", "900", "905", "-p", "Other111"])

    payload = json.loads(result.stdout)
    assert result.exit_code == 0
    assert [row["slot"] for row in payload] == [900, 901, 902, 903, 904]
    assert all(row["count"] == 1_000 for row in payload)
    assert json.loads(other.stdout) == []


def test_program_counts_rejects_empty_range(cli_env) -> None:
    result = runner.invoke(main.app, ["program-counts", "905", "900", "-p", "Prog1111"])

    assert result.exit_code == 2
