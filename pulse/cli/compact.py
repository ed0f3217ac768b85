# ==============================================================================
# Compaction Commands
# ==============================================================================
"""
Compaction commands for the pulse CLI.

`compact pending` is the daily scheduler entry point; `compact day` re-runs a
single settled day; `compact stats` reports store sizes.
"""

from datetime import date
from typing import Annotated

import typer

from pulse.cli.shared import (
    BOX_WIDTH,
    C,
    I,
    _box_bottom,
    _box_header,
    _empty_line,
    _kv_line,
    _section_header,
    fail,
    open_engine,
    print_json,
)
from pulse.core.results import CompactionResult, Outcome


def _print_result(result: CompactionResult) -> None:
    if result.outcome is Outcome.SKIPPED:
        print(f"{C.BRIGHT_YELLOW}{I.WARN} {result.day}: skipped{C.RESET}")
        return
    icon, color = (I.CHECK, C.BRIGHT_GREEN) if result.success else (I.CROSS, C.BRIGHT_RED)
    print(
        f"{color}{icon} {result.day}: {C.WHITE}{result.events_processed}{color} events "
        f"{I.ARROW} {C.WHITE}{result.aggregates_upserted}{color} aggregates, "
        f"{C.WHITE}{result.events_retired}{color} retired{C.RESET}"
    )
    for error in result.errors:
        print(f"    {C.BRIGHT_RED}{I.BULLET} {error}{C.RESET}")


# ==============================================================================
# Commands
# ==============================================================================


def compact_day(
    day: Annotated[str, typer.Argument(help="UTC day to compact (YYYY-MM-DD)")],
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON for scripting")
    ] = False,
) -> None:
    """Compact one settled UTC day.

    Days newer than the compaction boundary are skipped. Safe to re-run.

    Examples:
        pulse compact day 2024-03-01
    """
    try:
        target = date.fromisoformat(day)
    except ValueError:
        fail(f"Invalid day '{day}', expected YYYY-MM-DD", json_output)

    with open_engine() as engine:
        result = engine.compactor.compact_day(target)

    if json_output:
        print_json(result.model_dump(mode="json"))
    else:
        print()
        _print_result(result)
        print()
    if not result.success:
        raise typer.Exit(1)


def compact_pending(
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON for scripting")
    ] = False,
) -> None:
    """Compact every settled day that still holds raw events.

    Examples:
        pulse compact pending          # Run from a daily scheduler
        pulse compact pending --json
    """
    with open_engine() as engine:
        results = engine.compactor.compact_pending()

    if json_output:
        print_json([r.model_dump(mode="json") for r in results])
    else:
        print()
        if not results:
            print(f"{C.BRIGHT_GREEN}{I.CHECK} Nothing to compact{C.RESET}")
        for result in results:
            _print_result(result)
        print()
    if any(not r.success for r in results):
        raise typer.Exit(1)


def compact_stats(
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON for scripting")
    ] = False,
) -> None:
    """Show raw and compacted store sizes and the estimated storage saving."""
    with open_engine() as engine:
        stats = engine.compactor.get_stats()

    if json_output:
        print_json(stats.model_dump(mode="json"))
        return

    W = BOX_WIDTH
    print()
    print(_box_header("COMPACTION", W))
    print(_empty_line(W))
    print(_kv_line("Boundary", stats.boundary.isoformat(), W))
    print(_empty_line(W))
    print(_section_header("Raw events", W))
    print(_kv_line("Rows", f"{stats.total_raw_events:,}", W))
    print(_kv_line("Oldest", stats.oldest_raw_event or "-", W))
    print(_section_header("Compacted aggregates", W))
    print(_kv_line("Rows", f"{stats.total_compacted_records:,}", W))
    print(_kv_line("Oldest", stats.oldest_compacted_record or "-", W))
    print(_section_header("Storage estimate", W))
    estimate = stats.storage_estimate
    print(_kv_line("Raw bytes", f"{estimate.raw_events_bytes:,}", W))
    print(_kv_line("Compacted bytes", f"{estimate.compacted_bytes:,}", W))
    print(_kv_line("Savings", f"{estimate.savings_percentage:.2f}%", W))
    print(_empty_line(W))
    print(_box_bottom(W))
    print()
