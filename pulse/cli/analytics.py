# ==============================================================================
# Analytics Command
# ==============================================================================
"""
Analytics command for the pulse CLI.

Reads merged raw + compacted metrics through the query service, so results
are the same whether or not the window has been compacted.
"""

from datetime import timedelta
from typing import Annotated, Optional

import typer

from pulse.cli.shared import (
    BOX_WIDTH,
    C,
    _box_bottom,
    _box_header,
    _box_line,
    _empty_line,
    _kv_line,
    _section_header,
    fail,
    open_engine,
    print_json,
)
from pulse.core.exceptions import QueryTimeoutError
from pulse.core.models import QueryFilters
from pulse.utils.clock import utc_now


def _print_counts_by_type(by_type: dict[str, int], width: int) -> None:
    if not by_type:
        print(_box_line(f"  {C.DIM}no events{C.RESET}", width))
        return
    for event_type, count in sorted(by_type.items(), key=lambda item: (-item[1], item[0])):
        print(_kv_line(event_type, f"{count:,}", width))


# ==============================================================================
# Commands
# ==============================================================================


def show_analytics(
    user_id: Annotated[
        Optional[str], typer.Option("--user", "-u", help="Summarize a single user")
    ] = None,
    project_id: Annotated[
        Optional[str], typer.Option("--project", "-p", help="Restrict to one project")
    ] = None,
    days: Annotated[int, typer.Option("--days", "-d", min=1, help="Look-back window in days")] = 30,
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON for scripting")
    ] = False,
) -> None:
    """Show event counts, unique users and conversion metrics.

    With --user, shows that user's plan, retention, remaining daily quota and
    per-project active time instead of global totals.

    Examples:
        pulse analytics show
        pulse analytics show --days 7 --json
        pulse analytics show --user u-123
    """
    try:
        with open_engine() as engine:
            if user_id is not None:
                summary = engine.queries.get_user_summary(
                    user_id,
                    days=days,
                    daily_events_remaining=engine.recorder.daily_events_remaining(user_id),
                )
                projects = engine.tracker.project_time_summary(user_id, days=days)
                report = {
                    "summary": summary.model_dump(mode="json"),
                    "projects": [p.model_dump(mode="json") for p in projects],
                }
            else:
                filters = QueryFilters(
                    project_id=project_id, start_date=utc_now() - timedelta(days=days)
                )
                report = {
                    "days": days,
                    "project_id": project_id,
                    "total_events": engine.queries.count_events(filters),
                    "events_by_type": engine.queries.count_events_by_type(filters),
                    "conversions": engine.queries.get_conversion_metrics(filters).model_dump(),
                }
    except QueryTimeoutError as e:
        fail(str(e), json_output)

    if json_output:
        print_json(report)
        return

    W = BOX_WIDTH
    print()
    if user_id is not None:
        summary = report["summary"]
        print(_box_header(f"USER {user_id}", W))
        print(_empty_line(W))
        print(_kv_line("Plan", summary["plan_tier"], W))
        print(_kv_line("Retention", summary["retention"], W))
        remaining = summary["daily_events_remaining"]
        print(_kv_line("Events left today", "unlimited" if remaining is None else remaining, W))
        print(_kv_line(f"Events ({days}d)", f"{summary['total_events']:,}", W))
        print(_section_header("Events by type", W))
        _print_counts_by_type(summary["events_by_type"], W)
        print(_section_header("Project time", W))
        if not report["projects"]:
            print(_box_line(f"  {C.DIM}no tracked project time{C.RESET}", W))
        for project in report["projects"]:
            minutes = project["total_seconds"] / 60
            print(_kv_line(project["project_id"], f"{minutes:,.1f} min", W))
    else:
        conversions = report["conversions"]
        title = "PULSE ANALYTICS" if project_id is None else f"PROJECT {project_id}"
        print(_box_header(title, W))
        print(_empty_line(W))
        print(_kv_line(f"Events ({days}d)", f"{report['total_events']:,}", W))
        print(_kv_line("Unique users", f"{conversions['unique_users']:,}", W))
        print(_section_header("Conversions", W))
        print(_kv_line("Conversions", f"{conversions['total_conversions']:,}", W))
        print(_kv_line("Revenue", f"{conversions['total_revenue']:,.2f}", W))
        print(_kv_line("Conversion rate", f"{conversions['conversion_rate']:.2f}%", W))
        print(_section_header("Events by type", W))
        _print_counts_by_type(report["events_by_type"], W)
    print(_empty_line(W))
    print(_box_bottom(W))
    print()
