# ==============================================================================
# Session Commands
# ==============================================================================
"""
Session maintenance commands for the pulse CLI.

`sessions reap` is the periodic reaper; `sessions end-all` is run on shutdown.
"""

from datetime import timedelta
from typing import Annotated, Optional

import typer

from pulse.cli.shared import C, I, open_engine, print_json


def sessions_reap(
    idle_minutes: Annotated[
        Optional[int],
        typer.Option(
            "--idle-minutes",
            "-m",
            min=1,
            help="End sessions idle for longer than this (default: SESSION_REAP_AFTER_MINUTES)",
        ),
    ] = None,
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON for scripting")
    ] = False,
) -> None:
    """Force-end active sessions with no recent activity.

    Reaped sessions end at their last recorded activity.

    Examples:
        pulse sessions reap
        pulse sessions reap -m 30
    """
    threshold = timedelta(minutes=idle_minutes) if idle_minutes is not None else None
    with open_engine() as engine:
        reaped = engine.tracker.reap_inactive(threshold)

    if json_output:
        print_json({"reaped": reaped})
    else:
        print(f"{C.BRIGHT_GREEN}{I.CHECK} Reaped {C.WHITE}{reaped}{C.BRIGHT_GREEN} sessions{C.RESET}")


def sessions_end_all(
    confirm: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")] = False,
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON for scripting")
    ] = False,
) -> None:
    """End every active session (process shutdown).

    Examples:
        pulse sessions end-all -y
    """
    if not confirm:
        typer.confirm("This will end ALL active sessions. Are you sure?", abort=True)

    with open_engine() as engine:
        ended = engine.tracker.end_all()

    if json_output:
        print_json({"ended": ended})
    else:
        print(f"{C.BRIGHT_GREEN}{I.CHECK} Ended {C.WHITE}{ended}{C.BRIGHT_GREEN} sessions{C.RESET}")
