# ==============================================================================
# Data Commands
# ==============================================================================
"""
Data management commands for the pulse CLI.
"""

from typing import Annotated

import typer

from pulse.cli.shared import C, I, open_engine, print_json


def data_purge_expired(
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON for scripting")
    ] = False,
) -> None:
    """Delete raw events and aggregates past their retention horizon.

    Audit-trail events never expire and are left untouched.

    Examples:
        pulse data purge-expired
    """
    with open_engine() as engine:
        result = engine.compactor.purge_expired()

    if json_output:
        print_json(result.model_dump())
        return

    print()
    print(
        f"{C.BRIGHT_GREEN}{I.CHECK} Deleted {C.WHITE}{result.raw_events_deleted}"
        f"{C.BRIGHT_GREEN} raw events{C.RESET}"
    )
    print(
        f"{C.BRIGHT_GREEN}{I.CHECK} Deleted {C.WHITE}{result.aggregates_deleted}"
        f"{C.BRIGHT_GREEN} aggregates{C.RESET}"
    )
    print()
