# ==============================================================================
# Database Commands
# ==============================================================================
"""
Database schema commands for the pulse CLI (PostgreSQL backend only).
"""

from typing import Annotated

import typer

from pulse.cli.shared import C, I, fail
from pulse.infrastructure.repositories.postgresql import check_postgresql_connection
from pulse.utils.config import get_settings


def db_init() -> None:
    """Create the database and schema if they do not exist.

    Examples:
        pulse db init
    """
    from pulse.utils.db import ensure_schema

    settings = get_settings()
    schema_name = settings.postgres.schema_name
    print(f"  Initializing schema '{C.WHITE}{schema_name}{C.RESET}'...")
    try:
        created = ensure_schema(settings)
    except RuntimeError as e:
        fail(str(e))

    if created:
        print(f"{C.BRIGHT_GREEN}{I.CHECK} Schema '{schema_name}' created{C.RESET}")
    else:
        print(f"{C.BRIGHT_GREEN}{I.CHECK} Schema '{schema_name}' already exists{C.RESET}")


def db_reset(
    confirm: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")] = False,
) -> None:
    """Drop and recreate the schema (DELETES ALL DATA).

    Examples:
        pulse db reset       # With confirmation prompt
        pulse db reset -y    # Skip confirmation
    """
    from pulse.utils.db import reset_schema

    settings = get_settings()
    schema_name = settings.postgres.schema_name

    if not check_postgresql_connection(settings):
        fail("Cannot connect to PostgreSQL")

    if not confirm:
        typer.confirm(
            f"This will DELETE all data in schema '{schema_name}'. Are you sure?",
            abort=True,
        )

    print(f"  Resetting schema '{C.WHITE}{schema_name}{C.RESET}'...")
    try:
        reset_schema(settings)
    except RuntimeError as e:
        fail(str(e))
    print(f"{C.BRIGHT_GREEN}{I.CHECK} Schema '{schema_name}' reset{C.RESET}")
