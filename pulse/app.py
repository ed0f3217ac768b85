# ==============================================================================
# Pulse CLI
# ==============================================================================
"""
Command-line interface for the pulse analytics engine.

This is the scheduler and operator surface: cron runs `compact pending` daily,
`sessions reap` every few minutes and `data purge-expired` as a retention
sweep.

Usage:
    pulse --help
    pulse config show
    pulse db init
    pulse db reset -y
    pulse compact pending
    pulse compact day 2024-03-01
    pulse compact stats
    pulse sessions reap
    pulse sessions end-all -y
    pulse data purge-expired
    pulse analytics show --user u-123
"""

import logging
import os

import typer

from pulse.utils.config import get_settings

# ==============================================================================
# App Configuration
# ==============================================================================
# Set consistent terminal width for help output formatting
if "COLUMNS" not in os.environ:
    os.environ["COLUMNS"] = "115"

app = typer.Typer(
    name="pulse",
    help="Session activity and tiered analytics engine CLI",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


@app.callback()
def configure_logging() -> None:
    """Session activity and tiered analytics engine CLI."""
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


compact_app = typer.Typer(
    help="Raw event compaction",
    no_args_is_help=True,
)
app.add_typer(compact_app, name="compact")

from pulse.cli.compact import compact_day, compact_pending, compact_stats

compact_app.command("day")(compact_day)
compact_app.command("pending")(compact_pending)
compact_app.command("stats")(compact_stats)

sessions_app = typer.Typer(
    help="Session maintenance",
    no_args_is_help=True,
)
app.add_typer(sessions_app, name="sessions")

from pulse.cli.sessions import sessions_end_all, sessions_reap

sessions_app.command("reap")(sessions_reap)
sessions_app.command("end-all")(sessions_end_all)

data_app = typer.Typer(
    help="Data management operations",
    no_args_is_help=True,
)
app.add_typer(data_app, name="data")

from pulse.cli.data import data_purge_expired

data_app.command("purge-expired")(data_purge_expired)

analytics_app = typer.Typer(
    help="Merged analytics reports",
    no_args_is_help=True,
)
app.add_typer(analytics_app, name="analytics")

from pulse.cli.analytics import show_analytics

analytics_app.command("show")(show_analytics)

db_app = typer.Typer(
    help="Database schema management",
    no_args_is_help=True,
)
app.add_typer(db_app, name="db")

from pulse.cli.db import db_init, db_reset

db_app.command("init")(db_init)
db_app.command("reset")(db_reset)

config_app = typer.Typer(
    help="Configuration management",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")

from pulse.cli.config import config_show

config_app.command("show")(config_show)


# ==============================================================================
# Entry Point
# ==============================================================================


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
