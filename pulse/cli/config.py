# ==============================================================================
# Config Commands
# ==============================================================================
"""
Configuration commands for the pulse CLI.
"""

from typing import Annotated

import typer

from pulse.cli.shared import C, print_json
from pulse.core.models import PlanTier
from pulse.core.retention import RetentionPolicy
from pulse.utils.config import get_settings


def config_show(
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output configuration as JSON")
    ] = False,
) -> None:
    """Display current configuration (includes secrets in JSON mode)."""
    settings = get_settings()
    policy = RetentionPolicy.from_settings(settings)

    if json_output:
        config = {
            "storage": {"backend": settings.storage.backend},
            "postgresql": {
                "host": settings.postgres.host,
                "port": settings.postgres.port,
                "database": settings.postgres.database,
                "schema": settings.postgres.schema_name,
                "user": settings.postgres.user,
                "password": settings.postgres.password,
                "sslmode": settings.postgres.sslmode,
            },
            "valkey": {
                "enabled": settings.valkey.enabled,
                "host": settings.valkey.host,
                "port": settings.valkey.port,
                "db": settings.valkey.db,
                "ssl_enabled": settings.valkey.ssl,
                "password": settings.valkey.password,
                "plan_cache_ttl_seconds": settings.valkey.plan_cache_ttl_seconds,
            },
            "session": settings.session.model_dump(),
            "ingestion": settings.ingestion.model_dump(),
            "retention": settings.retention.model_dump(),
            "compaction": settings.compaction.model_dump(),
            "query": settings.query.model_dump(),
            "log_level": settings.log_level,
        }
        print_json(config)
        return

    print()
    print(f"{C.BOLD}Configuration{C.RESET}")
    print()

    print(f"{C.CYAN}Storage{C.RESET}")
    print(f"  Backend:    {C.WHITE}{settings.storage.backend}{C.RESET}")
    print()

    print(f"{C.CYAN}PostgreSQL{C.RESET}")
    print(f"  Host:       {C.WHITE}{settings.postgres.host}{C.RESET}")
    print(f"  Port:       {C.WHITE}{settings.postgres.port}{C.RESET}")
    print(f"  Database:   {C.WHITE}{settings.postgres.database}{C.RESET}")
    print(f"  Schema:     {C.WHITE}{settings.postgres.schema_name}{C.RESET}")
    print(f"  User:       {C.WHITE}{settings.postgres.user}{C.RESET}")
    print(f"  SSL:        {C.WHITE}{settings.postgres.sslmode}{C.RESET}")
    print()

    print(f"{C.CYAN}Valkey{C.RESET}")
    valkey_status = "enabled" if settings.valkey.enabled else "disabled"
    print(f"  Status:     {C.WHITE}{valkey_status}{C.RESET}")
    print(f"  Host:       {C.WHITE}{settings.valkey.host}{C.RESET}")
    print(f"  Port:       {C.WHITE}{settings.valkey.port}{C.RESET}")
    valkey_ssl = "enabled" if settings.valkey.ssl else "disabled"
    print(f"  SSL:        {C.WHITE}{valkey_ssl}{C.RESET}")
    print()

    print(f"{C.CYAN}Sessions{C.RESET}")
    print(f"  Idle gap:   {C.WHITE}{settings.session.idle_gap_minutes} minutes{C.RESET}")
    print(f"  Resume:     {C.WHITE}{settings.session.resume_window_minutes} minutes{C.RESET}")
    print(f"  Reap after: {C.WHITE}{settings.session.reap_after_minutes} minutes{C.RESET}")
    print()

    print(f"{C.CYAN}Ingestion{C.RESET}")
    print(
        f"  Free limit: {C.WHITE}{settings.ingestion.free_daily_event_limit} events/day{C.RESET}"
    )
    throttle = (
        f"{settings.ingestion.throttle_default_seconds:g}s base"
        if settings.ingestion.throttle_enabled
        else "disabled"
    )
    print(f"  Throttle:   {C.WHITE}{throttle}{C.RESET}")
    print()

    print(f"{C.CYAN}Retention{C.RESET}")
    for tier in PlanTier.ordered():
        print(f"  {tier.value:<11} {C.WHITE}{policy.describe(tier)}{C.RESET}")
    print()

    print(f"{C.CYAN}Compaction{C.RESET}")
    print(f"  Settlement: {C.WHITE}{settings.compaction.settlement_days} days{C.RESET}")
    print(f"  Margin:     {C.WHITE}{settings.compaction.retirement_margin_days} days{C.RESET}")
    print()
