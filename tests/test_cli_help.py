# ==============================================================================
# Tests for CLI Help Commands
# ==============================================================================
"""
Tests that all CLI help commands generate the expected output.

Verifies that every command and subcommand in the pulse CLI:
- Exits with code 0 when invoked with --help
- Contains the expected description text
- Lists the expected subcommands or options

These tests use the real app from pulse.app so the full command tree is
wired up and Typer can introspect every command signature.
"""

import pytest
from typer.testing import CliRunner

from pulse.app import app

runner = CliRunner()


# ==============================================================================
# Root App
# ==============================================================================


class TestRootHelp:
    """Tests for the root `pulse --help` output."""

    def test_exit_code(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0

    def test_description(self):
        result = runner.invoke(app, ["--help"])
        assert "Session activity and tiered analytics engine CLI" in result.output

    def test_lists_all_subcommands(self):
        result = runner.invoke(app, ["--help"])
        for cmd in ["analytics", "compact", "config", "data", "db", "sessions"]:
            assert cmd in result.output, f"Missing command: {cmd}"


# ==============================================================================
# Sub-apps
# ==============================================================================

SUB_APPS = {
    "compact": ("Raw event compaction", ["day", "pending", "stats"]),
    "sessions": ("Session maintenance", ["reap", "end-all"]),
    "data": ("Data management operations", ["purge-expired"]),
    "analytics": ("Merged analytics reports", ["show"]),
    "db": ("Database schema management", ["init", "reset"]),
    "config": ("Configuration management", ["show"]),
}


class TestSubAppHelp:
    @pytest.mark.parametrize("name", sorted(SUB_APPS))
    def test_description_and_commands(self, name):
        description, commands = SUB_APPS[name]
        result = runner.invoke(app, [name, "--help"])
        assert result.exit_code == 0
        assert description in result.output
        for cmd in commands:
            assert cmd in result.output, f"Missing {name} command: {cmd}"


# ==============================================================================
# Commands
# ==============================================================================


class TestCommandHelp:
    def test_compact_day(self):
        result = runner.invoke(app, ["compact", "day", "--help"])
        assert result.exit_code == 0
        assert "Compact one settled UTC day" in result.output
        assert "--json" in result.output

    def test_sessions_reap(self):
        result = runner.invoke(app, ["sessions", "reap", "--help"])
        assert result.exit_code == 0
        assert "--idle-minutes" in result.output

    def test_analytics_show(self):
        result = runner.invoke(app, ["analytics", "show", "--help"])
        assert result.exit_code == 0
        for option in ["--user", "--project", "--days", "--json"]:
            assert option in result.output

    def test_db_reset(self):
        result = runner.invoke(app, ["db", "reset", "--help"])
        assert result.exit_code == 0
        assert "--yes" in result.output
