# ==============================================================================
# CLI Commands Module
# ==============================================================================
"""
CLI commands for the pulse analytics engine.

Commands are organized into separate modules:
- shared.py: Colors, box drawing and the engine helper
- compact.py: Daily compaction and store statistics
- sessions.py: Session reaper and shutdown
- data.py: Retention purge
- analytics.py: Merged analytics report
- db.py: Schema management
- config.py: Configuration display
"""

from pulse.cli.shared import (
    BOX_WIDTH,
    B,
    Box,
    C,
    Colors,
    I,
    Icons,
    fail,
    open_engine,
    print_json,
)

__all__ = [
    "BOX_WIDTH",
    "B",
    "Box",
    "C",
    "Colors",
    "I",
    "Icons",
    "fail",
    "open_engine",
    "print_json",
]
