"""Load patterns for LoadStage.

A load pattern maps elapsed run time to a target virtual-user count.  The
:class:`StagedPattern` chains linear ramps between stage targets, the same
model as a k6 ``stages`` option.
"""

from __future__ import annotations

from loadstage.patterns.base import LoadPattern
from loadstage.patterns.staged import Stage, StagedPattern, format_duration, parse_duration

__all__ = [
    "LoadPattern",
    "Stage",
    "StagedPattern",
    "format_duration",
    "parse_duration",
]
