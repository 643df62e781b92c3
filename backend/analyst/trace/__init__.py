"""
Trace classification and rendering.
"""

from .classifier import (
    PlannedCall,
    PlanningRecord,
    ExecutionRecord,
    ConclusionRecord,
    UnknownRecord,
    TraceRecord,
    classify,
    classify_message,
    summarize,
)
from .formatter import format_trace, format_tools

__all__ = [
    "PlannedCall",
    "PlanningRecord",
    "ExecutionRecord",
    "ConclusionRecord",
    "UnknownRecord",
    "TraceRecord",
    "classify",
    "classify_message",
    "summarize",
    "format_trace",
    "format_tools",
]
