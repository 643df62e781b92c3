"""
MCP (Model Context Protocol) Layer

Execution runtime transport, tool registry and result payload parsing.
"""

from .transport import ExecutionTransport, LaunchSpec, TransportConnection, connect_stdio
from .registry import ToolRegistry, parse_descriptors
from .protocol import (
    RunResult,
    decode_arguments,
    extract_return_value,
    extract_section,
    parse_run_result,
    render_content,
)

__all__ = [
    "ExecutionTransport",
    "LaunchSpec",
    "TransportConnection",
    "connect_stdio",
    "ToolRegistry",
    "parse_descriptors",
    "RunResult",
    "decode_arguments",
    "extract_return_value",
    "extract_section",
    "parse_run_result",
    "render_content",
]
