"""
Analyst

Interactive Python data analysis agent: a model decides when to run code,
a sandboxed MCP runtime executes it, and each query is rendered as a
thought → action → observation → answer trace.
"""

__version__ = "1.0.0"

from .errors import (
    AnalystError,
    ConfigurationError,
    TransportUnavailable,
    DiscoveryFailed,
    UnknownTool,
    ToolExecutionError,
    ModelUnavailable,
    LoopExceeded,
)
from .config import AnalystConfig

# Runtime components
from .runtime import (
    AgentLoop,
    AnthropicModelClient,
    ConversationState,
    EventBus,
    ModelClient,
    ModelResponse,
    SystemDirective,
    ToolDescriptor,
    ToolInvocationRequest,
    ToolResult,
    UserQuery,
)
from .mcp import ExecutionTransport, LaunchSpec, ToolRegistry
from .trace import classify, format_trace
from .session import SessionController, build_session, run_once

__all__ = [
    # Errors
    "AnalystError",
    "ConfigurationError",
    "TransportUnavailable",
    "DiscoveryFailed",
    "UnknownTool",
    "ToolExecutionError",
    "ModelUnavailable",
    "LoopExceeded",
    # Config
    "AnalystConfig",
    # Types
    "ConversationState",
    "ModelResponse",
    "SystemDirective",
    "ToolDescriptor",
    "ToolInvocationRequest",
    "ToolResult",
    "UserQuery",
    # Components
    "AgentLoop",
    "AnthropicModelClient",
    "EventBus",
    "ModelClient",
    "ExecutionTransport",
    "LaunchSpec",
    "ToolRegistry",
    "SessionController",
    "build_session",
    "run_once",
    "classify",
    "format_trace",
    # Meta
    "__version__",
]
