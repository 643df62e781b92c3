"""
Analyst error taxonomy.

Failures local to one tool call are folded into the conversation by the
registry; transport and model failures propagate out of the agent loop.
"""

from typing import Iterable, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .runtime.types import ConversationState


class AnalystError(Exception):
    """Base class for every error raised by the analyst runtime."""


class ConfigurationError(AnalystError, ValueError):
    """Configuration is missing or invalid. Fatal at startup."""


class TransportUnavailable(AnalystError):
    """The execution runtime channel is gone and the restart budget is spent."""


class DiscoveryFailed(AnalystError):
    """The tool list could not be obtained from the execution runtime."""


class UnknownTool(AnalystError):
    """The model asked for a tool the registry does not know."""

    def __init__(self, tool_name: str, available: Iterable[str] = ()):
        self.tool_name = tool_name
        self.available = sorted(available)
        listing = ", ".join(self.available) or "none"
        super().__init__(f"Unknown tool '{tool_name}'. Available tools: {listing}")


class ToolExecutionError(AnalystError):
    """A tool call failed, either inside the runtime or on the way to it."""

    def __init__(self, tool_name: str, detail: str):
        self.tool_name = tool_name
        self.detail = detail
        super().__init__(f"Tool '{tool_name}' failed: {detail}")


class ModelUnavailable(AnalystError):
    """The model interface failed (network, auth, provider error)."""


class LoopExceeded(AnalystError):
    """The agent loop hit its iteration bound before a final answer."""

    def __init__(self, max_iterations: int, state: Optional["ConversationState"] = None):
        self.max_iterations = max_iterations
        self.state = state
        super().__init__(
            f"Agent loop stopped after {max_iterations} model calls without a final answer"
        )


__all__ = [
    "AnalystError",
    "ConfigurationError",
    "TransportUnavailable",
    "DiscoveryFailed",
    "UnknownTool",
    "ToolExecutionError",
    "ModelUnavailable",
    "LoopExceeded",
]
