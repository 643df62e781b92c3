"""
Analyst Runtime Core

Agent loop, model client, event bus and the conversation data model.
"""

from .types import (
    MessageKind,
    LoopState,
    EventType,
    ToolDescriptor,
    ToolInvocationRequest,
    SystemDirective,
    UserQuery,
    ModelResponse,
    ToolResult,
    Message,
    ConversationState,
    AgentEvent,
    StreamEvent,
    StateEvent,
    StateEventData,
    MessageEvent,
    TurnEvent,
    TurnEventData,
)
from .event_bus import EventBus
from .model_client import ModelClient, AnthropicModelClient, convert_messages
from .agent_loop import AgentLoop

__all__ = [
    # Types
    "MessageKind",
    "LoopState",
    "EventType",
    "ToolDescriptor",
    "ToolInvocationRequest",
    "SystemDirective",
    "UserQuery",
    "ModelResponse",
    "ToolResult",
    "Message",
    "ConversationState",
    "AgentEvent",
    "StreamEvent",
    "StateEvent",
    "StateEventData",
    "MessageEvent",
    "TurnEvent",
    "TurnEventData",
    # Components
    "EventBus",
    "ModelClient",
    "AnthropicModelClient",
    "convert_messages",
    "AgentLoop",
]
