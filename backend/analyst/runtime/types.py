"""
Analyst Runtime Type Definitions

Core data types: conversation messages, tool descriptors, loop states and
the events published while a query runs.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Dict, Any, Iterator, Optional, Sequence, Union


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================
# Enums
# ============================================


class MessageKind(str, Enum):
    """Discriminant carried by every conversation message"""

    SYSTEM_DIRECTIVE = "system_directive"
    USER_QUERY = "user_query"
    MODEL_RESPONSE = "model_response"
    TOOL_RESULT = "tool_result"


class LoopState(str, Enum):
    """Agent loop state machine states"""

    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"


class EventType(str, Enum):
    """4-tier event system"""

    STREAM = "stream"  # Model text deltas
    STATE = "state"  # Loop state transitions
    MESSAGE = "message"  # Message appended to the conversation
    TURN = "turn"  # Query finished


# ============================================
# Tools
# ============================================


@dataclass(frozen=True)
class ToolDescriptor:
    """A tool exposed by the execution runtime"""

    name: str
    description: str
    input_schema: Dict[str, Any] = field(default_factory=dict, hash=False)

    def to_model_tool(self) -> Dict[str, Any]:
        """Convert to the model's tool definition format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


@dataclass
class ToolInvocationRequest:
    """Tool call requested by the model"""

    id: str
    tool_name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tool_name": self.tool_name,
            "arguments": self.arguments,
        }


# ============================================
# Messages
# ============================================


@dataclass
class SystemDirective:
    """Behavioral contract for the model, one per conversation"""

    content: str
    kind: MessageKind = field(default=MessageKind.SYSTEM_DIRECTIVE, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "content": self.content}


@dataclass
class UserQuery:
    """The user's question"""

    content: str
    kind: MessageKind = field(default=MessageKind.USER_QUERY, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "content": self.content}


@dataclass
class ModelResponse:
    """One model completion: text, tool calls, or both"""

    content: str = ""
    tool_calls: List[ToolInvocationRequest] = field(default_factory=list)
    model: Optional[str] = None
    stop_reason: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
    kind: MessageKind = field(default=MessageKind.MODEL_RESPONSE, init=False)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "content": self.content,
            "tool_calls": [tc.to_dict() for tc in self.tool_calls],
            "model": self.model,
            "stop_reason": self.stop_reason,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
        }


@dataclass
class ToolResult:
    """Outcome of one tool call, correlated by request id"""

    tool_call_id: str
    tool_name: str
    content: str
    is_error: bool = False
    kind: MessageKind = field(default=MessageKind.TOOL_RESULT, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "tool_call_id": self.tool_call_id,
            "tool_name": self.tool_name,
            "content": self.content,
            "is_error": self.is_error,
        }


Message = Union[SystemDirective, UserQuery, ModelResponse, ToolResult]


class ConversationState:
    """
    Ordered, append-only message history of one query.

    A ToolResult is accepted only after the ModelResponse that requested it,
    and only once per request id.
    """

    def __init__(self, messages: Optional[Sequence[Message]] = None):
        self._messages: List[Message] = []
        self._requested: Dict[str, ToolInvocationRequest] = {}
        self._answered: set = set()
        for message in messages or ():
            self.append(message)

    @classmethod
    def seed(cls, system_directive: str, query: str) -> "ConversationState":
        return cls([SystemDirective(system_directive), UserQuery(query)])

    def append(self, message: Message) -> None:
        if isinstance(message, ToolResult):
            if message.tool_call_id not in self._requested:
                raise ValueError(
                    f"Tool result for unknown request id: {message.tool_call_id}"
                )
            if message.tool_call_id in self._answered:
                raise ValueError(
                    f"Duplicate tool result for request id: {message.tool_call_id}"
                )
            self._answered.add(message.tool_call_id)
        elif isinstance(message, ModelResponse):
            for request in message.tool_calls:
                if request.id in self._requested:
                    raise ValueError(f"Duplicate tool request id: {request.id}")
                self._requested[request.id] = request
        self._messages.append(message)

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    @property
    def system_directive(self) -> Optional[SystemDirective]:
        for message in self._messages:
            if isinstance(message, SystemDirective):
                return message
        return None

    @property
    def user_query(self) -> Optional[UserQuery]:
        for message in self._messages:
            if isinstance(message, UserQuery):
                return message
        return None

    @property
    def final_response(self) -> Optional[ModelResponse]:
        """The last model response, if it carries no tool calls."""
        if self._messages and isinstance(self._messages[-1], ModelResponse):
            last = self._messages[-1]
            if not last.has_tool_calls:
                return last
        return None

    @property
    def pending_requests(self) -> List[ToolInvocationRequest]:
        return [r for rid, r in self._requested.items() if rid not in self._answered]

    def trace_messages(self) -> List[Message]:
        """History without the seed directive/query pair."""
        return [
            m for m in self._messages
            if not isinstance(m, (SystemDirective, UserQuery))
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {"messages": [m.to_dict() for m in self._messages]}

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))


# ============================================
# Event Structures (4-Tier)
# ============================================


@dataclass
class AgentEvent:
    """Base event structure"""

    type: EventType
    session_id: str
    data: Any
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = self.data.to_dict() if hasattr(self.data, "to_dict") else self.data
        return {
            "type": self.type.value,
            "session_id": self.session_id,
            "data": data,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class StreamEvent(AgentEvent):
    """Model text delta"""

    def __init__(self, session_id: str, data: str, timestamp: Optional[datetime] = None):
        super().__init__(
            type=EventType.STREAM,
            session_id=session_id,
            data=data,
            timestamp=timestamp or _utcnow(),
        )


@dataclass
class StateEventData:
    """State event data"""

    state: LoopState
    iteration: int = 0
    tool_calls: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "iteration": self.iteration,
            "tool_calls": self.tool_calls,
        }


@dataclass
class StateEvent(AgentEvent):
    """Agent loop state transitions"""

    def __init__(
        self, session_id: str, data: StateEventData, timestamp: Optional[datetime] = None
    ):
        super().__init__(
            type=EventType.STATE,
            session_id=session_id,
            data=data,
            timestamp=timestamp or _utcnow(),
        )


@dataclass
class MessageEvent(AgentEvent):
    """Message appended to the conversation"""

    def __init__(self, session_id: str, data: Message, timestamp: Optional[datetime] = None):
        super().__init__(
            type=EventType.MESSAGE,
            session_id=session_id,
            data=data,
            timestamp=timestamp or _utcnow(),
        )


@dataclass
class TurnEventData:
    """Turn event data"""

    turn_id: str
    iterations: int
    tool_calls: int
    total_tokens: int
    duration_ms: int
    outcome: str = "done"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "turn_id": self.turn_id,
            "iterations": self.iterations,
            "tool_calls": self.tool_calls,
            "total_tokens": self.total_tokens,
            "duration_ms": self.duration_ms,
            "outcome": self.outcome,
        }


@dataclass
class TurnEvent(AgentEvent):
    """Query finished (normally or not)"""

    def __init__(self, session_id: str, data: TurnEventData, timestamp: Optional[datetime] = None):
        super().__init__(
            type=EventType.TURN,
            session_id=session_id,
            data=data,
            timestamp=timestamp or _utcnow(),
        )
