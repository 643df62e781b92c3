"""
Trace classifier.

Projects a finished conversation into display records: planning steps,
execution results and the conclusion. A message that does not fit any
shape becomes an UnknownRecord; classification never fails the trace.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from ..mcp.protocol import decode_arguments, extract_return_value, parse_run_result
from ..runtime.types import ConversationState, MessageKind
from ...utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PlannedCall:
    tool_name: str
    arguments: Any
    call_id: Optional[str] = None


@dataclass(frozen=True)
class PlanningRecord:
    step: int
    calls: List[PlannedCall] = field(default_factory=list)
    text: str = ""


@dataclass(frozen=True)
class ExecutionRecord:
    step: int
    tool_name: str
    output: str
    raw: str
    is_error: bool = False
    has_return_value: bool = False


@dataclass(frozen=True)
class ConclusionRecord:
    step: int
    text: str


@dataclass(frozen=True)
class UnknownRecord:
    step: int
    kind: str
    content: Any = None


TraceRecord = Union[PlanningRecord, ExecutionRecord, ConclusionRecord, UnknownRecord]

_SEED_KINDS = {MessageKind.SYSTEM_DIRECTIVE.value, MessageKind.USER_QUERY.value}


def _field(message: Any, name: str, default: Any = None) -> Any:
    if isinstance(message, dict):
        return message.get(name, default)
    return getattr(message, name, default)


def _kind_of(message: Any) -> Optional[str]:
    kind = _field(message, "kind") or _field(message, "type")
    if isinstance(kind, MessageKind):
        return kind.value
    return kind if isinstance(kind, str) else None


def _raw_content(message: Any) -> Any:
    content = _field(message, "content")
    if content is None and isinstance(message, dict):
        content = (message.get("kwargs") or {}).get("content")
    return content if content is not None else "No content"


def _planned_call(request: Any) -> PlannedCall:
    name = _field(request, "tool_name") or _field(request, "name")
    if not isinstance(name, str):
        raise ValueError(f"tool call without a name: {request!r}")
    return PlannedCall(
        tool_name=name,
        arguments=decode_arguments(_field(request, "arguments", {})),
        call_id=_field(request, "id"),
    )


def classify_message(message: Any, step: int) -> TraceRecord:
    """Classify one message. Malformed shapes degrade to UnknownRecord."""
    kind = _kind_of(message)
    try:
        if kind == MessageKind.MODEL_RESPONSE.value:
            requests = _field(message, "tool_calls") or []
            text = _field(message, "content") or ""
            if requests:
                return PlanningRecord(
                    step=step,
                    calls=[_planned_call(r) for r in requests],
                    text=text,
                )
            if not isinstance(text, str):
                raise ValueError("final response without text content")
            return ConclusionRecord(step=step, text=text)

        if kind == MessageKind.TOOL_RESULT.value:
            raw = _field(message, "content")
            if not isinstance(raw, str):
                raise ValueError("tool result without text content")
            output = extract_return_value(raw)
            is_error = bool(_field(message, "is_error", False))
            if not is_error and not parse_run_result(raw).succeeded:
                is_error = True
            return ExecutionRecord(
                step=step,
                tool_name=_field(message, "tool_name") or "unknown",
                output=output,
                raw=raw,
                is_error=is_error,
                has_return_value=output is not raw,
            )
    except Exception as e:
        logger.warning("Unclassifiable message", step=step, kind=kind, error=str(e))

    return UnknownRecord(step=step, kind=kind or "unknown", content=_raw_content(message))


def classify(conversation: Union[ConversationState, Iterable[Any]]) -> List[TraceRecord]:
    """
    Classify a conversation into trace records, skipping the seed
    directive/query pair. Steps are numbered from 1.
    """
    if isinstance(conversation, ConversationState):
        messages: List[Any] = conversation.trace_messages()
    else:
        messages = [m for m in conversation if _kind_of(m) not in _SEED_KINDS]

    return [classify_message(message, step) for step, message in enumerate(messages, start=1)]


def summarize(records: Iterable[TraceRecord]) -> Dict[str, int]:
    """Record counts by type name, for logging."""
    counts: Dict[str, int] = {}
    for record in records:
        name = type(record).__name__
        counts[name] = counts.get(name, 0) + 1
    return counts
