"""
Trace rendering for the terminal.
"""

import json
from typing import Any, Iterable, List, Sequence

from .classifier import (
    ConclusionRecord,
    ExecutionRecord,
    PlanningRecord,
    TraceRecord,
    UnknownRecord,
)
from ..runtime.types import ToolDescriptor

HEADER = "=== Agent Execution Steps ==="
FOOTER = "=== End of Agent Execution ==="

# Argument names that carry source code to fence
CODE_ARGUMENTS = ("python_code", "code")


def _code_of(arguments: Any) -> str:
    if isinstance(arguments, dict):
        for name in CODE_ARGUMENTS:
            code = arguments.get(name)
            if isinstance(code, str) and code:
                return code
    return ""


def _render_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    try:
        return json.dumps(content, indent=2, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(content)


def _planning_lines(record: PlanningRecord) -> List[str]:
    lines = ["", "📝 AGENT PLANNING:"]
    if record.text:
        lines.append(record.text)
    lines.append("The agent decided to execute Python code to solve this problem.")
    for call in record.calls:
        code = _code_of(call.arguments)
        if code:
            lines.extend(["", "💻 PYTHON CODE GENERATED:", "```python", code, "```"])
        else:
            lines.append(f"Tool call: {call.tool_name}({_render_content(call.arguments)})")
    return lines


def _execution_lines(record: ExecutionRecord) -> List[str]:
    title = "🔍 EXECUTION RESULT (error):" if record.is_error else "🔍 EXECUTION RESULT:"
    return ["", title, record.output]


def format_record(record: TraceRecord) -> List[str]:
    lines = ["", f"--- Step {record.step} ---"]
    if isinstance(record, PlanningRecord):
        lines.extend(_planning_lines(record))
    elif isinstance(record, ExecutionRecord):
        lines.extend(_execution_lines(record))
    elif isinstance(record, ConclusionRecord):
        lines.extend(["", "✅ CONCLUSION:", record.text])
    elif isinstance(record, UnknownRecord):
        lines.append(f"Message type: {record.kind}")
        lines.append(f"Content: {_render_content(record.content)}")
    return lines


def format_trace(records: Sequence[TraceRecord]) -> str:
    """Render classified records as the step-by-step execution trace."""
    lines = [HEADER, f"Total agent steps: {len(records)}"]
    for record in records:
        lines.extend(format_record(record))
    lines.extend(["", FOOTER])
    return "\n".join(lines)


def format_tools(descriptors: Iterable[ToolDescriptor]) -> str:
    """One "- name: description" line per tool."""
    return "\n".join(f"- {d.name}: {d.description}" for d in descriptors)
