"""
Execution runtime payload parsing.

The runtime reports a code run as tagged sections::

    <status>success</status>
    <output>
    Stochastic matrix created
    </output>
    <return_value>
    [1.0, 1.0, 1.0, 1.0, 1.0]
    </return_value>

`<return_value>` carries the programmatic result, distinct from printed
output. All tag scraping lives here; consumers call extract_return_value()
or parse_run_result() and never match delimiters themselves.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional


_SECTION_PATTERNS = {}


def _section_pattern(tag: str) -> "re.Pattern[str]":
    pattern = _SECTION_PATTERNS.get(tag)
    if pattern is None:
        pattern = re.compile(
            rf"<{re.escape(tag)}>\r?\n?(.*?)\r?\n?</{re.escape(tag)}>", re.DOTALL
        )
        _SECTION_PATTERNS[tag] = pattern
    return pattern


def extract_section(payload: str, tag: str) -> Optional[str]:
    """Body of the first ``<tag>...</tag>`` region, or None when absent."""
    if not isinstance(payload, str):
        return None
    match = _section_pattern(tag).search(payload)
    if match is None:
        return None
    return match.group(1)


def extract_return_value(payload: str) -> str:
    """
    Return value embedded in a run result, falling back to the whole payload.

    An empty ``<return_value>`` region counts as absent.
    """
    value = extract_section(payload, "return_value")
    if value is None or not value.strip():
        return payload
    return value


@dataclass
class RunResult:
    """Parsed code-run payload"""

    raw: str
    status: Optional[str] = None
    output: Optional[str] = None
    return_value: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        if self.status is None:
            return self.error is None
        return self.status.strip().lower() == "success"


def parse_run_result(payload: str) -> RunResult:
    """Split a run payload into its tagged sections. Untagged payloads keep only raw."""
    return RunResult(
        raw=payload,
        status=extract_section(payload, "status"),
        output=extract_section(payload, "output"),
        return_value=extract_section(payload, "return_value"),
        error=extract_section(payload, "error"),
    )


def render_content(content: Iterable[Any]) -> str:
    """
    Flatten MCP result content blocks into one text payload.

    Text blocks are joined with newlines; binary blocks are summarized.
    """
    parts = []
    for item in content or ():
        text = getattr(item, "text", None)
        if isinstance(text, str):
            parts.append(text)
            continue

        data = getattr(item, "data", None)
        if data is not None:
            mime_type = getattr(item, "mimeType", None) or "application/octet-stream"
            label = getattr(item, "type", None) or "binary"
            parts.append(f"[{label}: {mime_type}, {len(data)} bytes]")
            continue

        resource = getattr(item, "resource", None)
        if resource is not None:
            resource_text = getattr(resource, "text", None)
            if isinstance(resource_text, str):
                parts.append(resource_text)
            else:
                parts.append(f"[resource: {getattr(resource, 'uri', '')}]")
            continue

        uri = getattr(item, "uri", None)
        if uri is not None:
            parts.append(f"[resource: {uri}]")
            continue

        parts.append(str(item))
    return "\n".join(parts)


def decode_arguments(value: Any) -> Any:
    """Decode tool arguments that arrive as JSON text; anything else is returned as is."""
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value
