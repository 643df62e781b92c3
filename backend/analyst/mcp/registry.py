"""
Tool registry backed by the execution runtime.

Tools are discovered over the transport once per connection and invoked
by name. Failures local to one call come back as error-tagged ToolResults
so the model can read them and recover.
"""

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Tuple

from mcp.shared.exceptions import McpError

from .protocol import render_content
from .transport import ExecutionTransport
from ..errors import DiscoveryFailed, ToolExecutionError, TransportUnavailable, UnknownTool
from ..runtime.types import ToolDescriptor, ToolInvocationRequest, ToolResult
from ...utils.logger import get_logger

logger = get_logger(__name__)


def _descriptor_from(tool: Any) -> ToolDescriptor:
    if isinstance(tool, dict):
        name = tool.get("name")
        description = tool.get("description")
        schema = tool.get("inputSchema", tool.get("input_schema"))
    else:
        name = getattr(tool, "name", None)
        description = getattr(tool, "description", None)
        schema = getattr(tool, "inputSchema", None)

    if not isinstance(name, str) or not name.strip():
        raise DiscoveryFailed(f"Tool descriptor without a name: {tool!r}")
    if description is not None and not isinstance(description, str):
        raise DiscoveryFailed(f"Tool '{name}' has a non-text description")
    if schema is None:
        schema = {"type": "object", "properties": {}}
    if not isinstance(schema, dict):
        raise DiscoveryFailed(f"Tool '{name}' has a malformed input schema")

    return ToolDescriptor(name=name, description=description or "", input_schema=dict(schema))


def parse_descriptors(tools: Iterable[Any]) -> Tuple[ToolDescriptor, ...]:
    """Validate raw runtime tool entries. Names must be unique."""
    descriptors: List[ToolDescriptor] = []
    seen = set()
    for tool in tools:
        descriptor = _descriptor_from(tool)
        if descriptor.name in seen:
            raise DiscoveryFailed(f"Duplicate tool name from runtime: {descriptor.name}")
        seen.add(descriptor.name)
        descriptors.append(descriptor)
    return tuple(descriptors)


class ToolRegistry:
    """
    Runtime tools as invocable units for the agent loop.

    The descriptor set is fixed per transport connection; a restarted
    connection is rediscovered on the next discover().
    """

    def __init__(self, transport: ExecutionTransport):
        self._transport = transport
        self._descriptors: Optional[Tuple[ToolDescriptor, ...]] = None
        self._by_name: Dict[str, ToolDescriptor] = {}
        self._generation: Optional[int] = None

    @property
    def discovered(self) -> bool:
        return self._descriptors is not None

    @property
    def descriptors(self) -> Tuple[ToolDescriptor, ...]:
        return self._descriptors or ()

    @property
    def names(self) -> List[str]:
        return [d.name for d in self.descriptors]

    def get(self, name: str) -> Optional[ToolDescriptor]:
        return self._by_name.get(name)

    def to_model_tools(self) -> List[Dict[str, Any]]:
        return [d.to_model_tool() for d in self.descriptors]

    async def discover(self) -> Tuple[ToolDescriptor, ...]:
        """
        Fetch the runtime's tool descriptors.

        Raises:
            DiscoveryFailed: the listing failed or returned malformed descriptors
        """
        if (
            self._descriptors is not None
            and self._transport.is_alive
            and self._generation == self._transport.generation
        ):
            return self._descriptors

        try:
            result = await self._transport.list_tools()
        except TransportUnavailable as e:
            raise DiscoveryFailed(f"Execution runtime unavailable: {e}") from e
        except asyncio.TimeoutError as e:
            raise DiscoveryFailed(
                f"Tool listing timed out after {self._transport.call_timeout}s"
            ) from e
        except McpError as e:
            raise DiscoveryFailed(f"Runtime rejected tool listing: {e}") from e
        except Exception as e:
            raise DiscoveryFailed(f"Tool listing failed: {e}") from e

        descriptors = parse_descriptors(getattr(result, "tools", None) or [])
        self._descriptors = descriptors
        self._by_name = {d.name: d for d in descriptors}
        self._generation = self._transport.generation
        logger.info(
            "Tools discovered",
            count=len(descriptors),
            tools=",".join(self.names),
            generation=self._generation,
        )
        return descriptors

    async def invoke(self, request: ToolInvocationRequest) -> ToolResult:
        """
        Run one tool call.

        Unknown tools, runtime-reported errors, timeouts and other failures
        of this one call come back as error-tagged results. Only a dead
        transport raises.

        Raises:
            ToolExecutionError: the transport is unavailable
        """
        if self.get(request.tool_name) is None:
            error = UnknownTool(request.tool_name, self.names)
            logger.warning("Model requested unknown tool", tool_name=request.tool_name)
            return self._error_result(request, str(error))

        logger.info("Dispatching tool call", tool_name=request.tool_name, tool_call_id=request.id)
        try:
            result = await self._transport.call(request.tool_name, request.arguments)
        except TransportUnavailable as e:
            logger.error("Tool call lost its transport", tool_name=request.tool_name, error=str(e))
            raise ToolExecutionError(request.tool_name, str(e)) from e
        except asyncio.TimeoutError:
            error = ToolExecutionError(
                request.tool_name, f"timed out after {self._transport.call_timeout}s"
            )
            logger.warning("Tool call timed out", tool_name=request.tool_name)
            return self._error_result(request, str(error))
        except McpError as e:
            error = ToolExecutionError(request.tool_name, str(e))
            logger.warning("Runtime rejected tool call", tool_name=request.tool_name, error=str(e))
            return self._error_result(request, str(error))
        except Exception as e:
            # The transport classifies channel loss itself; anything else
            # failed this call only.
            error = ToolExecutionError(request.tool_name, f"{type(e).__name__}: {e}")
            logger.error(
                "Tool call failed", exc_info=True, tool_name=request.tool_name, error=str(e)
            )
            return self._error_result(request, str(error))

        payload = render_content(getattr(result, "content", None) or [])
        if getattr(result, "isError", False):
            logger.warning("Tool reported an error", tool_name=request.tool_name)
            error = ToolExecutionError(request.tool_name, payload or "no details")
            return self._error_result(request, str(error))

        logger.info("Tool call finished", tool_name=request.tool_name, tool_call_id=request.id)
        return ToolResult(
            tool_call_id=request.id,
            tool_name=request.tool_name,
            content=payload,
        )

    @staticmethod
    def _error_result(request: ToolInvocationRequest, content: str) -> ToolResult:
        return ToolResult(
            tool_call_id=request.id,
            tool_name=request.tool_name,
            content=content,
            is_error=True,
        )
