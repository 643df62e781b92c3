"""
Analyst Model Client

Claude API integration with streaming support and tool calling.
"""

import asyncio
from typing import List, Dict, Any, Optional, Protocol, Sequence, TYPE_CHECKING

import anthropic
from anthropic import AsyncAnthropic

from .types import (
    Message,
    ModelResponse,
    StreamEvent,
    SystemDirective,
    ToolDescriptor,
    ToolInvocationRequest,
    ToolResult,
    UserQuery,
)
from .event_bus import EventBus
from ..errors import ModelUnavailable
from ...utils.logger import get_logger

if TYPE_CHECKING:
    from ..config import AnalystConfig

logger = get_logger(__name__)


class ModelClient(Protocol):
    """Anything that can pick the next step of a conversation."""

    async def generate(
        self,
        system_directive: str,
        messages: Sequence[Message],
        tools: Sequence[ToolDescriptor],
    ) -> ModelResponse:
        ...


def convert_messages(messages: Sequence[Message]) -> List[Dict[str, Any]]:
    """
    Convert conversation messages to Anthropic API format.

    The system directive is sent separately and skipped here. Consecutive
    tool results are grouped into one user message, as the API requires.
    """
    converted: List[Dict[str, Any]] = []
    pending_results: List[Dict[str, Any]] = []

    def flush_results() -> None:
        if pending_results:
            converted.append({"role": "user", "content": list(pending_results)})
            pending_results.clear()

    for message in messages:
        if isinstance(message, ToolResult):
            pending_results.append({
                "type": "tool_result",
                "tool_use_id": message.tool_call_id,
                "content": message.content,
                "is_error": message.is_error,
            })
            continue

        flush_results()

        if isinstance(message, SystemDirective):
            continue

        if isinstance(message, UserQuery):
            converted.append({"role": "user", "content": message.content})

        elif isinstance(message, ModelResponse):
            content: List[Dict[str, Any]] = []
            if message.content:
                content.append({"type": "text", "text": message.content})
            for tc in message.tool_calls:
                content.append({
                    "type": "tool_use",
                    "id": tc.id,
                    "name": tc.tool_name,
                    "input": tc.arguments,
                })
            converted.append({"role": "assistant", "content": content})

    flush_results()
    return converted


def to_model_response(final_message: Any) -> ModelResponse:
    """Build a ModelResponse from a final Anthropic message."""
    text_parts = []
    tool_calls = []
    for block in getattr(final_message, "content", None) or []:
        block_type = getattr(block, "type", None)
        if block_type == "text":
            text_parts.append(block.text)
        elif block_type == "tool_use":
            arguments = block.input if isinstance(block.input, dict) else {"input": block.input}
            tool_calls.append(
                ToolInvocationRequest(id=block.id, tool_name=block.name, arguments=arguments)
            )

    usage = getattr(final_message, "usage", None)
    return ModelResponse(
        content="".join(text_parts),
        tool_calls=tool_calls,
        model=getattr(final_message, "model", None),
        stop_reason=getattr(final_message, "stop_reason", None),
        input_tokens=getattr(usage, "input_tokens", 0) or 0,
        output_tokens=getattr(usage, "output_tokens", 0) or 0,
    )


class AnthropicModelClient:
    """
    Model interface backed by the Anthropic Messages API.

    Model identity, temperature and token limit are fixed by configuration.
    Text deltas are published as StreamEvents when an event bus is given.
    """

    def __init__(
        self,
        config: "AnalystConfig",
        event_bus: Optional[EventBus] = None,
        session_id: str = "",
        client: Optional[AsyncAnthropic] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.session_id = session_id
        self.client = client or AsyncAnthropic(
            api_key=config.anthropic_api_key,
            base_url=config.base_url,
        )
        logger.info("Model client initialized", model=config.model)

    async def generate(
        self,
        system_directive: str,
        messages: Sequence[Message],
        tools: Sequence[ToolDescriptor],
    ) -> ModelResponse:
        """
        Ask the model for the next step.

        Raises:
            ModelUnavailable: the API call failed (network, auth, provider)
        """
        params: Dict[str, Any] = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": convert_messages(messages),
        }
        if system_directive:
            params["system"] = system_directive
        if tools:
            params["tools"] = [t.to_model_tool() for t in tools]

        try:
            async with self.client.messages.stream(**params) as stream:
                async for event in stream:
                    if event.type == "content_block_delta" and self.event_bus is not None:
                        text = getattr(event.delta, "text", None)
                        if text:
                            await self._publish_delta(text)
                final_message = await stream.get_final_message()
        except anthropic.APIError as e:
            logger.error("Model call failed", model=self.config.model, error=str(e))
            raise ModelUnavailable(f"Model call failed: {e}") from e

        response = to_model_response(final_message)
        logger.debug(
            "Model responded",
            stop_reason=response.stop_reason,
            tool_calls=len(response.tool_calls),
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
        )
        return response

    async def _publish_delta(self, text: str) -> None:
        try:
            await self.event_bus.publish(StreamEvent(session_id=self.session_id, data=text))
        except asyncio.QueueFull:
            logger.warning("Dropped stream event")

    async def close(self) -> None:
        """Close the Anthropic client."""
        await self.client.close()
        logger.debug("Model client closed")
