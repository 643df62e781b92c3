"""
Analyst Agent Loop

The think/act/observe/answer state machine: alternates between asking the
model for the next step and running the tool calls it requests, until the
model answers without tool calls or the iteration bound is hit.

    AWAITING_MODEL --(tool calls)--> EXECUTING_TOOLS --(all resolved)--> AWAITING_MODEL
    AWAITING_MODEL --(text only)---> DONE
"""

import asyncio
import time
import uuid
from typing import List, Optional, TYPE_CHECKING

from .types import (
    ConversationState,
    LoopState,
    Message,
    MessageEvent,
    ModelResponse,
    StateEvent,
    StateEventData,
    ToolInvocationRequest,
    ToolResult,
    TurnEvent,
    TurnEventData,
)
from .event_bus import EventBus
from ..errors import LoopExceeded
from ...utils.logger import get_logger

if TYPE_CHECKING:
    from .model_client import ModelClient
    from ..mcp.registry import ToolRegistry

logger = get_logger(__name__)


class AgentLoop:
    """
    One agent loop bound to a model and a tool registry.

    Each run() owns a fresh ConversationState; nothing is shared between
    runs except the registry's transport.
    """

    def __init__(
        self,
        model: "ModelClient",
        registry: "ToolRegistry",
        max_iterations: int = 20,
        event_bus: Optional[EventBus] = None,
        session_id: Optional[str] = None,
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.model = model
        self.registry = registry
        self.max_iterations = max_iterations
        self.event_bus = event_bus
        self.session_id = session_id or str(uuid.uuid4())

    async def run(self, system_directive: str, query: str) -> ConversationState:
        """
        Answer one query.

        Returns:
            The full conversation, ending with the model's final answer

        Raises:
            DiscoveryFailed: the runtime listed no usable tools
            LoopExceeded: the model made max_iterations calls without answering
            ModelUnavailable: the model interface failed
            ToolExecutionError: the execution transport failed
        """
        state = ConversationState.seed(system_directive, query)
        turn_id = str(uuid.uuid4())
        log = logger.bind(turn_id=turn_id)
        started = time.monotonic()
        iterations = 0
        tool_calls = 0
        tokens = 0
        outcome = "error"

        # Cached per connection; a restarted runtime is listed again.
        tools = list(await self.registry.discover())

        loop_state = LoopState.AWAITING_MODEL
        response: Optional[ModelResponse] = None
        try:
            while loop_state != LoopState.DONE:
                if loop_state == LoopState.AWAITING_MODEL:
                    if iterations >= self.max_iterations:
                        log.warning("Iteration bound reached", max_iterations=self.max_iterations)
                        outcome = "loop_exceeded"
                        raise LoopExceeded(self.max_iterations, state)

                    iterations += 1
                    log.debug("Awaiting model", iteration=iterations)
                    response = await self.model.generate(system_directive, state.messages, tools)
                    self._assign_request_ids(response, state)
                    await self._append(state, response)
                    tokens += response.input_tokens + response.output_tokens

                    if response.has_tool_calls:
                        loop_state = LoopState.EXECUTING_TOOLS
                    else:
                        loop_state = LoopState.DONE

                elif loop_state == LoopState.EXECUTING_TOOLS:
                    requests = response.tool_calls
                    tool_calls += len(requests)
                    log.info("Executing tool calls", iteration=iterations, count=len(requests))
                    for result in await self._execute(requests):
                        await self._append(state, result)
                    loop_state = LoopState.AWAITING_MODEL

                await self._publish_state(loop_state, iterations, len(response.tool_calls))

            outcome = "done"
            log.info("Agent loop finished", iterations=iterations, tool_calls=tool_calls)
            return state
        finally:
            await self._publish(TurnEvent(
                session_id=self.session_id,
                data=TurnEventData(
                    turn_id=turn_id,
                    iterations=iterations,
                    tool_calls=tool_calls,
                    total_tokens=tokens,
                    duration_ms=int((time.monotonic() - started) * 1000),
                    outcome=outcome,
                ),
            ))

    async def _execute(self, requests: List[ToolInvocationRequest]) -> List[ToolResult]:
        """
        Dispatch every request of one response concurrently.

        All calls settle before anything is returned or raised, so one
        failure never cancels the others.
        """
        outcomes = await asyncio.gather(
            *(self.registry.invoke(request) for request in requests),
            return_exceptions=True,
        )

        results: List[ToolResult] = []
        first_error: Optional[BaseException] = None
        for request, outcome in zip(requests, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Tool dispatch failed",
                    tool_name=request.tool_name,
                    tool_call_id=request.id,
                    error=str(outcome),
                )
                if first_error is None:
                    first_error = outcome
                continue
            results.append(outcome)

        if first_error is not None:
            raise first_error
        return results

    @staticmethod
    def _assign_request_ids(response: ModelResponse, state: ConversationState) -> None:
        """Give every request an id unique within the conversation."""
        taken = {
            request.id
            for message in state.messages
            if isinstance(message, ModelResponse)
            for request in message.tool_calls
        }
        for request in response.tool_calls:
            if not request.id or request.id in taken:
                request.id = f"call_{uuid.uuid4().hex[:12]}"
            taken.add(request.id)

    async def _append(self, state: ConversationState, message: Message) -> None:
        state.append(message)
        await self._publish(MessageEvent(session_id=self.session_id, data=message))

    async def _publish_state(self, loop_state: LoopState, iteration: int, tool_calls: int) -> None:
        await self._publish(StateEvent(
            session_id=self.session_id,
            data=StateEventData(state=loop_state, iteration=iteration, tool_calls=tool_calls),
        ))

    async def _publish(self, event) -> None:
        if self.event_bus is None:
            return
        try:
            await self.event_bus.publish(event)
        except asyncio.QueueFull:
            logger.warning("Dropped agent event", event_type=event.type.value)
