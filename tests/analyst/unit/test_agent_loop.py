"""
Unit tests for AgentLoop
"""

import asyncio

import pytest
from mcp.types import CallToolResult, ListToolsResult, TextContent, Tool

from backend.analyst.errors import LoopExceeded, ModelUnavailable, ToolExecutionError
from backend.analyst.mcp.registry import ToolRegistry
from backend.analyst.runtime.agent_loop import AgentLoop
from backend.analyst.runtime.event_bus import EventBus
from backend.analyst.runtime.types import (
    EventType,
    MessageKind,
    ModelResponse,
    ToolDescriptor,
    ToolInvocationRequest,
    ToolResult,
)


DIRECTIVE = "Always run Python."

RUN_PYTHON = ToolDescriptor(
    name="run_python_code",
    description="Run Python",
    input_schema={"type": "object", "properties": {"python_code": {"type": "string"}}},
)

FOUR = "<status>success</status>\n<output>\n4\n</output>"


def run_code(*codes, ids=None):
    """Factory for a response requesting one run per code snippet."""
    ids = ids or [f"call_{i}" for i in range(len(codes))]

    def make():
        return ModelResponse(
            content="Let me run that.",
            tool_calls=[
                ToolInvocationRequest(id=call_id, tool_name="run_python_code", arguments={"python_code": code})
                for call_id, code in zip(ids, codes)
            ],
        )

    return make


def answer(text):
    return lambda: ModelResponse(content=text, stop_reason="end_turn")


class ScriptedModel:
    """Plays back responses in order; the last step repeats."""

    def __init__(self, *steps):
        self.steps = list(steps)
        self.histories = []
        self.tools_seen = []

    @property
    def calls(self):
        return len(self.histories)

    async def generate(self, system_directive, messages, tools):
        assert system_directive == DIRECTIVE
        self.histories.append(list(messages))
        self.tools_seen.append(list(tools))
        step = self.steps.pop(0) if len(self.steps) > 1 else self.steps[0]
        if isinstance(step, BaseException):
            raise step
        return step()


class FakeRegistry:
    def __init__(self, handler=None, discovered=True):
        self.discovered = discovered
        self.descriptors = (RUN_PYTHON,)
        self.handler = handler
        self.invocations = []
        self.discover_calls = 0

    async def discover(self):
        self.discover_calls += 1
        self.discovered = True
        return self.descriptors

    async def invoke(self, request):
        self.invocations.append(request)
        if self.handler is not None:
            return await self.handler(request)
        return ToolResult(tool_call_id=request.id, tool_name=request.tool_name, content=FOUR)


def kinds(state):
    return [m.kind for m in state.messages]


@pytest.mark.asyncio
async def test_single_tool_call_then_answer():
    """What is 2+2? -> one code run, then the answer"""
    model = ScriptedModel(run_code("print(2 + 2)"), answer("The answer is 4."))
    registry = FakeRegistry()
    loop = AgentLoop(model, registry)

    state = await loop.run(DIRECTIVE, "What is 2+2?")

    assert kinds(state) == [
        MessageKind.SYSTEM_DIRECTIVE,
        MessageKind.USER_QUERY,
        MessageKind.MODEL_RESPONSE,
        MessageKind.TOOL_RESULT,
        MessageKind.MODEL_RESPONSE,
    ]
    assert state.final_response.content == "The answer is 4."
    assert state.user_query.content == "What is 2+2?"
    assert model.calls == 2
    assert model.tools_seen[0] == [RUN_PYTHON]
    assert registry.invocations[0].arguments == {"python_code": "print(2 + 2)"}
    # The second model call saw the execution result
    assert isinstance(model.histories[1][-1], ToolResult)
    assert model.histories[1][-1].content == FOUR


@pytest.mark.asyncio
async def test_answer_without_tools():
    """A text-only first response finishes the loop immediately"""
    model = ScriptedModel(answer("Hello!"))
    registry = FakeRegistry()

    state = await AgentLoop(model, registry).run(DIRECTIVE, "hi")

    assert len(state) == 3
    assert registry.invocations == []


@pytest.mark.asyncio
async def test_all_results_before_next_model_call():
    """N requests produce N results, in request order, before the model runs again"""

    async def out_of_order(request):
        delay = {"call_0": 0.03, "call_1": 0.0, "call_2": 0.01}[request.id]
        await asyncio.sleep(delay)
        return ToolResult(tool_call_id=request.id, tool_name=request.tool_name, content=request.id)

    model = ScriptedModel(run_code("a", "b", "c"), answer("done"))
    state = await AgentLoop(model, FakeRegistry(handler=out_of_order)).run(DIRECTIVE, "q")

    results = [m for m in state.messages if isinstance(m, ToolResult)]
    assert [r.tool_call_id for r in results] == ["call_0", "call_1", "call_2"]
    second_history = model.histories[1]
    assert [m.tool_call_id for m in second_history if isinstance(m, ToolResult)] == [
        "call_0",
        "call_1",
        "call_2",
    ]
    assert state.pending_requests == []


@pytest.mark.asyncio
async def test_tool_calls_run_concurrently():
    """Requests from one response are in flight at the same time"""
    running = 0
    peak = 0

    async def track(request):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1
        return ToolResult(tool_call_id=request.id, tool_name=request.tool_name, content="ok")

    model = ScriptedModel(run_code("a", "b", "c"), answer("done"))
    await AgentLoop(model, FakeRegistry(handler=track)).run(DIRECTIVE, "q")

    assert peak == 3


@pytest.mark.asyncio
async def test_loop_exceeded_at_bound():
    """A model that never stops is called exactly max_iterations times"""
    model = ScriptedModel(run_code("1", ids=[""]))
    registry = FakeRegistry()
    loop = AgentLoop(model, registry, max_iterations=3)

    with pytest.raises(LoopExceeded) as exc_info:
        await loop.run(DIRECTIVE, "loop forever")

    assert model.calls == 3
    assert len(registry.invocations) == 3
    state = exc_info.value.state
    assert exc_info.value.max_iterations == 3
    assert len(state) == 2 + 3 * 2
    assert state.final_response is None
    # Generated ids are unique across the run
    assert len({r.id for r in registry.invocations}) == 3


@pytest.mark.asyncio
async def test_single_iteration_bound():
    """max_iterations=1 allows exactly one model call"""
    model = ScriptedModel(run_code("1"))

    with pytest.raises(LoopExceeded):
        await AgentLoop(model, FakeRegistry(), max_iterations=1).run(DIRECTIVE, "q")

    assert model.calls == 1


def test_max_iterations_must_be_positive():
    with pytest.raises(ValueError):
        AgentLoop(ScriptedModel(answer("x")), FakeRegistry(), max_iterations=0)


@pytest.mark.asyncio
async def test_unknown_tool_recovery():
    """An unknown tool is reported back and the model recovers"""

    class Transport:
        generation = 1
        is_alive = True
        call_timeout = 120.0

        async def list_tools(self):
            return ListToolsResult(
                tools=[Tool(name="run_python_code", description="Run Python", inputSchema={"type": "object"})]
            )

        async def call(self, tool_name, arguments):
            return CallToolResult(content=[TextContent(type="text", text=FOUR)], isError=False)

    def rust():
        return ModelResponse(
            tool_calls=[ToolInvocationRequest(id="r1", tool_name="run_rust_code", arguments={"code": "1"})]
        )

    model = ScriptedModel(rust, run_code("print(2 + 2)", ids=["p1"]), answer("4"))
    registry = ToolRegistry(Transport())

    state = await AgentLoop(model, registry).run(DIRECTIVE, "What is 2+2?")

    error_result = state.messages[3]
    assert isinstance(error_result, ToolResult)
    assert error_result.is_error
    assert "Unknown tool 'run_rust_code'" in error_result.content
    assert "run_python_code" in error_result.content
    assert state.final_response.content == "4"
    assert model.calls == 3


@pytest.mark.asyncio
async def test_discovery_runs_every_query():
    """Each run asks the registry for tools so a restarted runtime is rediscovered"""
    registry = FakeRegistry(discovered=False)
    model = ScriptedModel(answer("x"), answer("y"))
    loop = AgentLoop(model, registry)

    await loop.run(DIRECTIVE, "q1")
    registry.descriptors = ()
    state = await loop.run(DIRECTIVE, "q2")

    assert registry.discover_calls == 2
    assert model.tools_seen[-1] == []
    assert state.final_response.content == "y"


@pytest.mark.asyncio
async def test_transport_failure_waits_for_sibling_calls():
    """One failing dispatch does not cancel the others; the error is raised after all settle"""
    finished = []

    async def one_fails(request):
        if request.id == "call_0":
            raise ToolExecutionError(request.tool_name, "runtime gone")
        await asyncio.sleep(0.01)
        finished.append(request.id)
        return ToolResult(tool_call_id=request.id, tool_name=request.tool_name, content="ok")

    model = ScriptedModel(run_code("a", "b"), answer("unreachable"))

    with pytest.raises(ToolExecutionError):
        await AgentLoop(model, FakeRegistry(handler=one_fails)).run(DIRECTIVE, "q")

    assert finished == ["call_1"]
    assert model.calls == 1


@pytest.mark.asyncio
async def test_model_failure_propagates():
    model = ScriptedModel(ModelUnavailable("provider down"))

    with pytest.raises(ModelUnavailable):
        await AgentLoop(model, FakeRegistry()).run(DIRECTIVE, "q")


@pytest.mark.asyncio
async def test_duplicate_request_ids_are_made_unique():
    """Colliding ids from the model are replaced before dispatch"""
    model = ScriptedModel(run_code("a", "b", ids=["dup", "dup"]), answer("done"))
    registry = FakeRegistry()

    state = await AgentLoop(model, registry).run(DIRECTIVE, "q")

    ids = [r.id for r in registry.invocations]
    assert ids[0] == "dup"
    assert ids[1] != "dup"
    assert len([m for m in state.messages if isinstance(m, ToolResult)]) == 2


@pytest.mark.asyncio
async def test_events_published():
    """State, message and turn events reach the bus"""
    bus = EventBus()
    model = ScriptedModel(run_code("1"), answer("done"))

    await AgentLoop(model, FakeRegistry(), event_bus=bus, session_id="s1").run(DIRECTIVE, "q")

    events = []
    while bus.qsize():
        async for event in bus.consume():
            events.append(event)
            break

    types = [e.type for e in events]
    assert types.count(EventType.MESSAGE) == 3
    assert EventType.STATE in types
    assert types[-1] == EventType.TURN
    assert events[-1].data.outcome == "done"
    assert events[-1].data.iterations == 2
    assert events[-1].data.tool_calls == 1
    assert all(e.session_id == "s1" for e in events)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
