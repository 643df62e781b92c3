"""
Analyst Session Controller

Interactive read-query-render loop around one agent and one execution
runtime. The runtime is started once, reused by every query, and closed
exactly once when the session ends.
"""

import asyncio
import json
import os
import stat
import sys
from typing import Awaitable, Callable, Optional, TextIO

from .config import AnalystConfig
from .errors import AnalystError, LoopExceeded
from .mcp.registry import ToolRegistry
from .mcp.transport import ExecutionTransport
from .prompts import SYSTEM_DIRECTIVE
from .runtime.agent_loop import AgentLoop
from .runtime.event_bus import EventBus
from .runtime.model_client import AnthropicModelClient
from .runtime.types import AgentEvent, ConversationState, EventType
from .trace import classify, format_tools, format_trace, summarize
from ..utils.logger import get_logger

logger = get_logger(__name__)

PROMPT = "Your question: "
BANNER = "\n== Python Data Analysis Agent Ready =="
HINT = "Type your data analysis questions. Type 'exit' to quit.\n"
EXIT_COMMAND = "exit"

LineReader = Callable[[str], Awaitable[Optional[str]]]
Writer = Callable[[str], None]


class StdinLineReader:
    """
    Prompted line reader for stdin that stays cancellable.

    On POSIX, pipes and terminals are watched with the event loop's
    selector and read with os.read, so Ctrl+C cancels a waiting prompt at
    once instead of waiting on a worker thread. Regular files and Windows
    consoles are read from a worker thread; a regular file never blocks.
    """

    def __init__(self, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None):
        self._stdin = stdin
        self._stdout = stdout
        self._buffer = b""
        self._eof = False

    @property
    def stdin(self) -> TextIO:
        return self._stdin or sys.stdin

    @property
    def stdout(self) -> TextIO:
        return self._stdout or sys.stdout

    async def __call__(self, prompt: str) -> Optional[str]:
        """Write the prompt and return the next line. None on end of input."""
        self.stdout.write(prompt)
        self.stdout.flush()
        if not self._watchable():
            line = await asyncio.to_thread(self.stdin.readline)
            return line.rstrip("\r\n") if line else None

        loop = asyncio.get_running_loop()
        fd = self.stdin.fileno()
        while b"\n" not in self._buffer and not self._eof:
            await self._wait_readable(loop, fd)
            chunk = os.read(fd, 4096)
            if chunk:
                self._buffer += chunk
            else:
                self._eof = True

        if b"\n" in self._buffer:
            raw, _, self._buffer = self._buffer.partition(b"\n")
        elif self._buffer:
            raw, self._buffer = self._buffer, b""
        else:
            return None
        encoding = getattr(self.stdin, "encoding", None) or "utf-8"
        return raw.decode(encoding, errors="replace").rstrip("\r")

    @staticmethod
    async def _wait_readable(loop: asyncio.AbstractEventLoop, fd: int) -> None:
        readable = loop.create_future()
        try:
            loop.add_reader(fd, lambda: readable.done() or readable.set_result(None))
        except OSError:
            # Not pollable (/dev/null); a read there returns at once.
            return
        try:
            await readable
        finally:
            loop.remove_reader(fd)

    def _watchable(self) -> bool:
        if sys.platform == "win32":
            return False
        try:
            mode = os.fstat(self.stdin.fileno()).st_mode
        except (AttributeError, OSError, ValueError):
            return False
        return stat.S_ISFIFO(mode) or stat.S_ISCHR(mode) or stat.S_ISSOCK(mode)


def render_state(state: ConversationState) -> str:
    records = classify(state)
    logger.debug("Trace classified", **summarize(records))
    return format_trace(records)


def log_event(event: AgentEvent) -> None:
    """Event bus subscriber that mirrors loop progress into the log."""
    logger.debug("Agent event", event_type=event.type.value, **_event_fields(event))


def _event_fields(event: AgentEvent) -> dict:
    if isinstance(event.data, str):
        return {"chars": len(event.data)}
    data = event.data.to_dict() if hasattr(event.data, "to_dict") else {}
    return {k: v for k, v in data.items() if isinstance(v, (str, int, float, bool))}


class SessionController:
    """
    Interactive session.

    Exits on 'exit' (any case) or end of input. A failed query is reported
    and the session keeps going; only tool discovery failure is fatal.
    """

    def __init__(
        self,
        config: AnalystConfig,
        transport: ExecutionTransport,
        registry: ToolRegistry,
        agent: AgentLoop,
        event_bus: Optional[EventBus] = None,
        read_line: Optional[LineReader] = None,
        write: Writer = print,
        system_directive: str = SYSTEM_DIRECTIVE,
    ):
        self.config = config
        self.transport = transport
        self.registry = registry
        self.agent = agent
        self.event_bus = event_bus
        self.system_directive = system_directive
        self._read_line = read_line or StdinLineReader()
        self._write = write
        self._closed = False

    async def run(self) -> None:
        """
        Run the session until exit.

        Raises:
            DiscoveryFailed: the runtime could not be started or listed no usable tools
        """
        try:
            await self._start_events()
            descriptors = await self.registry.discover()
            self._write(f"Connected! Loaded {len(descriptors)} tools")
            self._write(BANNER)
            self._write(HINT)

            while True:
                line = await self._read_line(PROMPT)
                if line is None:
                    logger.info("End of input, leaving session")
                    break
                query = line.strip()
                if not query:
                    continue
                if query.lower() == EXIT_COMMAND:
                    break
                await self.handle_query(query)
        finally:
            await self.close()

    async def handle_query(self, query: str) -> Optional[ConversationState]:
        """Run one query and print its trace. Errors are reported, not raised."""
        self._write("\nProcessing your request...")
        try:
            state = await self.agent.run(self.system_directive, query)
        except LoopExceeded as e:
            logger.warning("Query stopped at iteration bound", max_iterations=e.max_iterations)
            if e.state is not None:
                self._write("\n" + render_state(e.state))
            self._write(f"\n{e}")
            return e.state
        except Exception as e:
            logger.error("Query failed", exc_info=True, error=str(e))
            self._write(f"Error processing your request: {e}")
            return None

        self._write("\n" + render_state(state))
        return state

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.transport.close()
        finally:
            close_model = getattr(self.agent.model, "close", None)
            if close_model is not None:
                await close_model()
            if self.event_bus is not None:
                await self.event_bus.stop()
        logger.info("Session closed")

    async def _start_events(self) -> None:
        if self.event_bus is None:
            return
        for event_type in EventType:
            await self.event_bus.subscribe(event_type, log_event)
        await self.event_bus.start()


def build_transport(config: AnalystConfig) -> ExecutionTransport:
    return ExecutionTransport(
        config.launch_spec(),
        max_restarts=config.restart_max_attempts,
        restart_delay_ms=config.restart_delay_ms,
        connect_timeout=config.connect_timeout,
        call_timeout=config.tool_timeout,
        drain_timeout=config.shutdown_drain_timeout,
    )


def build_session(
    config: AnalystConfig,
    read_line: Optional[LineReader] = None,
    write: Writer = print,
) -> SessionController:
    """Wire the concrete transport, registry, model client and agent loop."""
    event_bus = EventBus()
    transport = build_transport(config)
    registry = ToolRegistry(transport)
    agent = AgentLoop(
        model=AnthropicModelClient(config, event_bus=event_bus),
        registry=registry,
        max_iterations=config.max_iterations,
        event_bus=event_bus,
    )
    agent.model.session_id = agent.session_id
    logger.info("Session built", model=config.model, runtime=config.launch_spec().describe())
    return SessionController(
        config, transport, registry, agent,
        event_bus=event_bus, read_line=read_line, write=write,
    )


async def list_tools(config: AnalystConfig, write: Writer = print) -> int:
    """Start the runtime, print its tools and shut it down."""
    transport = build_transport(config)
    try:
        descriptors = await ToolRegistry(transport).discover()
        write(f"Loaded {len(descriptors)} tools")
        write(format_tools(descriptors))
    finally:
        await transport.close()
    return 0


async def run_once(config: AnalystConfig, query: str, write: Writer = print) -> int:
    """
    One-shot mode: list the runtime's tools, answer one query and print the
    final message as JSON.

    Returns:
        Process exit status
    """
    transport = build_transport(config)
    registry = ToolRegistry(transport)
    model = AnthropicModelClient(config)
    agent = AgentLoop(model, registry, max_iterations=config.max_iterations)
    try:
        write("Connecting to execution runtime and loading tools...")
        descriptors = await registry.discover()
        write(f"Loaded {len(descriptors)} tools")
        write(format_tools(descriptors))

        write(f'\nProcessing user query: "{query}"')
        try:
            state = await agent.run(SYSTEM_DIRECTIVE, query)
        except LoopExceeded as e:
            logger.warning("Query stopped at iteration bound", max_iterations=e.max_iterations)
            if e.state is not None:
                write(render_state(e.state))
            write(str(e))
            return 1
        except AnalystError as e:
            logger.error("Query failed", error_type=type(e).__name__, error=str(e))
            write(f"Error: {e}")
            return 1

        write("\nAgent Response:")
        write(json.dumps(state.messages[-1].to_dict(), indent=2, ensure_ascii=False))
        return 0
    finally:
        try:
            await transport.close()
        finally:
            await model.close()
