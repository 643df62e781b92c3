"""
Execution Transport

Owns the subprocess channel to the code-execution runtime: launch, framing
(MCP JSON-RPC over the child's stdin/stdout), restart on failure and
drained shutdown.

Each live channel is held open by a dedicated owner task, because the stdio
and session contexts must be entered and exited by the same task. Calls from
any task on the loop go through the session the owner publishes.
"""

import asyncio
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import anyio
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError
from mcp.types import CONNECTION_CLOSED

from ..errors import TransportUnavailable
from ...utils.logger import get_logger

logger = get_logger(__name__)


Connector = Callable[[AsyncExitStack, "LaunchSpec"], Awaitable[Any]]

# Stream-level failures that mean the channel itself is gone
CHANNEL_ERRORS = (
    anyio.ClosedResourceError,
    anyio.BrokenResourceError,
    anyio.EndOfStream,
    EOFError,
    OSError,
)


def is_channel_failure(error: BaseException) -> bool:
    """True when ``error`` means the subprocess channel broke, not the call."""
    if isinstance(error, asyncio.TimeoutError):
        return False
    if isinstance(error, CHANNEL_ERRORS):
        return True
    if isinstance(error, McpError):
        return getattr(error.error, "code", None) == CONNECTION_CLOSED
    return False


@dataclass
class LaunchSpec:
    """Fixed launch parameters for the execution runtime"""

    command: str
    args: List[str] = field(default_factory=list)
    cwd: Optional[str] = None
    env: Optional[Dict[str, str]] = None

    def to_server_parameters(self) -> StdioServerParameters:
        return StdioServerParameters(
            command=self.command,
            args=list(self.args),
            env=self.env,
            cwd=self.cwd,
        )

    def describe(self) -> str:
        return " ".join([self.command, *self.args])


async def connect_stdio(stack: AsyncExitStack, launch_spec: LaunchSpec) -> ClientSession:
    """Spawn the runtime and open an initialized MCP session on its stdio."""
    read, write = await stack.enter_async_context(
        stdio_client(launch_spec.to_server_parameters())
    )
    session = await stack.enter_async_context(ClientSession(read, write))
    await session.initialize()
    return session


@dataclass
class TransportConnection:
    """One live subprocess channel"""

    session: Any
    generation: int
    restart_count: int
    alive: bool = True
    stop_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    owner_task: Optional[asyncio.Task] = field(default=None, repr=False)


class ExecutionTransport:
    """
    Subprocess-based channel to the execution runtime.

    Restart policy:
    - A first start() makes one attempt plus up to ``max_restarts`` restarts.
    - Recovering a connection that broke makes up to ``max_restarts`` restarts.
    - Every restart waits ``restart_delay_ms`` first.
    - When the budget is spent, TransportUnavailable is raised.

    A call that hits a channel failure is retried once on the restarted
    connection; a second channel failure raises TransportUnavailable.
    """

    def __init__(
        self,
        launch_spec: LaunchSpec,
        max_restarts: int = 3,
        restart_delay_ms: int = 1000,
        connect_timeout: float = 60.0,
        call_timeout: Optional[float] = 120.0,
        drain_timeout: float = 5.0,
        connector: Optional[Connector] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.launch_spec = launch_spec
        self.max_restarts = max_restarts
        self.restart_delay_ms = restart_delay_ms
        self.connect_timeout = connect_timeout
        self.call_timeout = call_timeout
        self.drain_timeout = drain_timeout
        self._connector = connector or connect_stdio
        self._sleep = sleep

        self._connection: Optional[TransportConnection] = None
        self._generation = 0
        self._restart_count = 0
        self._closed = False
        self._lock = asyncio.Lock()
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    # ============================================
    # State
    # ============================================

    @property
    def connection(self) -> Optional[TransportConnection]:
        return self._connection

    @property
    def generation(self) -> int:
        """Increments every time a new channel is opened."""
        return self._generation

    @property
    def restart_count(self) -> int:
        return self._restart_count

    @property
    def is_alive(self) -> bool:
        return self._connection is not None and self._connection.alive

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def in_flight(self) -> int:
        return self._in_flight

    # ============================================
    # Lifecycle
    # ============================================

    async def start(self) -> TransportConnection:
        """Return the live connection, opening or restarting it as needed."""
        if self._closed:
            raise TransportUnavailable("Execution transport is closed")

        async with self._lock:
            if self._connection is not None and self._connection.alive:
                return self._connection
            recovering = self._connection is not None
            self._connection = await self._connect(recovering)
            return self._connection

    async def _connect(self, recovering: bool) -> TransportConnection:
        attempts = 0
        last_error: Optional[BaseException] = None

        if not recovering:
            try:
                return await self._open()
            except Exception as e:
                last_error = e
                logger.warning(
                    "Execution runtime failed to start",
                    command=self.launch_spec.describe(),
                    error=str(e),
                )

        while attempts < self.max_restarts:
            attempts += 1
            await self._sleep(self.restart_delay_ms / 1000)
            if self._closed:
                break
            self._restart_count += 1
            logger.info(
                "Restarting execution runtime",
                attempt=attempts,
                max_attempts=self.max_restarts,
            )
            try:
                return await self._open()
            except Exception as e:
                last_error = e
                logger.warning(
                    "Execution runtime restart failed",
                    attempt=attempts,
                    max_attempts=self.max_restarts,
                    error=str(e),
                )

        raise TransportUnavailable(
            f"Execution runtime unavailable after {attempts} restart attempt(s)"
            + (f": {last_error}" if last_error else "")
        ) from last_error

    async def _open(self) -> TransportConnection:
        self._generation += 1
        generation = self._generation
        loop = asyncio.get_running_loop()
        ready: asyncio.Future = loop.create_future()
        stop_event = asyncio.Event()

        owner = asyncio.create_task(
            self._own_channel(ready, stop_event, generation),
            name=f"execution-runtime-{generation}",
        )
        try:
            session = await asyncio.wait_for(ready, timeout=self.connect_timeout)
        except BaseException:
            stop_event.set()
            await self._stop_owner(owner, force=True)
            raise

        connection = TransportConnection(
            session=session,
            generation=generation,
            restart_count=self._restart_count,
            stop_event=stop_event,
            owner_task=owner,
        )
        owner.add_done_callback(lambda _task: setattr(connection, "alive", False))
        logger.info(
            "Execution runtime connected",
            generation=generation,
            restart_count=self._restart_count,
        )
        return connection

    async def _own_channel(
        self, ready: asyncio.Future, stop_event: asyncio.Event, generation: int
    ) -> None:
        try:
            async with AsyncExitStack() as stack:
                session = await self._connector(stack, self.launch_spec)
                if ready.done():
                    return
                ready.set_result(session)
                await stop_event.wait()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not ready.done():
                ready.set_exception(e)
            else:
                logger.warning(
                    "Execution runtime channel closed with error",
                    generation=generation,
                    error=str(e),
                )

    async def _retire(self, connection: TransportConnection) -> None:
        """Mark a broken connection dead and reap its subprocess."""
        if not connection.alive and connection.stop_event.is_set():
            return
        connection.alive = False
        connection.stop_event.set()
        if connection.owner_task is not None:
            await self._stop_owner(connection.owner_task, force=False)

    async def _stop_owner(self, owner: asyncio.Task, force: bool) -> None:
        if force:
            owner.cancel()
        done, _ = await asyncio.wait({owner}, timeout=self.drain_timeout)
        if not done:
            logger.warning("Execution runtime did not exit in time; terminating")
            owner.cancel()
            await asyncio.wait({owner})

    async def close(self) -> None:
        """
        Shut the runtime down. Safe to call more than once.

        In-flight calls get ``drain_timeout`` seconds to finish; after that
        the subprocess is terminated.
        """
        if self._closed:
            return
        self._closed = True

        force = False
        if self._in_flight:
            logger.info("Draining in-flight tool calls", count=self._in_flight)
            try:
                await asyncio.wait_for(self._idle.wait(), timeout=self.drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Drain timeout elapsed, forcing runtime shutdown",
                    in_flight=self._in_flight,
                )
                force = True

        connection, self._connection = self._connection, None
        if connection is not None:
            connection.alive = False
            connection.stop_event.set()
            if connection.owner_task is not None:
                await self._stop_owner(connection.owner_task, force=force)
        logger.info("Execution transport closed", restart_count=self._restart_count)

    async def __aenter__(self) -> "ExecutionTransport":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ============================================
    # Requests
    # ============================================

    async def call(self, tool_name: str, arguments: Dict[str, Any]) -> Any:
        """Invoke a runtime tool. Returns the MCP CallToolResult."""
        return await self._request(
            f"call '{tool_name}'",
            lambda session: session.call_tool(tool_name, arguments),
        )

    async def list_tools(self) -> Any:
        """Ask the runtime for its tools. Returns the MCP ListToolsResult."""
        return await self._request("list tools", lambda session: session.list_tools())

    async def _request(self, description: str, operation: Callable[[Any], Awaitable[Any]]) -> Any:
        if self._closed:
            raise TransportUnavailable("Execution transport is closed")

        self._in_flight += 1
        self._idle.clear()
        try:
            connection = await self.start()
            try:
                return await self._send(connection, operation)
            except Exception as e:
                if not is_channel_failure(e):
                    raise
                logger.warning(
                    "Execution runtime channel failed, restarting",
                    request=description,
                    generation=connection.generation,
                    error=str(e) or type(e).__name__,
                )
                await self._retire(connection)

            # One retry on the restarted connection
            connection = await self.start()
            try:
                return await self._send(connection, operation)
            except Exception as e:
                if not is_channel_failure(e):
                    raise
                await self._retire(connection)
                raise TransportUnavailable(
                    f"Execution runtime failed again while retrying {description}"
                ) from e
        finally:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()

    async def _send(
        self, connection: TransportConnection, operation: Callable[[Any], Awaitable[Any]]
    ) -> Any:
        if self.call_timeout is None:
            return await operation(connection.session)
        return await asyncio.wait_for(operation(connection.session), timeout=self.call_timeout)
