from collections.abc import (
    AsyncIterator,
    Sequence,
)
from contextlib import (
    asynccontextmanager,
)
from functools import (
    partial,
)
import logging

import trio
from trio_typing import (
    TaskStatus,
)

from conntest.abc import (
    IFlow,
    IFlowTransport,
    TSubproto,
)
from conntest.custom_types import (
    TConnectionID,
    THandler,
)
from conntest.flow.exceptions import (
    FlowClosedError,
    FlowIOError,
)
from conntest.flow.types import (
    EOF,
    Data,
    ReadResult,
)
from conntest.transport.exceptions import (
    ListenError,
    OpenConnectionError,
)

logger = logging.getLogger("conntest.transport.tcp")

DEFAULT_READ_SIZE = 65536


class TCPFlow(IFlow):
    stream: trio.SocketStream
    # NOTE: Add both read and write lock to avoid `trio.BusyResourceError`
    read_lock: trio.Lock
    write_lock: trio.Lock
    _cached_remote_address: tuple[str, int] | None

    def __init__(
        self,
        stream: trio.SocketStream,
        connection_id: TConnectionID,
        is_initiator: bool,
        read_size: int = DEFAULT_READ_SIZE,
    ) -> None:
        self.stream = stream
        self.connection_id = connection_id
        self.is_initiator = is_initiator
        self.read_size = read_size
        self.read_lock = trio.Lock()
        self.write_lock = trio.Lock()
        self._cached_remote_address = None
        self._closed = False

    def __repr__(self) -> str:
        return f"<TCPFlow {self.connection_id} peer={self.get_remote_address()}>"

    async def read(self) -> ReadResult:
        async with self.read_lock:
            if self._closed:
                return EOF
            try:
                data = await self.stream.receive_some(self.read_size)
            except (trio.ClosedResourceError, trio.BrokenResourceError, OSError) as error:
                if self._closed:
                    return EOF
                raise FlowIOError(
                    f"Failed to read from {self.get_remote_address()}: {error}"
                ) from error
        if not data:
            return EOF
        return Data(data)

    async def writev(self, fragments: Sequence[bytes]) -> None:
        if self._closed:
            raise FlowClosedError(f"Flow {self.connection_id} is closed")
        async with self.write_lock:
            try:
                await self.stream.send_all(b"".join(fragments))
            except (trio.ClosedResourceError, trio.BrokenResourceError, OSError) as error:
                raise FlowIOError(
                    f"Failed to write to {self.get_remote_address()}: {error}"
                ) from error

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Resolve before the socket goes away so later logging still has it.
        self.get_remote_address()
        await self.stream.aclose()

    def get_remote_address(self) -> tuple[str, int] | None:
        """
        Return the remote address as (host, port) tuple.

        The address is cached on first successful retrieval, since the
        socket can no longer report it once torn down.
        """
        if self._cached_remote_address is not None:
            return self._cached_remote_address
        try:
            remote_addr = self.stream.socket.getpeername()
        except OSError as e:
            logger.debug(
                "OSError getting remote address (socket may be closed/invalid): %s", e
            )
            return None
        if not isinstance(remote_addr, tuple) or len(remote_addr) < 2:
            logger.debug(f"Invalid remote address format: {remote_addr}")
            return None
        self._cached_remote_address = (str(remote_addr[0]), int(remote_addr[1]))
        return self._cached_remote_address


class TCPFlowTransport(IFlowTransport):
    """
    Flows over TCP.

    TCP already orders and delivers bytes, so this is a thin translation of
    trio's stream operations; its job is making sure no trio or socket
    error escapes as anything but a conntest error.
    """

    subproto: TSubproto = "tcp"

    def __init__(self, nursery: trio.Nursery, host: str = "0.0.0.0") -> None:
        self._nursery = nursery
        self.host = host
        self._listen_scopes: dict[int, trio.CancelScope] = {}
        self._listen_ports: dict[int, int] = {}

    async def listen(self, port: int, handler: THandler) -> None:
        if port and port in self._listen_scopes:
            raise ListenError(f"Already listening for TCP on port {port}")

        scope = trio.CancelScope()

        async def serve_tcp(
            task_status: TaskStatus[list[trio.SocketListener]],
        ) -> None:
            """Just a proxy function to add logging here."""
            logger.debug("serve_tcp %s %s", self.host, port)
            with scope:
                await trio.serve_tcp(
                    partial(self._handle_stream, handler),
                    port,
                    host=self.host,
                    task_status=task_status,
                )

        try:
            listeners = await self._nursery.start(serve_tcp)
        except OSError as error:
            raise ListenError(
                f"Failed to listen on TCP {self.host}:{port}: {error}"
            ) from error

        bound_port = listeners[0].socket.getsockname()[1]
        self._listen_scopes[port] = scope
        self._listen_ports[port] = bound_port
        logger.info("Listening for TCP on %s:%d", self.host, bound_port)

    async def unlisten(self, port: int) -> None:
        scope = self._listen_scopes.pop(port, None)
        self._listen_ports.pop(port, None)
        if scope is None:
            logger.debug("unlisten: not listening on TCP port %d", port)
            return
        scope.cancel()

    def get_port(self, port: int) -> int:
        try:
            return self._listen_ports[port]
        except KeyError:
            raise ListenError(f"Not listening on TCP port {port}") from None

    async def _handle_stream(self, handler: THandler, stream: trio.SocketStream) -> None:
        flow = TCPFlow(stream, TConnectionID(""), is_initiator=False)
        remote = flow.get_remote_address()
        if remote is not None:
            flow.connection_id = TConnectionID(f"tcp-{remote[0]}:{remote[1]}")
        try:
            await handler(flow)
        except Exception:
            logger.debug(f"Connection from {remote} failed.", exc_info=True)
        finally:
            await flow.close()

    async def create_connection(
        self, connection_id: TConnectionID, peer: tuple[str, int]
    ) -> TCPFlow:
        """
        :raise OpenConnectionError: raised when failed to open connection
        """
        host, port = peer
        try:
            stream = await trio.open_tcp_stream(host, port)
        except OSError as error:
            raise OpenConnectionError(
                f"Failed to open TCP stream to {host}:{port}: {error}"
            ) from error
        return TCPFlow(stream, connection_id, is_initiator=True)


@asynccontextmanager
async def open_tcp_flow_transport(
    host: str = "0.0.0.0",
) -> AsyncIterator[TCPFlowTransport]:
    async with trio.open_nursery() as nursery:
        yield TCPFlowTransport(nursery, host)
        nursery.cancel_scope.cancel()
