"""
Flows over a connectionless datagram transport.

UDP carries no notion of a connection, so the manager recovers one from
each datagram's packet header: the connection id routes the datagram to
its flow, and the sequence index lets the flow's sequencer put datagrams
back in order. Outbound flows get a locally allocated source port with a
socket bound on it, so the peer's replies find their way back.

The manager owns the connection registry, the port allocator and every
socket it binds. Use :func:`open_datagram_flow_manager` to scope it to a
nursery; everything is closed when the block exits.
"""

from collections.abc import (
    AsyncIterator,
    Sequence,
)
from contextlib import (
    asynccontextmanager,
)
from dataclasses import (
    dataclass,
)
import errno
import ipaddress
import logging
import socket

from lru import LRU
import trio
from trio_typing import (
    TaskStatus,
)

from conntest.custom_types import (
    TConnectionID,
    THandler,
)
from conntest.exceptions import (
    PacketDecodeError,
)
from conntest.flow.exceptions import (
    DuplicateConnectionError,
    FlowClosedError,
    FlowIOError,
    PortExhaustedError,
)
from conntest.flow.ports import (
    PortAllocator,
)
from conntest.flow.registry import (
    ConnectionRegistry,
)
from conntest.flow.types import (
    ReadResult,
    RingSlot,
)
from conntest.packet import (
    decode_header,
)
from conntest.transport.exceptions import (
    ListenError,
)

from .config import (
    DatagramFlowConfig,
)
from .flow import (
    UDPFlow,
)

logger = logging.getLogger(__name__)


def _address_family(address: str) -> socket.AddressFamily:
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return socket.AF_INET
    return socket.AF_INET6 if ip.version == 6 else socket.AF_INET


@dataclass
class DatagramStats:
    received: int = 0
    dropped: int = 0
    flows_opened: int = 0
    flows_closed: int = 0


class DatagramFlowManager:
    config: DatagramFlowConfig
    registry: ConnectionRegistry
    ports: PortAllocator
    stats: DatagramStats

    def __init__(
        self,
        nursery: trio.Nursery,
        config: DatagramFlowConfig | None = None,
        *,
        registry: ConnectionRegistry | None = None,
        ports: PortAllocator | None = None,
    ) -> None:
        self._nursery = nursery
        self.config = config if config is not None else DatagramFlowConfig()
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.ports = (
            ports
            if ports is not None
            else PortAllocator(
                self.config.port_min,
                self.config.port_max,
                self.config.max_port_attempts,
            )
        )
        self.stats = DatagramStats()

        # Local port -> bound socket, for listeners and outbound flows alike.
        self._sockets: dict[int, trio.socket.SocketType] = {}
        self._receive_scopes: dict[int, trio.CancelScope] = {}
        # Requested listen port -> bound port (they differ for port 0).
        self._listen_ports: dict[int, int] = {}
        self._closed_ids: LRU = LRU(self.config.closed_id_memory)
        self._closed = False

    # -------------------------- listen path --------------------------

    async def listen(self, port: int, handler: THandler) -> int:
        """
        Accept datagram flows on ``port``.

        :param port: local port, 0 to let the OS choose
        :param handler: run in its own task for every new inbound flow
        :return: the port actually bound
        :raise ListenError: if the port cannot be bound
        """
        if port and port in self._listen_ports:
            raise ListenError(f"Already listening for datagrams on port {port}")
        try:
            sock = await self._bind(port)
        except OSError as error:
            raise ListenError(
                f"Failed to bind UDP {self.config.bind_host}:{port}: {error}"
            ) from error

        bound_port = sock.getsockname()[1]
        self._listen_ports[port] = bound_port
        await self._nursery.start(self._receive_loop, sock, bound_port, handler)
        logger.info(
            "Listening for datagrams on %s:%d", self.config.bind_host, bound_port
        )
        return bound_port

    async def unlisten(self, port: int) -> None:
        bound_port = self._listen_ports.pop(port, None)
        if bound_port is None:
            logger.debug("unlisten: not listening on port %d", port)
            return
        self._close_socket(bound_port)
        logger.info("Stopped listening for datagrams on port %d", bound_port)

    def get_port(self, port: int) -> int:
        try:
            return self._listen_ports[port]
        except KeyError:
            raise ListenError(f"Not listening on port {port}") from None

    async def _receive_loop(
        self,
        sock: trio.socket.SocketType,
        local_port: int,
        handler: THandler | None,
        task_status: TaskStatus[None] = trio.TASK_STATUS_IGNORED,
    ) -> None:
        with trio.CancelScope() as scope:
            self._receive_scopes[local_port] = scope
            task_status.started()
            while True:
                try:
                    data, address = await sock.recvfrom(self.config.recv_buffer_size)
                except trio.ClosedResourceError:
                    logger.debug("Socket on port %d closed", local_port)
                    break
                except OSError as error:
                    # e.g. an ICMP error surfaced on the next receive
                    logger.warning(
                        "Error receiving on UDP port %d: %s", local_port, error
                    )
                    continue
                self.stats.received += 1
                self._handle_datagram(data, address[0], address[1], local_port, handler)
        logger.debug("Receive loop on port %d terminated", local_port)

    def _handle_datagram(
        self,
        data: bytes,
        src_host: str,
        src_port: int,
        local_port: int,
        handler: THandler | None,
    ) -> None:
        try:
            header = decode_header(data)
            if header.packet_length != len(data):
                raise PacketDecodeError(
                    f"{len(data) - header.packet_length} trailing bytes after packet"
                )
        except PacketDecodeError as error:
            self.stats.dropped += 1
            logger.debug(
                "Dropping datagram from %s:%d on port %d: %s",
                src_host,
                src_port,
                local_port,
                error,
            )
            return

        connection_id = header.connection_id
        slot = RingSlot(payload=data, sequence_index=header.index)
        flow = self.registry.lookup(connection_id)
        if flow is not None:
            flow.push(slot)
            return

        if handler is None or connection_id in self._closed_ids:
            # Replies for a flow that no longer exists, or stray traffic on
            # an outbound flow's port.
            self.stats.dropped += 1
            logger.debug(
                "Dropping datagram for unknown connection %s from %s:%d",
                connection_id,
                src_host,
                src_port,
            )
            return

        flow = self._open_flow(
            connection_id, local_port, src_host, src_port, is_initiator=False
        )
        flow.push(slot)
        logger.debug("New inbound flow %r", flow)
        self._nursery.start_soon(self._run_handler, handler, flow)

    async def _run_handler(self, handler: THandler, flow: UDPFlow) -> None:
        try:
            await handler(flow)
        except Exception:
            logger.exception("Handler for %r failed", flow)
            await self.close(flow)

    # -------------------------- connect path --------------------------

    async def connect(
        self, connection_id: TConnectionID, peer_address: str, peer_port: int
    ) -> UDPFlow:
        """
        Open an outbound flow to ``peer_address:peer_port``.

        No handshake happens here; the peer learns of the flow from the
        first datagram written to it.

        An IPv6 peer gets an IPv6 socket bound on ``config.bind_host6``.

        :raise DuplicateConnectionError: if a flow already holds the identity
        :raise PortExhaustedError: if no local port could be bound
        """
        if connection_id in self.registry:
            raise DuplicateConnectionError(
                f"Connection {connection_id!r} is already registered"
            )
        family = _address_family(peer_address)
        attempts = 0
        while True:
            port = self.ports.allocate()
            try:
                sock = await self._bind(port, family)
                break
            except OSError as error:
                self.ports.free(port)
                attempts += 1
                if error.errno != errno.EADDRINUSE:
                    raise FlowIOError(
                        f"Failed to bind UDP port {port}: {error}"
                    ) from error
                if attempts >= self.ports.max_attempts:
                    raise PortExhaustedError(
                        f"Every allocated port was in use after {attempts} attempts"
                    ) from error
                logger.debug("Port %d is in use, allocating another", port)

        try:
            flow = self._open_flow(
                connection_id, port, peer_address, peer_port, is_initiator=True
            )
        except DuplicateConnectionError:
            self._close_socket(port)
            self.ports.free(port)
            raise
        await self._nursery.start(self._receive_loop, sock, port, None)
        logger.debug("New outbound flow %r", flow)
        return flow

    # -------------------------- flow operations --------------------------

    def _open_flow(
        self,
        connection_id: TConnectionID,
        local_port: int,
        peer_address: str,
        peer_port: int,
        *,
        is_initiator: bool,
    ) -> UDPFlow:
        flow = UDPFlow(
            self,
            connection_id,
            local_port,
            peer_address,
            peer_port,
            is_initiator=is_initiator,
            ring_size=self.config.ring_size,
            reorder_timeout=self.config.reorder_timeout,
        )
        self.registry.insert(connection_id, flow)
        self._nursery.start_soon(flow.run_sequencer)
        self.stats.flows_opened += 1
        return flow

    async def read(self, flow: UDPFlow) -> ReadResult:
        return await flow.read()

    async def writev(self, flow: UDPFlow, fragments: Sequence[bytes]) -> None:
        """Send ``fragments`` as exactly one datagram."""
        if flow.closed:
            raise FlowClosedError(f"Flow {flow.connection_id} is closed")
        sock = self._sockets.get(flow.local_port)
        if sock is None:
            raise FlowClosedError(f"No socket bound on port {flow.local_port}")
        data = b"".join(fragments)
        try:
            await sock.sendto(data, (flow.peer_address, flow.peer_port))
        except (OSError, trio.ClosedResourceError) as error:
            raise FlowIOError(
                f"Failed to send {len(data)} bytes to "
                f"{flow.peer_address}:{flow.peer_port}: {error}"
            ) from error

    async def close(self, flow: UDPFlow) -> None:
        if not flow.shutdown():
            return
        if self.registry.lookup(flow.connection_id) is flow:
            self.registry.remove(flow.connection_id)
        self._closed_ids[flow.connection_id] = True
        if flow.is_initiator:
            self._close_socket(flow.local_port)
            self.ports.free(flow.local_port)
        self.stats.flows_closed += 1
        logger.debug("Closed flow %r", flow)

    async def aclose(self) -> None:
        """Close every flow and socket owned by this manager."""
        if self._closed:
            return
        self._closed = True
        for flow in self.registry.flows():
            await self.close(flow)
        for port in list(self._sockets):
            self._close_socket(port)
        self._listen_ports.clear()

    # -------------------------- sockets --------------------------

    async def _bind(
        self, port: int, family: socket.AddressFamily = socket.AF_INET
    ) -> trio.socket.SocketType:
        if family == socket.AF_INET6:
            host = self.config.bind_host6
        else:
            host = self.config.bind_host
        sock = trio.socket.socket(family=family, type=socket.SOCK_DGRAM)
        try:
            await sock.bind((host, port))
        except OSError:
            sock.close()
            raise
        self._sockets[sock.getsockname()[1]] = sock
        return sock

    def _close_socket(self, port: int) -> None:
        scope = self._receive_scopes.pop(port, None)
        if scope is not None:
            scope.cancel()
        sock = self._sockets.pop(port, None)
        if sock is not None:
            sock.close()


@asynccontextmanager
async def open_datagram_flow_manager(
    config: DatagramFlowConfig | None = None,
    *,
    registry: ConnectionRegistry | None = None,
    ports: PortAllocator | None = None,
) -> AsyncIterator[DatagramFlowManager]:
    async with trio.open_nursery() as nursery:
        manager = DatagramFlowManager(
            nursery, config, registry=registry, ports=ports
        )
        try:
            yield manager
        finally:
            await manager.aclose()
            nursery.cancel_scope.cancel()
