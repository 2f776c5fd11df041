"""
The conntest probe protocol, run over any flow transport.

The connecting side greets the listener with ``HELLO(name)`` until the
listener greets back, and both report the connection to their output.
With bandwidth monitoring on, the connecting side then streams ``DATA``
packets; the listener measures what arrives and periodically sends a
``BANDWIDTH`` report back, so both ends can show the figures.
"""

from collections import (
    deque,
)
from dataclasses import (
    dataclass,
)
import logging
import math
import uuid

import trio

from conntest.abc import (
    IConnect,
    IFlow,
    IFlowTransport,
    IListen,
    IOutput,
    IProtocol,
    TSubproto,
)
from conntest.config import (
    MonitorBandwidthConfig,
)
from conntest.custom_types import (
    TConnectionID,
)
from conntest.exceptions import (
    PacketDecodeError,
)
from conntest.flow.exceptions import (
    FlowError,
)
from conntest.flow.types import (
    EOF,
    Lost,
)
from conntest.output import (
    BandwidthMeasurement,
)
from conntest.packet import (
    Packet,
    PacketKind,
    PacketReader,
    decode_datagram,
    encode,
)
from conntest.transport.exceptions import (
    ListenError,
    OpenConnectionError,
)

logger = logging.getLogger(__name__)

UNKNOWN_PEER = "<unknown>"


@dataclass(frozen=True)
class ProtocolConfig:
    report_interval: float = 1.0
    """Seconds between bandwidth reports from the listening side."""

    hello_interval: float = 1.0
    """Seconds between repeated greetings until the peer answers."""

    send_interval: float = 0.0
    """Pause between filler packets when monitoring bandwidth."""


class FlowSession:
    """Packet-level view of one flow."""

    def __init__(self, flow: IFlow, connection_id: TConnectionID, framed: bool) -> None:
        self.flow = flow
        self.connection_id = connection_id
        # Stream flows deliver arbitrary chunks; datagram flows whole packets.
        self._reader = PacketReader() if framed else None
        self._pending: deque[Packet] = deque()
        self._next_index = 0

    async def send(self, kind: PacketKind, payload: bytes = b"") -> None:
        packet = Packet(kind, self.connection_id, self._next_index, payload)
        self._next_index += 1
        await self.flow.write(encode(packet))

    async def receive(self) -> Packet | Lost | None:
        """
        Return the next packet, a loss marker, or None at end of flow.

        Undecodable data is logged and skipped.
        """
        while not self._pending:
            result = await self.flow.read()
            if result is EOF:
                return None
            if isinstance(result, Lost):
                return result
            try:
                if self._reader is not None:
                    self._pending.extend(self._reader.feed(result.payload))
                else:
                    self._pending.append(decode_datagram(result.payload))
            except PacketDecodeError as error:
                logger.debug("Skipping undecodable data on %r: %s", self.flow, error)
        return self._pending.popleft()


def _decode_name(payload: bytes) -> str:
    return payload.decode("utf-8", errors="replace") or UNKNOWN_PEER


class Listen(IListen):
    def __init__(
        self, transport: IFlowTransport, output: IOutput, config: ProtocolConfig
    ) -> None:
        self._transport = transport
        self._output = output
        self._config = config

    async def start(self, name: str, port: int, timeout: float | None) -> None:
        # Flows accepted on this port.
        flows: set[IFlow] = set()

        async def handler(flow: IFlow) -> None:
            flows.add(flow)
            try:
                await self._serve(name, flow)
            finally:
                flows.discard(flow)
                await flow.close()

        try:
            await self._transport.listen(port, handler)
        except ListenError as error:
            self._output.error(name, self.subproto, str(error))
            return
        try:
            await trio.sleep(math.inf if timeout is None else timeout)
        finally:
            with trio.CancelScope(shield=True):
                await self._transport.unlisten(port)
                for flow in list(flows):
                    await flow.close()
            logger.debug("%s stopped listening on %s port %d", name, self.subproto, port)

    @property
    def subproto(self) -> TSubproto:
        return self._transport.subproto

    async def _serve(self, name: str, flow: IFlow) -> None:
        subproto = self._transport.subproto
        session = FlowSession(flow, flow.connection_id, framed=subproto == "tcp")
        peer_name: str | None = None
        window_start = trio.current_time()
        window_bytes = window_packets = window_lost = 0

        try:
            while True:
                item = await session.receive()
                if item is None:
                    break
                if isinstance(item, Lost):
                    window_lost += 1
                    self._output.packet_lost(name, subproto, session.connection_id, item.index)
                elif item.kind is PacketKind.HELLO:
                    session.connection_id = item.connection_id
                    if peer_name is None:
                        peer_name = _decode_name(item.payload)
                        self._output.connected(
                            name, peer_name, subproto, flow.get_remote_address()
                        )
                    await session.send(PacketKind.HELLO, name.encode("utf-8"))
                elif item.kind is PacketKind.DATA:
                    window_bytes += len(item.payload)
                    window_packets += 1

                now = trio.current_time()
                if window_packets and now - window_start >= self._config.report_interval:
                    measurement = BandwidthMeasurement(
                        bytes=window_bytes,
                        seconds=now - window_start,
                        packets=window_packets,
                        lost=window_lost,
                    )
                    self._output.bandwidth(
                        name, peer_name or UNKNOWN_PEER, subproto, measurement
                    )
                    await session.send(PacketKind.BANDWIDTH, measurement.to_json())
                    window_start = now
                    window_bytes = window_packets = window_lost = 0
        except FlowError as error:
            self._output.error(name, subproto, str(error))


class Connect(IConnect):
    def __init__(
        self, transport: IFlowTransport, output: IOutput, config: ProtocolConfig
    ) -> None:
        self._transport = transport
        self._output = output
        self._config = config

    async def start(
        self,
        name: str,
        port: int,
        peer_address: str,
        monitor_bandwidth: MonitorBandwidthConfig,
        timeout: float | None,
    ) -> None:
        subproto = self._transport.subproto
        connection_id = TConnectionID(uuid.uuid4().hex)
        with trio.move_on_after(math.inf if timeout is None else timeout):
            try:
                flow = await self._transport.create_connection(
                    connection_id, (peer_address, port)
                )
            except OpenConnectionError as error:
                self._output.error(name, subproto, str(error))
                return
            try:
                await self._run(name, flow, connection_id, monitor_bandwidth)
            except FlowError as error:
                self._output.error(name, subproto, str(error))
            finally:
                with trio.CancelScope(shield=True):
                    await flow.close()

    async def _run(
        self,
        name: str,
        flow: IFlow,
        connection_id: TConnectionID,
        monitor_bandwidth: MonitorBandwidthConfig,
    ) -> None:
        subproto = self._transport.subproto
        session = FlowSession(flow, connection_id, framed=subproto == "tcp")
        greeted = trio.Event()
        peer_name = UNKNOWN_PEER

        async def greet() -> None:
            while not greeted.is_set():
                await session.send(PacketKind.HELLO, name.encode("utf-8"))
                with trio.move_on_after(self._config.hello_interval):
                    await greeted.wait()

        async def receive_replies() -> None:
            nonlocal peer_name
            while True:
                item = await session.receive()
                if item is None:
                    break
                if isinstance(item, Lost):
                    self._output.packet_lost(name, subproto, connection_id, item.index)
                elif item.kind is PacketKind.HELLO:
                    if not greeted.is_set():
                        peer_name = _decode_name(item.payload)
                        greeted.set()
                        self._output.connected(
                            name, peer_name, subproto, flow.get_remote_address()
                        )
                elif item.kind is PacketKind.BANDWIDTH:
                    try:
                        measurement = BandwidthMeasurement.from_json(item.payload)
                    except PacketDecodeError as error:
                        logger.debug("Ignoring bandwidth report: %s", error)
                        continue
                    self._output.bandwidth(name, peer_name, subproto, measurement)

        async with trio.open_nursery() as nursery:
            nursery.start_soon(greet)
            nursery.start_soon(receive_replies)
            if monitor_bandwidth.enabled:
                await greeted.wait()
                await self._send_filler(session, monitor_bandwidth.packet_size)

    async def _send_filler(self, session: FlowSession, packet_size: int) -> None:
        payload = bytes(packet_size)
        while True:
            await session.send(PacketKind.DATA, payload)
            if self._config.send_interval > 0:
                await trio.sleep(self._config.send_interval)


class Protocol(IProtocol):
    """Binds the probe protocol to one flow transport and output sink."""

    listen: Listen
    connect: Connect

    def __init__(
        self,
        transport: IFlowTransport,
        output: IOutput,
        config: ProtocolConfig | None = None,
    ) -> None:
        config = config if config is not None else ProtocolConfig()
        self.subproto = transport.subproto
        self.listen = Listen(transport, output, config)
        self.connect = Connect(transport, output, config)
