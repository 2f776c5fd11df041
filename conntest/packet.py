"""
Binary packet codec shared by the TCP and UDP probes.

Wire layout (big-endian)::

    magic       2 bytes   b"CT"
    version     uint8
    kind        uint8     PacketKind
    index       uint64    sequence index within the connection
    id_len      uint8
    conn_id     id_len bytes, UTF-8
    payload_len uint32
    payload     payload_len bytes

The header can be parsed on its own, which is all the datagram flow layer
needs in order to route a datagram to its flow.
"""

from dataclasses import (
    dataclass,
)
from enum import (
    IntEnum,
)
import struct

from conntest.custom_types import (
    TConnectionID,
)
from conntest.exceptions import (
    PacketDecodeError,
    PacketIncompleteError,
)

MAGIC = b"CT"
VERSION = 1

_PREFIX = struct.Struct(">2sBBQB")
_PAYLOAD_LEN = struct.Struct(">I")

MAX_CONNECTION_ID_LENGTH = 255
MAX_PAYLOAD_LENGTH = 2**32 - 1


class PacketKind(IntEnum):
    HELLO = 1
    DATA = 2
    BANDWIDTH = 3


@dataclass(frozen=True)
class PacketHeader:
    kind: PacketKind
    connection_id: TConnectionID
    index: int
    payload_length: int
    # Offset of the first payload byte in the buffer the header came from.
    payload_offset: int

    @property
    def packet_length(self) -> int:
        return self.payload_offset + self.payload_length


@dataclass(frozen=True)
class Packet:
    kind: PacketKind
    connection_id: TConnectionID
    index: int
    payload: bytes = b""


def encode(packet: Packet) -> bytes:
    conn_id = packet.connection_id.encode("utf-8")
    if len(conn_id) > MAX_CONNECTION_ID_LENGTH:
        raise ValueError(
            f"Connection id is {len(conn_id)} bytes, "
            f"at most {MAX_CONNECTION_ID_LENGTH} allowed"
        )
    if len(packet.payload) > MAX_PAYLOAD_LENGTH:
        raise ValueError(f"Payload of {len(packet.payload)} bytes is too large")
    return b"".join(
        (
            _PREFIX.pack(
                MAGIC, VERSION, int(packet.kind), packet.index, len(conn_id)
            ),
            conn_id,
            _PAYLOAD_LEN.pack(len(packet.payload)),
            packet.payload,
        )
    )


def decode_header(data: bytes | bytearray) -> PacketHeader:
    """
    Parse the header at the start of ``data`` without touching the payload.

    :raise PacketIncompleteError: if ``data`` ends before the full packet
    :raise PacketDecodeError: if the header is malformed
    """
    if len(data) < _PREFIX.size:
        raise PacketIncompleteError(
            f"Need {_PREFIX.size} bytes for the header prefix, got {len(data)}"
        )
    magic, version, kind, index, id_len = _PREFIX.unpack_from(data, 0)
    if magic != MAGIC:
        raise PacketDecodeError(f"Bad magic {bytes(magic)!r}")
    if version != VERSION:
        raise PacketDecodeError(f"Unsupported packet version {version}")
    try:
        packet_kind = PacketKind(kind)
    except ValueError:
        raise PacketDecodeError(f"Unknown packet kind {kind}") from None

    id_end = _PREFIX.size + id_len
    payload_offset = id_end + _PAYLOAD_LEN.size
    if len(data) < payload_offset:
        raise PacketIncompleteError(
            f"Need {payload_offset} bytes for the header, got {len(data)}"
        )
    try:
        connection_id = bytes(data[_PREFIX.size : id_end]).decode("utf-8")
    except UnicodeDecodeError as error:
        raise PacketDecodeError(f"Connection id is not UTF-8: {error}") from error
    (payload_length,) = _PAYLOAD_LEN.unpack_from(data, id_end)

    header = PacketHeader(
        kind=packet_kind,
        connection_id=TConnectionID(connection_id),
        index=index,
        payload_length=payload_length,
        payload_offset=payload_offset,
    )
    if len(data) < header.packet_length:
        raise PacketIncompleteError(
            f"Packet announces {header.packet_length} bytes, got {len(data)}"
        )
    return header


def decode(data: bytes) -> tuple[Packet, bytes]:
    """
    Decode one packet from the start of ``data``.

    :return: the packet and whatever bytes follow it
    """
    header = decode_header(data)
    payload = data[header.payload_offset : header.packet_length]
    packet = Packet(
        kind=header.kind,
        connection_id=header.connection_id,
        index=header.index,
        payload=bytes(payload),
    )
    return packet, data[header.packet_length :]


def decode_datagram(data: bytes) -> Packet:
    """
    Decode a datagram that must hold exactly one whole packet.

    A truncated datagram cannot be completed by later reads, so it is a
    plain decode failure here.
    """
    packet, rest = decode(data)
    if rest:
        raise PacketDecodeError(f"{len(rest)} trailing bytes after packet")
    return packet


class PacketReader:
    """Reassembles packets from the byte chunks a stream flow delivers."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> list[Packet]:
        """
        Append ``chunk`` and return every packet it completes.

        :raise PacketDecodeError: if the buffered bytes cannot be a packet;
            the buffer is discarded since the stream has lost framing
        """
        self._buffer.extend(chunk)
        packets = []
        while self._buffer:
            try:
                header = decode_header(self._buffer)
            except PacketIncompleteError:
                break
            except PacketDecodeError:
                self._buffer.clear()
                raise
            payload = bytes(
                self._buffer[header.payload_offset : header.packet_length]
            )
            del self._buffer[: header.packet_length]
            packets.append(
                Packet(header.kind, header.connection_id, header.index, payload)
            )
        return packets

    @property
    def buffered(self) -> int:
        return len(self._buffer)
