import pytest

from conntest.custom_types import (
    TConnectionID,
)
from conntest.exceptions import (
    PacketDecodeError,
    PacketIncompleteError,
)
from conntest.packet import (
    Packet,
    PacketKind,
    PacketReader,
    decode,
    decode_datagram,
    decode_header,
    encode,
)

CONN_ID = TConnectionID("4f1c9e")


def make_packet(index=0, payload=b"hello", kind=PacketKind.DATA):
    return Packet(kind, CONN_ID, index, payload)


def test_header_layout():
    data = encode(make_packet(index=258, payload=b"abc"))
    assert data[:2] == b"CT"
    assert data[2] == 1
    assert data[3] == PacketKind.DATA
    assert data[4:12] == (258).to_bytes(8, "big")
    assert data[12] == len(CONN_ID)
    assert data[13 : 13 + len(CONN_ID)] == CONN_ID.encode()
    assert data.endswith(b"abc")


def test_decode_header_does_not_copy_payload():
    data = encode(make_packet(index=9, payload=b"x" * 100))
    header = decode_header(data)
    assert header.kind is PacketKind.DATA
    assert header.connection_id == CONN_ID
    assert header.index == 9
    assert header.payload_length == 100
    assert header.packet_length == len(data)
    assert data[header.payload_offset :] == b"x" * 100


def test_decode_returns_remainder():
    first = make_packet(index=1, payload=b"one")
    second = make_packet(index=2, payload=b"two")
    packet, rest = decode(encode(first) + encode(second))
    assert packet == first
    assert decode_datagram(rest) == second


@pytest.mark.parametrize("cut", [0, 5, 14, 20])
def test_truncated_input_is_incomplete(cut):
    data = encode(make_packet(payload=b"payload"))
    with pytest.raises(PacketIncompleteError):
        decode_header(data[:cut])


@pytest.mark.parametrize(
    "data",
    [
        b"XX" + encode(make_packet())[2:],
        encode(make_packet())[:2] + b"\x09" + encode(make_packet())[3:],
        encode(make_packet())[:3] + b"\x63" + encode(make_packet())[4:],
    ],
    ids=["bad-magic", "bad-version", "bad-kind"],
)
def test_malformed_header(data):
    with pytest.raises(PacketDecodeError) as excinfo:
        decode_header(data)
    assert not isinstance(excinfo.value, PacketIncompleteError)


def test_datagram_rejects_trailing_bytes():
    with pytest.raises(PacketDecodeError):
        decode_datagram(encode(make_packet()) + b"\x00")


def test_datagram_rejects_truncation():
    with pytest.raises(PacketDecodeError):
        decode_datagram(encode(make_packet())[:-1])


def test_oversized_connection_id():
    with pytest.raises(ValueError):
        encode(Packet(PacketKind.HELLO, TConnectionID("x" * 256), 0))


def test_reader_reassembles_split_packets():
    packets = [make_packet(index=i, payload=bytes([i]) * i) for i in range(5)]
    stream = b"".join(encode(packet) for packet in packets)
    reader = PacketReader()

    received = []
    for offset in range(0, len(stream), 7):
        received.extend(reader.feed(stream[offset : offset + 7]))

    assert received == packets
    assert reader.buffered == 0


def test_reader_keeps_partial_packet():
    reader = PacketReader()
    data = encode(make_packet(payload=b"abcdef"))
    assert reader.feed(data[:-2]) == []
    assert reader.buffered == len(data) - 2
    assert reader.feed(data[-2:]) == [make_packet(payload=b"abcdef")]


def test_reader_drops_buffer_on_garbage():
    reader = PacketReader()
    with pytest.raises(PacketDecodeError):
        reader.feed(b"garbage-that-is-long-enough")
    assert reader.buffered == 0
    assert reader.feed(encode(make_packet())) == [make_packet()]
