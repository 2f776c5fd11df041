import pytest
import trio
import trio.testing

from conntest.custom_types import (
    TConnectionID,
)
from conntest.flow import (
    EOF,
    Data,
    Lost,
    RingSlot,
)
from conntest.transport.udp import (
    UDPFlow,
)


def make_flow(ring_size=5, reorder_timeout=0.5):
    # The manager is only needed for writing and closing.
    return UDPFlow(
        None,
        TConnectionID("flow"),
        40_000,
        "127.0.0.1",
        41_000,
        is_initiator=False,
        ring_size=ring_size,
        reorder_timeout=reorder_timeout,
    )


def push(flow, *indices):
    for index in indices:
        flow.push(RingSlot(payload=f"p{index}".encode(), sequence_index=index))


@pytest.mark.trio
async def test_in_order_delivery(nursery):
    flow = make_flow()
    nursery.start_soon(flow.run_sequencer)
    push(flow, 0, 1, 2)
    assert await flow.read() == Data(b"p0", 0)
    assert await flow.read() == Data(b"p1", 1)
    assert await flow.read() == Data(b"p2", 2)
    assert flow.next_index == 3


@pytest.mark.trio
async def test_reordered_datagrams_are_resequenced(nursery):
    flow = make_flow()
    nursery.start_soon(flow.run_sequencer)
    push(flow, 2, 0, 1)
    assert [await flow.read() for _ in range(3)] == [
        Data(b"p0", 0),
        Data(b"p1", 1),
        Data(b"p2", 2),
    ]


@pytest.mark.trio
async def test_missing_index_times_out_as_lost(nursery, autojump_clock):
    flow = make_flow(reorder_timeout=0.5)
    nursery.start_soon(flow.run_sequencer)
    push(flow, 0, 2)
    assert await flow.read() == Data(b"p0", 0)
    start = trio.current_time()
    assert await flow.read() == Lost(1)
    assert trio.current_time() - start >= 0.5
    assert await flow.read() == Data(b"p2", 2)


@pytest.mark.trio
async def test_late_arrival_within_timeout_is_delivered(nursery, autojump_clock):
    flow = make_flow(reorder_timeout=1.0)
    nursery.start_soon(flow.run_sequencer)
    push(flow, 1)

    async def deliver_late():
        await trio.sleep(0.5)
        push(flow, 0)

    nursery.start_soon(deliver_late)
    assert await flow.read() == Data(b"p0", 0)
    assert await flow.read() == Data(b"p1", 1)


@pytest.mark.trio
async def test_idle_flow_reports_no_loss(nursery, autojump_clock):
    flow = make_flow(reorder_timeout=0.1)
    nursery.start_soon(flow.run_sequencer)
    push(flow, 0)
    assert await flow.read() == Data(b"p0", 0)
    with trio.move_on_after(60) as scope:
        await flow.read()
    assert scope.cancelled_caught


@pytest.mark.trio
async def test_evicted_index_is_lost_without_waiting(nursery, autojump_clock):
    flow = make_flow(ring_size=2, reorder_timeout=60)
    nursery.start_soon(flow.run_sequencer)
    # 1 is pushed out of the two-slot ring by 3 before the sequencer runs.
    push(flow, 1, 2, 3)
    start = trio.current_time()
    assert await flow.read() == Lost(0)
    assert await flow.read() == Lost(1)
    assert await flow.read() == Data(b"p2", 2)
    assert await flow.read() == Data(b"p3", 3)
    assert trio.current_time() == start


@pytest.mark.trio
async def test_slot_marked_lost(nursery):
    flow = make_flow()
    nursery.start_soon(flow.run_sequencer)
    flow.push(RingSlot(payload=None, sequence_index=0))
    push(flow, 1)
    assert await flow.read() == Lost(0)
    assert await flow.read() == Data(b"p1", 1)


@pytest.mark.trio
async def test_duplicates_and_stale_indices_are_not_redelivered(nursery):
    flow = make_flow()
    nursery.start_soon(flow.run_sequencer)
    push(flow, 0)
    assert await flow.read() == Data(b"p0", 0)
    push(flow, 0, 1)
    assert await flow.read() == Data(b"p1", 1)
    push(flow, 1, 0, 2)
    assert await flow.read() == Data(b"p2", 2)


@pytest.mark.trio
async def test_shutdown_releases_blocked_reader(nursery):
    flow = make_flow()
    nursery.start_soon(flow.run_sequencer)
    results = []

    async def reader():
        results.append(await flow.read())

    async with trio.open_nursery() as readers:
        readers.start_soon(reader)
        await trio.testing.wait_all_tasks_blocked()
        assert flow.shutdown()

    assert results == [EOF]
    assert flow.closed
    assert not flow.shutdown()
    assert await flow.read() is EOF


@pytest.mark.trio
async def test_push_after_shutdown_is_ignored(nursery):
    flow = make_flow()
    nursery.start_soon(flow.run_sequencer)
    flow.shutdown()
    push(flow, 0)
    assert flow.ring.get_latest() is None


@pytest.mark.trio
async def test_run_of_missing_indices_shares_one_deadline(nursery, autojump_clock):
    flow = make_flow(reorder_timeout=0.5)
    nursery.start_soon(flow.run_sequencer)
    start = trio.current_time()
    push(flow, 10)
    assert [await flow.read() for _ in range(10)] == [Lost(i) for i in range(10)]
    assert trio.current_time() - start == pytest.approx(0.5)
    assert await flow.read() == Data(b"p10", 10)


@pytest.mark.trio
async def test_datagram_arriving_after_window_is_lost(nursery, autojump_clock):
    flow = make_flow(reorder_timeout=0.5)
    nursery.start_soon(flow.run_sequencer)
    start = trio.current_time()
    push(flow, 3)
    # Nobody reads until index 1 turns up, long after 3 overtook it.
    await trio.sleep_until(start + 0.9)
    push(flow, 1)
    assert [await flow.read() for _ in range(4)] == [
        Lost(0),
        Lost(1),
        Lost(2),
        Data(b"p3", 3),
    ]
