"""
A datagram flow and its sequencer.

Datagrams for a flow are pushed into its lookback ring by the manager's
receive loop. The sequencer task pulls them back out in index order and
hands them, one at a time, to whoever reads the flow. The inbox is a
zero-capacity channel, so the sequencer only runs as fast as the reader.
"""

from collections import (
    deque,
)
from collections.abc import (
    Sequence,
)
import logging
from typing import (
    TYPE_CHECKING,
)

import trio

from conntest.abc import (
    IFlow,
)
from conntest.custom_types import (
    TConnectionID,
)
from conntest.flow.ring import (
    Ring,
)
from conntest.flow.types import (
    EOF,
    Data,
    Lost,
    ReadResult,
    RingSlot,
)

if TYPE_CHECKING:
    from .manager import DatagramFlowManager

logger = logging.getLogger(__name__)


class UDPFlow(IFlow):
    connection_id: TConnectionID
    local_port: int
    peer_address: str
    peer_port: int
    is_initiator: bool
    ring: Ring[RingSlot]

    def __init__(
        self,
        manager: "DatagramFlowManager",
        connection_id: TConnectionID,
        local_port: int,
        peer_address: str,
        peer_port: int,
        *,
        is_initiator: bool,
        ring_size: int,
        reorder_timeout: float,
    ) -> None:
        self._manager = manager
        self.connection_id = connection_id
        self.local_port = local_port
        self.peer_address = peer_address
        self.peer_port = peer_port
        self.is_initiator = is_initiator
        self.ring = Ring(ring_size)
        self.reorder_timeout = reorder_timeout

        send_channel, receive_channel = trio.open_memory_channel[ReadResult](0)
        self._inbox_send = send_channel
        self._inbox_receive = receive_channel
        self._read_lock = trio.Lock()

        self._sequencer_scope = trio.CancelScope()
        self._arrived = trio.Event()
        self._highest_index: int | None = None
        # (new highest index, time it arrived): every index below it has
        # been overtaken since that time.
        self._overtaken: deque[tuple[int, float]] = deque()
        self._next_index = 0
        self._closed = False

    def __repr__(self) -> str:
        return (
            f"<UDPFlow {self.connection_id} :{self.local_port} <-> "
            f"{self.peer_address}:{self.peer_port}>"
        )

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def next_index(self) -> int:
        """Sequence index the sequencer will deliver next."""
        return self._next_index

    # -------------------------- receive path --------------------------

    def push(self, slot: RingSlot) -> None:
        """
        Record an arrived datagram. Never blocks.

        A datagram overtaken more than ``reorder_timeout`` ago is stored as
        a loss marker; its index has been or will be reported lost anyway.
        Ordering is otherwise left entirely to the sequencer.
        """
        if self._closed:
            return
        now = trio.current_time()
        index = slot.sequence_index
        if self._highest_index is None or index > self._highest_index:
            self._highest_index = index
            self._overtaken.append((index, now))
        else:
            overtaken_at = self._overtaken_at(index)
            if (
                overtaken_at is not None
                and now - overtaken_at > self.reorder_timeout
                and slot.payload is not None
            ):
                logger.debug(
                    "Index %d of %s arrived %.3fs after it was overtaken",
                    index,
                    self.connection_id,
                    now - overtaken_at,
                )
                slot = RingSlot(payload=None, sequence_index=index)
        self.ring.insert(slot)
        self._arrived.set()

    # -------------------------- sequencer --------------------------

    async def run_sequencer(self) -> None:
        with self._sequencer_scope:
            try:
                while True:
                    result = await self._next_result()
                    await self._inbox_send.send(result)
                    self._next_index += 1
            except (trio.BrokenResourceError, trio.ClosedResourceError):
                logger.debug("Sequencer for %s lost its inbox", self.connection_id)
        logger.debug(
            "Sequencer for %s stopped at index %d",
            self.connection_id,
            self._next_index,
        )

    async def _next_result(self) -> Data | Lost:
        expected = self._next_index
        while self._overtaken and self._overtaken[0][0] <= expected:
            self._overtaken.popleft()
        while True:
            slot = self._find(expected)
            if slot is not None:
                if slot.payload is None:
                    return Lost(expected)
                return Data(slot.payload, expected)
            if self._is_evicted(expected):
                logger.debug(
                    "Index %d of %s was pushed out of the ring",
                    expected,
                    self.connection_id,
                )
                return Lost(expected)

            # The clock runs from the moment a later index first arrived, so
            # a run of missing indices shares one deadline. An idle flow
            # waits for ever without reporting losses.
            overtaken_at = self._overtaken_at(expected)
            if overtaken_at is None:
                await self._wait_for_arrival()
                continue
            deadline = overtaken_at + self.reorder_timeout
            if trio.current_time() < deadline:
                with trio.move_on_at(deadline):
                    await self._wait_for_arrival()
                continue
            logger.debug(
                "Index %d of %s timed out after %.3fs",
                expected,
                self.connection_id,
                self.reorder_timeout,
            )
            return Lost(expected)

    async def _wait_for_arrival(self) -> None:
        await self._arrived.wait()
        self._arrived = trio.Event()

    def _find(self, index: int) -> RingSlot | None:
        for slot in self.ring:
            if slot.sequence_index == index:
                return slot
        return None

    def _overtaken_at(self, index: int) -> float | None:
        """Time a higher index than ``index`` first arrived, if one has."""
        for highest, arrived_at in self._overtaken:
            if highest > index:
                return arrived_at
        return None

    def _is_evicted(self, index: int) -> bool:
        held = list(self.ring)
        return len(held) == self.ring.capacity and all(
            slot.sequence_index > index for slot in held
        )

    # -------------------------- consumer side --------------------------

    async def read(self) -> ReadResult:
        async with self._read_lock:
            try:
                return await self._inbox_receive.receive()
            except (trio.EndOfChannel, trio.ClosedResourceError):
                return EOF

    async def writev(self, fragments: Sequence[bytes]) -> None:
        await self._manager.writev(self, fragments)

    async def close(self) -> None:
        await self._manager.close(self)

    def get_remote_address(self) -> tuple[str, int] | None:
        return self.peer_address, self.peer_port

    def get_local_port(self) -> int:
        return self.local_port

    def shutdown(self) -> bool:
        """
        Stop the sequencer and release any blocked reader with EOF.

        :return: False if the flow was already shut down
        """
        if self._closed:
            return False
        self._closed = True
        self._sequencer_scope.cancel()
        self._inbox_send.close()
        return True
