from dataclasses import (
    dataclass,
    field,
)

import pytest
import trio

from conntest.abc import (
    IOutput,
)
from conntest.transport.udp import (
    DatagramFlowConfig,
)


@dataclass
class RecordingOutput(IOutput):
    """Collects every result so tests can wait on and inspect them."""

    connections: list[tuple] = field(default_factory=list)
    measurements: list[tuple] = field(default_factory=list)
    losses: list[tuple] = field(default_factory=list)
    errors: list[tuple] = field(default_factory=list)
    changed: trio.Event = field(default_factory=trio.Event)

    def _notify(self) -> None:
        self.changed.set()
        self.changed = trio.Event()

    def connected(self, name, peer_name, subproto, remote):
        self.connections.append((name, peer_name, subproto, remote))
        self._notify()

    def bandwidth(self, name, peer_name, subproto, measurement):
        self.measurements.append((name, peer_name, subproto, measurement))
        self._notify()

    def packet_lost(self, name, subproto, connection_id, index):
        self.losses.append((name, subproto, connection_id, index))
        self._notify()

    def error(self, name, subproto, message):
        self.errors.append((name, subproto, message))
        self._notify()

    async def wait_for(self, predicate, timeout: float = 5.0) -> None:
        with trio.fail_after(timeout):
            while not predicate(self):
                await self.changed.wait()


@pytest.fixture
def output():
    return RecordingOutput()


@pytest.fixture
def datagram_config():
    return DatagramFlowConfig(bind_host="127.0.0.1", reorder_timeout=0.2)
