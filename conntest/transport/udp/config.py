"""
Configuration for the datagram flow manager.
"""

from dataclasses import (
    dataclass,
)

from conntest.flow.ports import (
    DEFAULT_MAX_ATTEMPTS,
    EPHEMERAL_PORT_MAX,
    EPHEMERAL_PORT_MIN,
)


@dataclass(frozen=True)
class DatagramFlowConfig:
    """Tunables for datagram flows."""

    ring_size: int = 5
    """How many recent datagrams each flow keeps for resequencing."""

    reorder_timeout: float = 0.5
    """
    Seconds to wait for a missing index once a later one has arrived,
    before reporting it as lost.
    """

    recv_buffer_size: int = 65536
    """Largest datagram accepted, in bytes."""

    bind_host: str = "0.0.0.0"
    # Used for outbound flows to IPv6 peers.
    bind_host6: str = "::"

    port_min: int = EPHEMERAL_PORT_MIN
    port_max: int = EPHEMERAL_PORT_MAX
    max_port_attempts: int = DEFAULT_MAX_ATTEMPTS

    # Closed connection ids remembered so stray datagrams do not reopen them.
    closed_id_memory: int = 1024

    def __post_init__(self) -> None:
        if self.ring_size < 1:
            raise ValueError("ring_size must be at least 1")
        if self.reorder_timeout <= 0:
            raise ValueError("reorder_timeout must be positive")
