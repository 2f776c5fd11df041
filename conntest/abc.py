from abc import (
    ABC,
    abstractmethod,
)
from collections.abc import (
    Sequence,
)
from typing import (
    TYPE_CHECKING,
    Literal,
)

from conntest.custom_types import (
    TConnectionID,
    THandler,
)
from conntest.flow.types import (
    ReadResult,
)

if TYPE_CHECKING:
    from conntest.config import MonitorBandwidthConfig
    from conntest.output import BandwidthMeasurement

TSubproto = Literal["tcp", "udp"]


# -------------------------- flow interface --------------------------


class IFlow(ABC):
    """
    A logical, addressable, bidirectional conversation with one peer.

    The same interface is offered whether the flow runs over a stream
    transport, which orders bytes natively, or over a datagram transport,
    where ordering is rebuilt from sequence indices.
    """

    connection_id: TConnectionID

    @abstractmethod
    async def read(self) -> ReadResult:
        """
        Read the next item from the flow.

        Returns
        -------
        ReadResult
            ``Data`` with the next in-order payload, ``Lost`` for a datagram
            that never arrived in time, or ``EOF`` once the flow is closed.

        """

    @abstractmethod
    async def writev(self, fragments: Sequence[bytes]) -> None:
        """
        Write ``fragments`` as one logical unit.

        Parameters
        ----------
        fragments : Sequence[bytes]
            Buffers that are concatenated before transmission.

        """

    async def write(self, data: bytes) -> None:
        await self.writev([data])

    @abstractmethod
    async def close(self) -> None:
        """Close the flow. Closing twice is a no-op."""

    @abstractmethod
    def get_remote_address(self) -> tuple[str, int] | None:
        """Return the peer's ``(host, port)`` if known."""


class IFlowTransport(ABC):
    """
    Transport operations expressed in flow vocabulary.

    Implemented once per transport; the protocol driver only sees this.
    """

    subproto: TSubproto

    @abstractmethod
    async def listen(self, port: int, handler: THandler) -> None:
        """
        Accept inbound flows on ``port``.

        Parameters
        ----------
        port : int
            Local port to bind, 0 for an OS-chosen port.
        handler : THandler
            Called with each new inbound flow. Runs in its own task.

        Raises
        ------
        ListenError
            If the port cannot be bound.

        """

    @abstractmethod
    async def unlisten(self, port: int) -> None:
        """Stop accepting flows on ``port``."""

    @abstractmethod
    def get_port(self, port: int) -> int:
        """Return the port actually bound for a ``listen(port, ...)`` call."""

    @abstractmethod
    async def create_connection(
        self, connection_id: TConnectionID, peer: tuple[str, int]
    ) -> IFlow:
        """
        Open an outbound flow to ``peer``.

        Parameters
        ----------
        connection_id : TConnectionID
            Identity the flow is known by on both ends.
        peer : tuple[str, int]
            Remote ``(host, port)``.

        Raises
        ------
        OpenConnectionError
            If the flow cannot be opened.

        """


# -------------------------- protocol capability --------------------------


class IListen(ABC):
    @abstractmethod
    async def start(self, name: str, port: int, timeout: float | None) -> None:
        """
        Serve inbound flows on ``port`` for up to ``timeout`` seconds.

        Parameters
        ----------
        name : str
            Name this instance reports to peers.
        port : int
            Port to listen on.
        timeout : float | None
            How long to run. ``None`` runs until cancelled.

        """


class IConnect(ABC):
    @abstractmethod
    async def start(
        self,
        name: str,
        port: int,
        peer_address: str,
        monitor_bandwidth: "MonitorBandwidthConfig",
        timeout: float | None,
    ) -> None:
        """
        Open a flow to a peer and probe it for up to ``timeout`` seconds.

        Parameters
        ----------
        name : str
            Name this instance reports to the peer.
        port : int
            Peer port.
        peer_address : str
            Peer host address.
        monitor_bandwidth : MonitorBandwidthConfig
            Whether to stream filler packets, and how large.
        timeout : float | None
            How long to run. ``None`` runs until cancelled.

        """


class IProtocol(ABC):
    listen: IListen
    connect: IConnect


# -------------------------- reporting sink --------------------------


class IOutput(ABC):
    """Receives connectivity and bandwidth results for display."""

    @abstractmethod
    def connected(
        self,
        name: str,
        peer_name: str,
        subproto: TSubproto,
        remote: tuple[str, int] | None,
    ) -> None: ...

    @abstractmethod
    def bandwidth(
        self,
        name: str,
        peer_name: str,
        subproto: TSubproto,
        measurement: "BandwidthMeasurement",
    ) -> None: ...

    @abstractmethod
    def packet_lost(
        self,
        name: str,
        subproto: TSubproto,
        connection_id: TConnectionID,
        index: int,
    ) -> None: ...

    @abstractmethod
    def error(self, name: str, subproto: TSubproto, message: str) -> None: ...
