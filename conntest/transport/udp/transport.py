from conntest.abc import (
    IFlowTransport,
    TSubproto,
)
from conntest.custom_types import (
    TConnectionID,
    THandler,
)
from conntest.flow.exceptions import (
    FlowError,
)
from conntest.transport.exceptions import (
    OpenConnectionError,
)

from .flow import (
    UDPFlow,
)
from .manager import (
    DatagramFlowManager,
)


class UDPFlowTransport(IFlowTransport):
    """Presents a :class:`DatagramFlowManager` as a flow transport."""

    subproto: TSubproto = "udp"

    def __init__(self, manager: DatagramFlowManager) -> None:
        self.manager = manager

    async def listen(self, port: int, handler: THandler) -> None:
        await self.manager.listen(port, handler)

    async def unlisten(self, port: int) -> None:
        await self.manager.unlisten(port)

    def get_port(self, port: int) -> int:
        return self.manager.get_port(port)

    async def create_connection(
        self, connection_id: TConnectionID, peer: tuple[str, int]
    ) -> UDPFlow:
        """
        :raise OpenConnectionError: raised when no local port could be bound
        """
        peer_address, peer_port = peer
        try:
            return await self.manager.connect(connection_id, peer_address, peer_port)
        except FlowError as error:
            raise OpenConnectionError(
                f"Failed to open UDP flow to {peer_address}:{peer_port}: {error}"
            ) from error
