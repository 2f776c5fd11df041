"""
Registry of live datagram flows keyed by connection identity.

Every method is synchronous and never yields to the trio scheduler, so a
lookup, insert or removal is never observed half-done by another task.
"""

from collections.abc import (
    Iterator,
)
import logging
from typing import (
    TYPE_CHECKING,
)

from conntest.custom_types import (
    TConnectionID,
)
from conntest.flow.exceptions import (
    DuplicateConnectionError,
)

if TYPE_CHECKING:
    from conntest.transport.udp.flow import UDPFlow

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    _flows: dict[TConnectionID, "UDPFlow"]

    def __init__(self) -> None:
        self._flows = {}

    def lookup(self, connection_id: TConnectionID) -> "UDPFlow | None":
        return self._flows.get(connection_id)

    def insert(self, connection_id: TConnectionID, flow: "UDPFlow") -> None:
        """
        Register ``flow`` under ``connection_id``.

        :raise DuplicateConnectionError: if a flow is already registered
        """
        if connection_id in self._flows:
            raise DuplicateConnectionError(
                f"Connection {connection_id!r} is already registered"
            )
        self._flows[connection_id] = flow
        logger.debug("Registered connection %s", connection_id)

    def remove(self, connection_id: TConnectionID) -> "UDPFlow | None":
        flow = self._flows.pop(connection_id, None)
        if flow is not None:
            logger.debug("Unregistered connection %s", connection_id)
        return flow

    def flows(self) -> list["UDPFlow"]:
        return list(self._flows.values())

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._flows

    def __iter__(self) -> Iterator[TConnectionID]:
        return iter(list(self._flows))

    def __len__(self) -> int:
        return len(self._flows)
