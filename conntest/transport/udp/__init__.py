from .config import (
    DatagramFlowConfig,
)
from .flow import (
    UDPFlow,
)
from .manager import (
    DatagramFlowManager,
    DatagramStats,
    open_datagram_flow_manager,
)
from .transport import (
    UDPFlowTransport,
)

__all__ = [
    "DatagramFlowConfig",
    "DatagramFlowManager",
    "DatagramStats",
    "UDPFlow",
    "UDPFlowTransport",
    "open_datagram_flow_manager",
]
