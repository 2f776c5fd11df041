from .flow import (
    TCPFlow,
    TCPFlowTransport,
    open_tcp_flow_transport,
)

__all__ = [
    "TCPFlow",
    "TCPFlowTransport",
    "open_tcp_flow_transport",
]
