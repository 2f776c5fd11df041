"""
Run a whole conntest instance: every listener and every peer connection.
"""

from functools import (
    partial,
)
import logging

import trio

from conntest.abc import (
    IOutput,
    TSubproto,
)
from conntest.config import (
    ProbeConfig,
)
from conntest.output import (
    LogOutput,
)
from conntest.protocol import (
    Protocol,
    ProtocolConfig,
)
from conntest.transport.tcp import (
    open_tcp_flow_transport,
)
from conntest.transport.udp import (
    DatagramFlowConfig,
    UDPFlowTransport,
    open_datagram_flow_manager,
)

logger = logging.getLogger(__name__)


async def run_probe(
    config: ProbeConfig,
    output: IOutput | None = None,
    *,
    datagram_config: DatagramFlowConfig | None = None,
    protocol_config: ProtocolConfig | None = None,
) -> None:
    """
    Start every configured listener and connection and wait for them.

    Returns once all of them have run for ``config.timeout``; without a
    timeout, runs until cancelled.
    """
    output = output if output is not None else LogOutput()
    async with open_tcp_flow_transport() as tcp_transport, open_datagram_flow_manager(
        datagram_config
    ) as manager:
        protocols: dict[TSubproto, Protocol] = {
            "tcp": Protocol(tcp_transport, output, protocol_config),
            "udp": Protocol(UDPFlowTransport(manager), output, protocol_config),
        }
        async with trio.open_nursery() as nursery:
            for listen_spec in config.listens:
                logger.info(
                    "%s listening on %s:%d",
                    config.name,
                    listen_spec.protocol,
                    listen_spec.port,
                )
                nursery.start_soon(
                    protocols[listen_spec.protocol].listen.start,
                    config.name,
                    listen_spec.port,
                    config.timeout,
                )
            for connect_spec in config.connects:
                logger.info("%s connecting to %s", config.name, connect_spec.maddr)
                nursery.start_soon(
                    partial(
                        protocols[connect_spec.protocol].connect.start,
                        config.name,
                        connect_spec.port,
                        connect_spec.host,
                        connect_spec.monitor_bandwidth,
                        config.timeout,
                    )
                )
