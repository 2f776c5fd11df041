"""Connectivity and bandwidth probe between peers over TCP and UDP."""

from conntest.config import (
    ConnectSpec,
    ListenSpec,
    MonitorBandwidthConfig,
    ProbeConfig,
    build_probe_config,
)
from conntest.output import (
    BandwidthMeasurement,
    LogOutput,
)
from conntest.probe import (
    run_probe,
)
from conntest.protocol import (
    Protocol,
    ProtocolConfig,
)

__version__ = "0.1.0"

__all__ = [
    "BandwidthMeasurement",
    "ConnectSpec",
    "ListenSpec",
    "LogOutput",
    "MonitorBandwidthConfig",
    "ProbeConfig",
    "Protocol",
    "ProtocolConfig",
    "build_probe_config",
    "run_probe",
]
