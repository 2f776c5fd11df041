"""
Configuration surface for a conntest instance.

An instance has a name, any number of ``<proto>:<port>`` listen specs and
any number of peer URIs to connect to, e.g.
``udp://1.2.3.4:1234?monitor-bandwidth&packet-size=500``. Peer URIs are
turned into multiaddrs such as ``/ip4/1.2.3.4/udp/1234``.
"""

from collections.abc import (
    Sequence,
)
from dataclasses import (
    dataclass,
    field,
)
import ipaddress
from typing import (
    cast,
)
from urllib.parse import (
    parse_qs,
    urlsplit,
)

from multiaddr import (
    Multiaddr,
)
from multiaddr.exceptions import (
    ProtocolLookupError,
)

from conntest.abc import (
    TSubproto,
)
from conntest.exceptions import (
    ConfigError,
)

SUPPORTED_PROTOCOLS: tuple[TSubproto, ...] = ("tcp", "udp")

DEFAULT_PACKET_SIZE = 1000

_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class MonitorBandwidthConfig:
    enabled: bool = False
    packet_size: int = DEFAULT_PACKET_SIZE

    def __post_init__(self) -> None:
        if self.packet_size < 1:
            raise ConfigError(f"packet-size must be positive, got {self.packet_size}")


@dataclass(frozen=True)
class ListenSpec:
    protocol: TSubproto
    port: int


@dataclass(frozen=True)
class ConnectSpec:
    protocol: TSubproto
    maddr: Multiaddr
    monitor_bandwidth: MonitorBandwidthConfig = field(
        default_factory=MonitorBandwidthConfig
    )

    @property
    def host(self) -> str:
        for proto in ("ip4", "ip6"):
            try:
                value = self.maddr.value_for_protocol(proto)
            except ProtocolLookupError:
                continue
            if value:
                return value
        raise ConfigError(f"No IP address in {self.maddr}")

    @property
    def port(self) -> int:
        return int(self.maddr.value_for_protocol(self.protocol))


@dataclass(frozen=True)
class ProbeConfig:
    name: str
    listens: tuple[ListenSpec, ...] = ()
    connects: tuple[ConnectSpec, ...] = ()
    timeout: float | None = None


def _parse_protocol(value: str) -> TSubproto:
    protocol = value.strip().lower()
    if protocol not in SUPPORTED_PROTOCOLS:
        raise ConfigError(
            f"Unsupported protocol {value!r}, expected one of "
            f"{', '.join(SUPPORTED_PROTOCOLS)}"
        )
    return cast(TSubproto, protocol)


def _parse_port(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise ConfigError(f"Invalid port {value!r}") from None
    if not 0 <= port <= 65535:
        raise ConfigError(f"Port {port} is out of range")
    return port


def parse_listen_spec(value: str) -> ListenSpec:
    """Parse ``<proto>:<port>``, e.g. ``tcp:1234``."""
    parts = value.split(":")
    if len(parts) != 2:
        raise ConfigError(f"Listen spec {value!r} must look like <proto>:<port>")
    protocol, port = parts
    return ListenSpec(_parse_protocol(protocol), _parse_port(port))


def _parse_monitor_bandwidth(query: str) -> MonitorBandwidthConfig:
    params = parse_qs(query, keep_blank_values=True)
    enabled = False
    if "monitor-bandwidth" in params:
        value = params["monitor-bandwidth"][-1].strip().lower()
        enabled = value not in _FALSE_VALUES
    packet_size = DEFAULT_PACKET_SIZE
    if "packet-size" in params:
        raw = params["packet-size"][-1]
        try:
            packet_size = int(raw)
        except ValueError:
            raise ConfigError(f"Invalid packet-size {raw!r}") from None
    return MonitorBandwidthConfig(enabled=enabled, packet_size=packet_size)


def parse_connect_uri(value: str) -> ConnectSpec:
    """
    Parse a peer URI such as ``tcp://1.2.3.4:1234?monitor-bandwidth``.

    Only IP addresses are accepted as hosts.
    """
    parts = urlsplit(value)
    protocol = _parse_protocol(parts.scheme)
    if not parts.hostname:
        raise ConfigError(f"Peer URI {value!r} has no host")
    try:
        ip = ipaddress.ip_address(parts.hostname)
    except ValueError:
        raise ConfigError(
            f"Peer URI host {parts.hostname!r} must be an IP address"
        ) from None
    try:
        port = parts.port
    except ValueError:
        raise ConfigError(f"Invalid port in peer URI {value!r}") from None
    if port is None:
        raise ConfigError(f"Peer URI {value!r} has no port")

    ip_proto = "ip4" if ip.version == 4 else "ip6"
    maddr = Multiaddr(f"/{ip_proto}/{ip}/{protocol}/{port}")
    return ConnectSpec(protocol, maddr, _parse_monitor_bandwidth(parts.query))


def build_probe_config(
    name: str,
    listens: Sequence[str] = (),
    connects: Sequence[str] = (),
    timeout: float | None = None,
) -> ProbeConfig:
    if not name:
        raise ConfigError("An instance name is required")
    if timeout is not None and timeout <= 0:
        raise ConfigError(f"Timeout must be positive, got {timeout}")
    return ProbeConfig(
        name=name,
        listens=tuple(parse_listen_spec(spec) for spec in listens),
        connects=tuple(parse_connect_uri(uri) for uri in connects),
        timeout=timeout,
    )
