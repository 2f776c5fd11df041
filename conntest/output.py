"""
Reporting sink for probe results.
"""

from dataclasses import (
    asdict,
    dataclass,
)
import json
import logging

from conntest.abc import (
    IOutput,
    TSubproto,
)
from conntest.custom_types import (
    TConnectionID,
)
from conntest.exceptions import (
    PacketDecodeError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BandwidthMeasurement:
    """Bytes and packets received by a listener over one interval."""

    bytes: int
    seconds: float
    packets: int
    lost: int

    @property
    def bytes_per_second(self) -> float:
        if self.seconds <= 0:
            return 0.0
        return self.bytes / self.seconds

    @property
    def megabits_per_second(self) -> float:
        return self.bytes_per_second * 8 / 1_000_000

    def to_json(self) -> bytes:
        return json.dumps(asdict(self)).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes) -> "BandwidthMeasurement":
        try:
            fields = json.loads(data.decode("utf-8"))
            return cls(
                bytes=int(fields["bytes"]),
                seconds=float(fields["seconds"]),
                packets=int(fields["packets"]),
                lost=int(fields["lost"]),
            )
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as error:
            raise PacketDecodeError(f"Invalid bandwidth report: {error}") from error


class LogOutput(IOutput):
    """Writes results to the ``conntest.output`` logger."""

    def __init__(self, logger: logging.Logger = logger) -> None:
        self._logger = logger

    def connected(
        self,
        name: str,
        peer_name: str,
        subproto: TSubproto,
        remote: tuple[str, int] | None,
    ) -> None:
        where = f"{remote[0]}:{remote[1]}" if remote is not None else "unknown"
        self._logger.info(
            "[%s] %s connected to %s at %s", subproto, name, peer_name, where
        )

    def bandwidth(
        self,
        name: str,
        peer_name: str,
        subproto: TSubproto,
        measurement: BandwidthMeasurement,
    ) -> None:
        self._logger.info(
            "[%s] %s <-> %s: %.3f Mbit/s (%d bytes in %.2fs, %d packets, %d lost)",
            subproto,
            name,
            peer_name,
            measurement.megabits_per_second,
            measurement.bytes,
            measurement.seconds,
            measurement.packets,
            measurement.lost,
        )

    def packet_lost(
        self,
        name: str,
        subproto: TSubproto,
        connection_id: TConnectionID,
        index: int,
    ) -> None:
        self._logger.debug(
            "[%s] %s: packet %d of %s lost", subproto, name, index, connection_id
        )

    def error(self, name: str, subproto: TSubproto, message: str) -> None:
        self._logger.warning("[%s] %s: %s", subproto, name, message)
