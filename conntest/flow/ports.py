import logging
import random

from conntest.flow.exceptions import (
    PortExhaustedError,
)

logger = logging.getLogger(__name__)

EPHEMERAL_PORT_MIN = 10_000
EPHEMERAL_PORT_MAX = 59_999
DEFAULT_MAX_ATTEMPTS = 1000


class PortAllocator:
    """
    Hands out local source ports for outbound datagram flows.

    A claimed port is never handed out again until it is freed. Candidates
    are drawn uniformly at random from ``[port_min, port_max]``; the number
    of draws per allocation is bounded by ``max_attempts`` so a nearly
    saturated range fails with :class:`PortExhaustedError` instead of
    spinning.
    """

    def __init__(
        self,
        port_min: int = EPHEMERAL_PORT_MIN,
        port_max: int = EPHEMERAL_PORT_MAX,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        rng: random.Random | None = None,
    ) -> None:
        if port_min > port_max:
            raise ValueError(f"Empty port range {port_min}-{port_max}")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.port_min = port_min
        self.port_max = port_max
        self.max_attempts = max_attempts
        self._rng = rng if rng is not None else random.Random()
        self._claimed: set[int] = set()

    @property
    def claimed(self) -> frozenset[int]:
        return frozenset(self._claimed)

    @property
    def range_size(self) -> int:
        return self.port_max - self.port_min + 1

    def allocate(self) -> int:
        if len(self._claimed) >= self.range_size:
            raise PortExhaustedError(
                f"All {self.range_size} ports in "
                f"{self.port_min}-{self.port_max} are claimed"
            )
        for _ in range(self.max_attempts):
            port = self._rng.randint(self.port_min, self.port_max)
            if port not in self._claimed:
                self._claimed.add(port)
                logger.debug("Allocated port %d", port)
                return port
        raise PortExhaustedError(
            f"No free port found in {self.port_min}-{self.port_max} "
            f"after {self.max_attempts} attempts "
            f"({len(self._claimed)} claimed)"
        )

    def free(self, port: int) -> None:
        if port in self._claimed:
            self._claimed.discard(port)
            logger.debug("Freed port %d", port)

    def __contains__(self, port: object) -> bool:
        return port in self._claimed

    def __len__(self) -> int:
        return len(self._claimed)
