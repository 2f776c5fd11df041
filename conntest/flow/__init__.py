from .exceptions import (
    DuplicateConnectionError,
    FlowClosedError,
    FlowError,
    FlowIOError,
    PortExhaustedError,
)
from .ports import (
    PortAllocator,
)
from .registry import (
    ConnectionRegistry,
)
from .ring import (
    Ring,
)
from .types import (
    EOF,
    Data,
    EndOfStream,
    Lost,
    ReadResult,
    RingSlot,
)

__all__ = [
    "ConnectionRegistry",
    "Data",
    "DuplicateConnectionError",
    "EOF",
    "EndOfStream",
    "FlowClosedError",
    "FlowError",
    "FlowIOError",
    "Lost",
    "PortAllocator",
    "PortExhaustedError",
    "ReadResult",
    "Ring",
    "RingSlot",
]
