"""
Values produced by reading a flow.

A flow read yields exactly one of :class:`Data`, :class:`Lost` or the
:data:`EOF` marker, whichever transport the flow runs over.
"""

from dataclasses import (
    dataclass,
)
from typing import (
    Final,
    Union,
)


@dataclass(frozen=True)
class RingSlot:
    """A datagram slot kept in a flow's lookback ring."""

    payload: bytes | None  # None => known to be lost
    sequence_index: int


@dataclass(frozen=True)
class Data:
    payload: bytes
    # Stream flows carry no sequence index.
    index: int | None = None


@dataclass(frozen=True)
class Lost:
    """The datagram with this index never arrived in time."""

    index: int


class EndOfStream:
    _instance: "EndOfStream | None" = None

    def __new__(cls) -> "EndOfStream":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "EOF"

    def __bool__(self) -> bool:
        return False


EOF: Final = EndOfStream()

ReadResult = Union[Data, Lost, EndOfStream]
