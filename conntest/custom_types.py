from collections.abc import (
    Awaitable,
    Callable,
)
from typing import (
    TYPE_CHECKING,
    NewType,
)

if TYPE_CHECKING:
    from conntest.abc import IFlow  # noqa: F401

TConnectionID = NewType("TConnectionID", str)

THandler = Callable[["IFlow"], Awaitable[None]]
