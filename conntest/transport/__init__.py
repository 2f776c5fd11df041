from .exceptions import (
    ListenError,
    OpenConnectionError,
    TransportError,
)

__all__ = [
    "ListenError",
    "OpenConnectionError",
    "TransportError",
]
