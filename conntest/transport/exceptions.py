from conntest.exceptions import (
    BaseConntestError,
)


class TransportError(BaseConntestError):
    """Raised when there is an error in the transport layer."""


class OpenConnectionError(TransportError):
    pass


class ListenError(TransportError):
    pass
