from conntest.exceptions import (
    BaseConntestError,
)


class FlowError(BaseConntestError):
    pass


class FlowIOError(FlowError):
    """Raised when the underlying transport fails to read or write."""


class FlowClosedError(FlowError):
    pass


class DuplicateConnectionError(FlowError):
    """Raised when a live flow is already registered under an identity."""


class PortExhaustedError(FlowError):
    """Raised when no free ephemeral port could be claimed."""
