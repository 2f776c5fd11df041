class BaseConntestError(Exception):
    pass


class ConfigError(BaseConntestError):
    """Raised when a listen spec, peer URI or option cannot be parsed."""


class PacketDecodeError(BaseConntestError):
    pass


class PacketIncompleteError(PacketDecodeError):
    """Fewer bytes were available than the packet header announces."""
