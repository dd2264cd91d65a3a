"""Domain-specific errors for healthbridge."""


class HealthbridgeError(Exception):
    """Base error for healthbridge."""


class ConfigError(HealthbridgeError):
    """Base error for startup configuration problems."""


class ConfigLoadError(ConfigError):
    """Raised when reading the configuration file fails."""


class ConfigValidationError(ConfigError):
    """Raised when the configuration does not conform to schema or semantics."""


class DeviceSelectionError(HealthbridgeError):
    """Raised when a device id does not resolve to a configured device."""


class TransportError(HealthbridgeError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised on discovery, connect or bonding failures."""


class TransportSendError(TransportError):
    """Raised when characteristic I/O fails."""


class TransportTimeoutError(TransportError):
    """Raised when a transport wait times out."""


class AdvertisementTimeoutError(TransportTimeoutError):
    """Raised when no matching advertisement arrived in time."""


class ProtocolError(HealthbridgeError):
    """Base error for device protocol failures."""


class ShortPacketError(ProtocolError):
    """Raised when a received packet or frame is too short."""


class CrcMismatchError(ProtocolError):
    """Raised when a received packet fails checksum validation."""


class ProtocolViolationError(ProtocolError):
    """Raised on unexpected opcodes, address echoes or handshake replies."""


class PacketTooLargeError(ProtocolError):
    """Raised when a command does not fit into the available chunks."""


class DeviceError(HealthbridgeError):
    """Base error for device state problems."""


class UnknownDeviceError(DeviceError):
    """Raised when the device identity does not match the driver."""


class AlreadyPairedError(DeviceError):
    """Raised when pairing is requested for an already bonded device."""


class NotPairedError(DeviceError):
    """Raised when fetching from a device that was never bonded."""


class DecodeError(HealthbridgeError):
    """Raised when device data cannot be decoded."""


class SinkError(HealthbridgeError):
    """Raised when forwarding records to the sink fails."""
