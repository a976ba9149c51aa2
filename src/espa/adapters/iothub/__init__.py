from .sas import HubConnection, connection_string_key, generate_sas_token, parse_connection_string
from .transport import (
    DeviceInfo,
    DeviceNotFound,
    DeviceTransport,
    DirectMethodResult,
    IoTHubTransport,
    RegistrationResult,
    TransportError,
)
from .loopback import LoopbackTransport

__all__ = [
    "HubConnection",
    "connection_string_key",
    "generate_sas_token",
    "parse_connection_string",
    "DeviceInfo",
    "DeviceNotFound",
    "DeviceTransport",
    "DirectMethodResult",
    "IoTHubTransport",
    "RegistrationResult",
    "TransportError",
    "LoopbackTransport",
]
