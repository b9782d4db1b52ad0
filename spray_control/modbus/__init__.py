"""
Modbus communication module.

Encodes spray configurations into the controller's register map and
uploads them over Modbus TCP.
"""

from spray_control.modbus.encoder import (
    ConfigurationError,
    EncodedProgram,
    ProtocolEncoder,
)
from spray_control.modbus.transport import (
    SaveTimeout,
    TransportError,
    TransportResult,
    TransportSession,
)

__all__ = [
    "ConfigurationError",
    "EncodedProgram",
    "ProtocolEncoder",
    "SaveTimeout",
    "TransportError",
    "TransportResult",
    "TransportSession",
]
