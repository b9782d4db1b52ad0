"""Machine configuration loading and validation."""

from spray_control.configs.loader import (
    ConfigError,
    ConnectionConfig,
    GeometryConfig,
    LoggingConfig,
    MachineConfig,
    ProtocolConfig,
    load_config,
)

__all__ = [
    "ConfigError",
    "ConnectionConfig",
    "GeometryConfig",
    "LoggingConfig",
    "MachineConfig",
    "ProtocolConfig",
    "load_config",
]
