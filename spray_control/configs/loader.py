"""Configuration loader for spray control.

Loads and validates ``machine.yaml`` into typed, frozen dataclasses.
Register addresses, transmission pacing and device limits all come from
the config.  The dataclass defaults match the robot controller's
register map, so the encoder and transport session work without a YAML
file (tests, interactive sessions).

Usage::

    from spray_control.configs.loader import load_config
    cfg = load_config()                       # default path
    cfg = load_config("/custom/machine.yaml") # explicit path
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from spray_control.utils.fs import load_yaml

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(Exception):
    """Raised when machine configuration validation fails."""

    pass


# ---------------------------------------------------------------------------
# Dataclasses -- mirror the YAML structure
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConnectionConfig:
    """Modbus TCP connection settings."""

    host: str = "192.168.0.1"
    port: int = 502
    timeout_s: float = 2.0
    unit_id: int = 1


@dataclass(frozen=True)
class ProtocolConfig:
    """Robot controller register map, pacing and limits.

    Addresses are 0-based holding-register indices.  The control stream
    occupies ``control_register`` .. ``control_register + control_slots - 1``
    and the float payload starts at ``payload_base_register`` (2 registers
    per float).
    """

    # -- register map -------------------------------------------------------
    robot_status_register: int = 1000
    save_status_register: int = 1001
    speed_mode_register: int = 1001
    test_run_register: int = 1002
    control_register: int = 1010
    control_slots: int = 7
    payload_base_register: int = 4000

    # -- handshake values ---------------------------------------------------
    writing_marker: int = 1
    complete_marker: int = 2
    save_success_value: int = 1
    send_ready_status: int = 2
    busy_status: int = 1
    fault_status: int = 3
    test_run_ready_status: int = 1
    slow_speed_mode: int = 11
    standard_speed_mode: int = 22
    test_run_trigger: int = 33

    # -- pacing -------------------------------------------------------------
    chunk_registers: int = 50
    chunk_delay_s: float = 0.02
    poll_interval_s: float = 0.1
    poll_attempts: int = 50
    speed_mode_delay_s: float = 0.05

    # -- limits -------------------------------------------------------------
    max_passes: int = 4
    max_payload_floats: int = 900

    @property
    def save_timeout_s(self) -> float:
        """Upper bound on the save-acknowledgment wait."""
        return self.poll_interval_s * self.poll_attempts


@dataclass(frozen=True)
class GeometryConfig:
    """Discretisation settings."""

    resolution_deg: float = 15.0


@dataclass(frozen=True)
class LoggingConfig:
    """Arguments for :func:`spray_control.utils.logging_config.setup_logging`."""

    level: str = "INFO"
    file: str | None = None
    json: bool = False


@dataclass(frozen=True)
class MachineConfig:
    """Top-level configuration container."""

    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)
    geometry: GeometryConfig = field(default_factory=GeometryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

_INT_PROTOCOL_FIELDS = (
    "robot_status_register",
    "save_status_register",
    "speed_mode_register",
    "test_run_register",
    "control_register",
    "control_slots",
    "payload_base_register",
    "writing_marker",
    "complete_marker",
    "save_success_value",
    "send_ready_status",
    "busy_status",
    "fault_status",
    "test_run_ready_status",
    "slow_speed_mode",
    "standard_speed_mode",
    "test_run_trigger",
    "chunk_registers",
    "poll_attempts",
    "max_passes",
    "max_payload_floats",
)

_FLOAT_PROTOCOL_FIELDS = (
    "chunk_delay_s",
    "poll_interval_s",
    "speed_mode_delay_s",
)


def _parse_protocol(data: dict[str, Any]) -> ProtocolConfig:
    """Build ``ProtocolConfig``; keys absent from *data* keep their defaults."""
    known = set(_INT_PROTOCOL_FIELDS) | set(_FLOAT_PROTOCOL_FIELDS)
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown protocol key(s): {', '.join(unknown)}")

    kwargs: dict[str, Any] = {}
    for name in _INT_PROTOCOL_FIELDS:
        if name in data:
            value = data[name]
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(
                    f"protocol.{name} must be an integer, got {value!r}"
                )
            kwargs[name] = value
    for name in _FLOAT_PROTOCOL_FIELDS:
        if name in data:
            kwargs[name] = float(data[name])
    return ProtocolConfig(**kwargs)


def _validate_protocol(p: ProtocolConfig) -> None:
    for name in _INT_PROTOCOL_FIELDS:
        value = getattr(p, name)
        if name.endswith("_register") and not 0 <= value <= 0xFFFF:
            raise ConfigError(f"protocol.{name} must be 0..65535, got {value}")

    if p.chunk_registers < 2 or p.chunk_registers % 2:
        raise ConfigError(
            "protocol.chunk_registers must be an even number >= 2 "
            f"(floats span 2 registers), got {p.chunk_registers}"
        )
    if p.chunk_registers > 123:
        raise ConfigError(
            f"protocol.chunk_registers {p.chunk_registers} exceeds the "
            "Modbus write-multiple limit of 123"
        )
    if p.max_passes < 1:
        raise ConfigError(f"protocol.max_passes must be >= 1, got {p.max_passes}")
    if p.control_slots < 2 + p.max_passes:
        raise ConfigError(
            f"protocol.control_slots ({p.control_slots}) must hold the "
            f"marker, pass count and {p.max_passes} primitive counts"
        )
    if p.max_payload_floats < 1:
        raise ConfigError(
            f"protocol.max_payload_floats must be >= 1, got {p.max_payload_floats}"
        )
    if p.poll_attempts < 1:
        raise ConfigError(
            f"protocol.poll_attempts must be >= 1, got {p.poll_attempts}"
        )
    for name in _FLOAT_PROTOCOL_FIELDS:
        if getattr(p, name) < 0:
            raise ConfigError(f"protocol.{name} must be >= 0, got {getattr(p, name)}")

    control_end = p.control_register + p.control_slots
    payload_end = p.payload_base_register + 2 * p.max_payload_floats
    if p.control_register < payload_end and p.payload_base_register < control_end:
        raise ConfigError(
            f"Control window {p.control_register}-{control_end - 1} overlaps "
            f"payload window {p.payload_base_register}-{payload_end - 1}"
        )
    if payload_end - 1 > 0xFFFF:
        raise ConfigError(
            f"Payload window ends at register {payload_end - 1}, beyond 65535"
        )


def _validate_config(cfg: MachineConfig) -> None:
    """Cross-field validation.

    Raises
    ------
    ConfigError
        On the first failed check.
    """
    c = cfg.connection
    if not c.host:
        raise ConfigError("connection.host must not be empty")
    if not 1 <= c.port <= 65535:
        raise ConfigError(f"connection.port must be 1..65535, got {c.port}")
    if c.timeout_s <= 0:
        raise ConfigError(f"connection.timeout_s must be > 0, got {c.timeout_s}")
    if not 0 <= c.unit_id <= 255:
        raise ConfigError(f"connection.unit_id must be 0..255, got {c.unit_id}")

    _validate_protocol(cfg.protocol)

    if not 0 < cfg.geometry.resolution_deg <= 90:
        raise ConfigError(
            "geometry.resolution_deg must be in (0, 90], got "
            f"{cfg.geometry.resolution_deg}"
        )

    if cfg.logging.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigError(f"Unknown logging.level '{cfg.logging.level}'")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(path: str | Path | None = None) -> MachineConfig:
    """Load and validate machine configuration from YAML.

    Parameters
    ----------
    path : str | Path | None
        Path to ``machine.yaml``.  ``None`` loads the default shipped
        alongside this module.

    Returns
    -------
    MachineConfig
        Fully validated, frozen configuration object.

    Raises
    ------
    ConfigError
        If any field is missing or fails validation.
    FileNotFoundError
        If *path* does not exist.
    """
    if path is None:
        path = Path(__file__).parent / "machine.yaml"
    else:
        path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    logger.info("Loading configuration from %s", path)

    data: dict[str, Any] = load_yaml(path)
    if data is None:
        raise ConfigError(f"Empty configuration file: {path}")

    try:
        # -- connection -----------------------------------------------------
        conn_data = data["connection"]
        connection = ConnectionConfig(
            host=str(conn_data["host"]),
            port=int(conn_data.get("port", 502)),
            timeout_s=float(conn_data.get("timeout_s", 2.0)),
            unit_id=int(conn_data.get("unit_id", 1)),
        )

        # -- protocol -------------------------------------------------------
        protocol = _parse_protocol(data.get("protocol") or {})

        # -- geometry -------------------------------------------------------
        geo_data = data.get("geometry") or {}
        geometry = GeometryConfig(
            resolution_deg=float(geo_data.get("resolution_deg", 15.0)),
        )

        # -- logging --------------------------------------------------------
        log_data = data.get("logging") or {}
        log_file = log_data.get("file")
        logging_cfg = LoggingConfig(
            level=str(log_data.get("level", "INFO")),
            file=str(log_file) if log_file else None,
            json=bool(log_data.get("json", False)),
        )

        config = MachineConfig(
            connection=connection,
            protocol=protocol,
            geometry=geometry,
            logging=logging_cfg,
        )

        _validate_config(config)
        logger.info("Configuration loaded successfully")
        return config

    except KeyError as exc:
        raise ConfigError(
            f"Missing required configuration key: {exc}"
        ) from exc
    except (TypeError, ValueError) as exc:
        raise ConfigError(
            f"Invalid configuration value: {exc}"
        ) from exc
