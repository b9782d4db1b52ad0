"""Modbus TCP transport session for the spray robot controller.

Handles:
    - Explicit connect / disconnect lifecycle (one client per session)
    - Single-register status reads (int16) and writes
    - Full program upload: save-status reset, control stream, chunked
      float payload with pacing delay, completion marker, save poll
    - Robot status handshakes (ready-for-upload check, test run trigger)
    - Optional dump of the sent payload for diagnosis

Every public operation returns a :class:`TransportResult`; the typed
exception describing a failure is attached as ``result.error``.  Nothing
reconnects implicitly: calls on a closed session fail with
:class:`NotConnected`.

The session is not reentrant.  A failure part-way through an upload
leaves the controller with a partial program; this is logged and not
rolled back.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from pymodbus.client import ModbusTcpClient
from pymodbus.exceptions import ConnectionException, ModbusException, ModbusIOException

from spray_control.configs.loader import ProtocolConfig
from spray_control.modbus.encoder import (
    ConfigurationError,
    EncodedProgram,
    ProtocolEncoder,
)
from spray_control.program.model import Configuration
from spray_control.utils.fs import atomic_write_text

logger = logging.getLogger(__name__)

DEFAULT_PORT = 502
DEFAULT_TIMEOUT_S = 2.0
DEFAULT_UNIT_ID = 1


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class TransportError(Exception):
    """Base exception for all Modbus transport failures."""

    pass


class NotConnected(TransportError):
    """Operation attempted on a session without a live connection."""

    pass


class ModbusConnectionError(TransportError):
    """TCP connection to the controller could not be established."""

    pass


class _RegisterError(TransportError):
    """Register access failure with diagnostic context.

    Parameters
    ----------
    message : str
        Human-readable description.
    address : int
        Register address involved.
    phase : str
        Operation phase (e.g. ``"payload"``, ``"save acknowledgment"``).
    kind : str
        ``"io"`` (transport failure), ``"protocol"`` (device exception
        response), ``"no_data"`` (empty response) or ``"value"`` (value
        does not fit a 16-bit register; nothing was sent).
    """

    def __init__(self, message: str, address: int, phase: str, kind: str) -> None:
        super().__init__(message)
        self.address = address
        self.phase = phase
        self.kind = kind


class ReadError(_RegisterError):
    """Holding-register read failed."""

    pass


class WriteError(_RegisterError):
    """Holding-register write failed."""

    pass


class SaveTimeout(Exception):
    """Upload completed but the controller never acknowledged the save.

    Not a ``TransportError``: every write succeeded.
    """

    pass


class RobotNotReady(Exception):
    """Robot status register reports a state that forbids the operation."""

    def __init__(self, message: str, status: int) -> None:
        super().__init__(message)
        self.status = status


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransportResult:
    """Outcome of a session operation.

    Parameters
    ----------
    success : bool
        Whether the operation completed.
    message : str
        Summary suitable for a status bar or log line.
    value : Any
        Operation-specific value (register contents, encoded program).
    error : Exception or None
        Typed failure when ``success`` is false.
    """

    success: bool
    message: str
    value: Any = None
    error: Exception | None = None

    @classmethod
    def ok(cls, message: str, value: Any = None) -> TransportResult:
        return cls(True, message, value)

    @classmethod
    def failure(cls, error: Exception) -> TransportResult:
        return cls(False, str(error), None, error)

    def unwrap(self) -> Any:
        """Return ``value`` or raise the attached error."""
        if not self.success:
            if self.error is not None:
                raise self.error
            raise TransportError(self.message)
        return self.value


def _to_int16(value: int) -> int:
    return value - 0x10000 if value >= 0x8000 else value


def _to_uint16(value: int) -> int:
    if not -0x8000 <= value <= 0xFFFF:
        raise ValueError(f"Register value {value} does not fit in 16 bits")
    return value & 0xFFFF


# ---------------------------------------------------------------------------
# Payload dump
# ---------------------------------------------------------------------------


def format_payload_dump(program: EncodedProgram, base_register: int) -> str:
    """One ``"<value>  (<register>)"`` line per payload float."""
    lines = [
        f"# control: {' '.join(str(w) for w in program.control_words)}",
        f"# floats: {len(program.payload)}",
    ]
    for i, value in enumerate(program.payload):
        lines.append(f"{value:.3f}  ({base_register + 2 * i})")
    return "\n".join(lines) + "\n"


def write_payload_dump(
    program: EncodedProgram,
    directory: str | Path,
    base_register: int,
) -> Path:
    """Write the payload dump to ``directory/send_<timestamp>.txt``."""
    path = Path(directory) / f"send_{datetime.now():%Y%m%d_%H%M%S_%f}.txt"
    atomic_write_text(path, format_payload_dump(program, base_register))
    return path


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class TransportSession:
    """Modbus TCP session owning at most one controller connection.

    Parameters
    ----------
    protocol : ProtocolConfig, optional
        Register map, pacing and limits.
    timeout : float
        Connection and per-request timeout in seconds.
    unit_id : int
        Modbus unit (slave) id of the controller.
    client_factory : callable
        Builds the Modbus client from ``host``, ``port`` and ``timeout``
        keyword arguments.  Defaults to pymodbus ``ModbusTcpClient``.

    Examples
    --------
    >>> with TransportSession() as session:
    ...     session.connect("192.168.0.1").unwrap()
    ...     result = session.send_configuration(configuration)
    """

    def __init__(
        self,
        protocol: ProtocolConfig | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT_S,
        unit_id: int = DEFAULT_UNIT_ID,
        client_factory: Callable[..., Any] = ModbusTcpClient,
    ) -> None:
        self._protocol = protocol or ProtocolConfig()
        self._encoder = ProtocolEncoder(self._protocol)
        self._timeout = timeout
        self._unit_id = unit_id
        self._client_factory = client_factory
        self._client: Any = None
        self._endpoint: tuple[str, int] | None = None

    # -- context manager ---------------------------------------------------

    def __enter__(self) -> TransportSession:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.disconnect()

    # -- lifecycle ---------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._client is not None and bool(self._client.connected)

    @property
    def endpoint(self) -> tuple[str, int] | None:
        """``(host, port)`` of the live connection, if any."""
        return self._endpoint if self.is_connected else None

    def connect(self, host: str, port: int = DEFAULT_PORT) -> TransportResult:
        """Open the TCP connection.

        Connecting again to the same endpoint is a no-op; a different
        endpoint closes the current connection first.
        """
        if self.is_connected:
            if self._endpoint == (host, port):
                return TransportResult.ok(f"Already connected to {host}:{port}")
            self.disconnect()

        client = self._client_factory(host=host, port=port, timeout=self._timeout)
        try:
            connected = bool(client.connect())
        except (ModbusException, OSError) as exc:
            logger.error("Connection to %s:%d raised: %s", host, port, exc)
            connected = False

        if not connected:
            self._close_quietly(client)
            error = ModbusConnectionError(
                f"Could not connect to {host}:{port} within {self._timeout:.1f} s"
            )
            logger.error("%s", error)
            return TransportResult.failure(error)

        self._client = client
        self._endpoint = (host, port)
        logger.info("Connected to Modbus controller at %s:%d", host, port)
        return TransportResult.ok(f"Connected to {host}:{port}")

    def disconnect(self) -> None:
        """Close the connection.  Never raises."""
        client, self._client = self._client, None
        if client is None:
            return
        self._close_quietly(client)
        if self._endpoint is not None:
            logger.info("Disconnected from %s:%d", *self._endpoint)
        self._endpoint = None

    @staticmethod
    def _close_quietly(client: Any) -> None:
        try:
            client.close()
        except (ModbusException, OSError) as exc:
            logger.warning("Error while closing Modbus client: %s", exc)

    # -- single registers --------------------------------------------------

    def read_status_register(self, address: int) -> TransportResult:
        """Read one holding register as int16 (``result.value``)."""
        try:
            value = self._read_register(address, phase="status read")
        except TransportError as exc:
            return TransportResult.failure(exc)
        return TransportResult.ok(f"Register {address} = {value}", value)

    def write_status_register(self, address: int, value: int) -> TransportResult:
        """Write one holding register (int16 or uint16 range)."""
        try:
            self._write_register(address, value, phase="status write")
        except TransportError as exc:
            return TransportResult.failure(exc)
        return TransportResult.ok(f"Register {address} <- {value}", value)

    # -- robot handshakes --------------------------------------------------

    def read_robot_status(self) -> TransportResult:
        """Read the robot status register (1 busy, 2 ready, 3 fault)."""
        return self.read_status_register(self._protocol.robot_status_register)

    def check_ready_for_send(self) -> TransportResult:
        """Succeed only when the robot reports it can accept a program."""
        p = self._protocol
        status = self.read_robot_status()
        if not status.success:
            return status
        code = status.value
        if code == p.send_ready_status:
            return TransportResult.ok("Robot ready for upload", code)
        if code == p.busy_status:
            message = "Robot is busy running a program"
        elif code == p.fault_status:
            message = "Robot reports a fault"
        else:
            message = f"Unknown robot status {code}"
        logger.warning("%s (register %d)", message, p.robot_status_register)
        return TransportResult.failure(RobotNotReady(message, code))

    def start_test_run(self, standard_speed: bool = False) -> TransportResult:
        """Trigger a dry run of the stored program.

        Requires the test-run ready status, writes the speed mode (slow
        or standard), waits briefly, then writes the trigger value.
        """
        p = self._protocol
        status = self.read_robot_status()
        if not status.success:
            return status
        if status.value != p.test_run_ready_status:
            error = RobotNotReady(
                f"Robot not stopped for a test run (status {status.value})",
                status.value,
            )
            logger.warning("%s", error)
            return TransportResult.failure(error)

        mode = p.standard_speed_mode if standard_speed else p.slow_speed_mode
        label = "standard" if standard_speed else "slow"
        try:
            self._write_register(p.speed_mode_register, mode, phase="speed mode")
            time.sleep(p.speed_mode_delay_s)
            self._write_register(p.test_run_register, p.test_run_trigger, phase="test run trigger")
        except TransportError as exc:
            return TransportResult.failure(exc)
        logger.info("Test run started at %s speed", label)
        return TransportResult.ok(f"Test run started ({label} speed)", mode)

    # -- program upload ----------------------------------------------------

    def send_configuration(
        self,
        configuration: Configuration,
        *,
        dump_dir: str | Path | None = None,
    ) -> TransportResult:
        """Encode and upload a spray configuration, then wait for the save.

        All validation happens before the first register write.  On
        success ``result.value`` is the encoded program.

        Parameters
        ----------
        configuration : Configuration
            Program to upload.
        dump_dir : str | Path, optional
            Directory for a text dump of the payload floats.
        """
        try:
            self._require_connected()
            program = self._encoder.encode(configuration)
        except (NotConnected, ConfigurationError) as exc:
            logger.error("Upload rejected: %s", exc)
            return TransportResult.failure(exc)

        if dump_dir is not None:
            try:
                path = write_payload_dump(
                    program, dump_dir, self._protocol.payload_base_register
                )
                logger.info("Payload dump written to %s", path)
            except (RuntimeError, OSError) as exc:
                logger.warning("Could not write payload dump: %s", exc)

        try:
            polls = self._transmit(program)
        except TransportError as exc:
            logger.error(
                "Upload aborted, controller holds a partial program: %s", exc
            )
            return TransportResult.failure(exc)
        except SaveTimeout as exc:
            logger.error("%s", exc)
            return TransportResult.failure(exc)

        message = (
            f"Sent {program.pass_count} pass(es), {program.total_primitives} "
            f"primitives ({len(program.payload)} floats); saved after {polls} poll(s)"
        )
        logger.info(message)
        return TransportResult.ok(message, program)

    def _transmit(self, program: EncodedProgram) -> int:
        p = self._protocol

        self._write_register(p.save_status_register, 0, phase="save status reset")

        for offset, word in enumerate(program.control_words):
            self._write_register(p.control_register + offset, word, phase="control stream")
        logger.debug("Control stream written: %s", program.control_words)

        chunk_count = 0
        for offset, registers in program.chunks(p.chunk_registers):
            self._write_registers(p.payload_base_register + offset, registers, phase="payload")
            chunk_count += 1
            time.sleep(p.chunk_delay_s)
        logger.debug("Payload written in %d chunk(s)", chunk_count)

        self._write_register(p.control_register, p.complete_marker, phase="completion marker")
        return self._await_save()

    def _await_save(self) -> int:
        """Poll the save-status register; return the number of polls used."""
        p = self._protocol
        for attempt in range(1, p.poll_attempts + 1):
            value = self._read_register(p.save_status_register, phase="save acknowledgment")
            if value == p.save_success_value:
                logger.debug("Save acknowledged after %d poll(s)", attempt)
                return attempt
            time.sleep(p.poll_interval_s)
        raise SaveTimeout(
            f"Controller did not acknowledge the save within "
            f"{p.save_timeout_s:.1f} s ({p.poll_attempts} polls of register "
            f"{p.save_status_register})"
        )

    # -- low level ---------------------------------------------------------

    def _require_connected(self) -> Any:
        if not self.is_connected:
            raise NotConnected("Not connected to the Modbus controller")
        return self._client

    def _read_register(self, address: int, phase: str) -> int:
        client = self._require_connected()
        try:
            response = client.read_holding_registers(address, count=1, slave=self._unit_id)
        except (ConnectionException, ModbusIOException, OSError) as exc:
            raise ReadError(
                f"I/O failure reading register {address} during {phase}: {exc}",
                address, phase, "io",
            ) from exc
        except ModbusException as exc:
            raise ReadError(
                f"Protocol failure reading register {address} during {phase}: {exc}",
                address, phase, "protocol",
            ) from exc

        if response is None:
            raise ReadError(
                f"No response reading register {address} during {phase}",
                address, phase, "no_data",
            )
        if response.isError():
            raise ReadError(
                f"Controller rejected read of register {address} during {phase}: {response}",
                address, phase, "protocol",
            )
        registers = getattr(response, "registers", None)
        if not registers:
            raise ReadError(
                f"No data returned for register {address} during {phase}",
                address, phase, "no_data",
            )
        return _to_int16(registers[0])

    def _write_register(self, address: int, value: int, phase: str) -> None:
        client = self._require_connected()
        try:
            raw = _to_uint16(value)
        except ValueError as exc:
            raise WriteError(
                f"Cannot write {value} to register {address} during {phase}: {exc}",
                address, phase, "value",
            ) from exc
        try:
            response = client.write_register(address, raw, slave=self._unit_id)
        except (ConnectionException, ModbusIOException, OSError) as exc:
            raise WriteError(
                f"I/O failure writing register {address} during {phase}: {exc}",
                address, phase, "io",
            ) from exc
        except ModbusException as exc:
            raise WriteError(
                f"Protocol failure writing register {address} during {phase}: {exc}",
                address, phase, "protocol",
            ) from exc
        self._check_write_response(response, address, phase)

    def _write_registers(self, address: int, values: list[int], phase: str) -> None:
        client = self._require_connected()
        try:
            response = client.write_registers(address, values, slave=self._unit_id)
        except (ConnectionException, ModbusIOException, OSError) as exc:
            raise WriteError(
                f"I/O failure writing {len(values)} registers at {address} during {phase}: {exc}",
                address, phase, "io",
            ) from exc
        except ModbusException as exc:
            raise WriteError(
                f"Protocol failure writing {len(values)} registers at {address} during {phase}: {exc}",
                address, phase, "protocol",
            ) from exc
        self._check_write_response(response, address, phase)

    @staticmethod
    def _check_write_response(response: Any, address: int, phase: str) -> None:
        if response is None:
            raise WriteError(
                f"No response writing register {address} during {phase}",
                address, phase, "no_data",
            )
        if response.isError():
            raise WriteError(
                f"Controller rejected write at register {address} during {phase}: {response}",
                address, phase, "protocol",
            )
