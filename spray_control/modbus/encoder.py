"""Protocol encoder -- spray configuration to Modbus register streams.

Produces two streams:

Control stream (short integers, one register each)::

    [writing_marker, pass_count, count_pass_1, ..., count_pass_n, 0, ...]

zero-padded to ``control_slots`` values.  A polygon counts one primitive
per line segment (plus its closing segment when closed with more than two
points).

Float payload (IEEE-754 single, 2 registers each, low word first), per
pass then per trajectory, 15 floats per encoded primitive::

    [index, type, nozzle, speed, 0, 0, x1, y1, z1, x2, y2, z2, x3, y3, z3]

``type`` is Line=1, Circle=2, Arc=3.  Lines send ``start, 0 0 0, end``;
arcs and circles send their three points; polygons are split into line
segments at the polygon Z, all sharing one uniform speed.  ``index`` runs
across the whole payload.

Units
-----
Non-polygon speed is ``length_m / runtime_s``.  Polygon speed is computed
from the raw millimetre sum as ``length_mm / runtime_s / 1000``.  Both
give m/s and are kept as two formulas to stay bit-compatible with the
controller program.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import Iterator

from spray_control.configs.loader import ProtocolConfig
from spray_control.geometry.engine import path_length_mm
from spray_control.geometry.primitives import Arc, Circle, Line, Point3D, Polygon
from spray_control.program.model import Configuration, Trajectory
from spray_control.program.reconstruct import effective_primitive, trajectory_points

logger = logging.getLogger(__name__)

PRIMITIVE_TYPE_CODES: dict[type, int] = {Line: 1, Circle: 2, Arc: 3}
FLOATS_PER_PRIMITIVE = 15

# Length and runtime below this are treated as zero when deriving speed
SPEED_EPSILON = 1e-5


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigurationError(Exception):
    """Spray configuration cannot be sent; nothing was written."""

    pass


class NoPasses(ConfigurationError):
    """Configuration has no spray passes."""

    pass


class TooManyPasses(ConfigurationError):
    """More passes than the controller accepts."""

    pass


class EmptyPass(ConfigurationError):
    """A pass has no trajectories."""

    pass


class InvalidPassIndex(ConfigurationError):
    """``current_pass_index`` does not point at an existing pass."""

    pass


class PayloadTooLarge(ConfigurationError):
    """Float payload exceeds the controller's register window."""

    pass


# ---------------------------------------------------------------------------
# Field encoders
# ---------------------------------------------------------------------------


def nozzle_status_code(trajectory: Trajectory) -> int:
    """Decimal-digit packed nozzle flags: upper gas, upper liquid, lower gas,
    lower liquid (``1000a + 100b + 10c + d``)."""
    return (
        1000 * int(trajectory.upper_gas_on)
        + 100 * int(trajectory.upper_liquid_on)
        + 10 * int(trajectory.lower_gas_on)
        + int(trajectory.lower_liquid_on)
    )


def float_to_registers(value: float) -> tuple[int, int]:
    """Split a float32 into ``(low_word, high_word)`` unsigned registers."""
    low, high = struct.unpack("<HH", struct.pack("<f", value))
    return low, high


def registers_to_float(low: int, high: int) -> float:
    """Inverse of :func:`float_to_registers`."""
    return struct.unpack("<f", struct.pack("<HH", low, high))[0]


def primitive_count(
    trajectory: Trajectory, points: list[Point3D] | None = None
) -> int:
    """Number of encoded primitives this trajectory contributes.

    *points* defaults to a fresh discretisation; cached
    ``trajectory.points`` are never trusted.
    """
    if isinstance(trajectory.primitive, Polygon):
        if points is None:
            points = trajectory_points(trajectory)
        n = len(points)
        count = max(n - 1, 0)
        if trajectory.primitive.closed and n > 2:
            count += 1
        return count
    return 1


def trajectory_speed(
    trajectory: Trajectory, points: list[Point3D] | None = None
) -> float:
    """Speed in m/s for non-polygon trajectories (0 when undefined)."""
    if points is None:
        points = trajectory_points(trajectory)
    length_m = path_length_mm(points, trajectory.is_closed) / 1000.0
    if length_m > SPEED_EPSILON and trajectory.runtime > SPEED_EPSILON:
        return length_m / trajectory.runtime
    return 0.0


def polygon_speed(
    trajectory: Trajectory, points: list[Point3D] | None = None
) -> float:
    """Uniform speed in m/s shared by every segment of a polygon."""
    if points is None:
        points = trajectory_points(trajectory)
    length_mm = path_length_mm(points, trajectory.is_closed)
    if length_mm > SPEED_EPSILON and trajectory.runtime > SPEED_EPSILON:
        return length_mm / trajectory.runtime / 1000.0
    return 0.0


def _xyz(point: Point3D) -> list[float]:
    return [point.x, point.y, point.z]


# ---------------------------------------------------------------------------
# Encoded program
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class EncodedProgram:
    """Register streams ready for transmission.

    Parameters
    ----------
    control_words : tuple[int, ...]
        Padded control stream, one register per value.
    payload : tuple[float, ...]
        Float payload in transmission order.
    primitive_counts : tuple[int, ...]
        Encoded primitives per pass.
    """

    control_words: tuple[int, ...]
    payload: tuple[float, ...]
    primitive_counts: tuple[int, ...]

    @property
    def pass_count(self) -> int:
        return len(self.primitive_counts)

    @property
    def total_primitives(self) -> int:
        return sum(self.primitive_counts)

    @property
    def payload_registers(self) -> list[int]:
        """Payload flattened to 16-bit registers (2 per float)."""
        registers: list[int] = []
        for value in self.payload:
            registers.extend(float_to_registers(value))
        return registers

    def chunks(self, chunk_registers: int) -> Iterator[tuple[int, list[int]]]:
        """Yield ``(register_offset, registers)`` slices of the payload."""
        registers = self.payload_registers
        for offset in range(0, len(registers), chunk_registers):
            yield offset, registers[offset:offset + chunk_registers]


# ---------------------------------------------------------------------------
# Encoder
# ---------------------------------------------------------------------------


class ProtocolEncoder:
    """Flatten a :class:`Configuration` into register streams.

    Parameters
    ----------
    protocol : ProtocolConfig, optional
        Register map and limits.  Defaults match the controller.
    """

    def __init__(self, protocol: ProtocolConfig | None = None) -> None:
        self._protocol = protocol or ProtocolConfig()

    @property
    def protocol(self) -> ProtocolConfig:
        return self._protocol

    def validate(self, configuration: Configuration) -> None:
        """Structural checks that must pass before anything is encoded.

        Raises
        ------
        ConfigurationError
            ``NoPasses``, ``TooManyPasses``, ``InvalidPassIndex`` or
            ``EmptyPass``.
        """
        passes = configuration.passes
        if not passes:
            raise NoPasses("Configuration has no spray passes")
        if len(passes) > self._protocol.max_passes:
            raise TooManyPasses(
                f"{len(passes)} spray passes configured, the controller "
                f"accepts at most {self._protocol.max_passes}"
            )
        if not 0 <= configuration.current_pass_index < len(passes):
            raise InvalidPassIndex(
                f"Current pass index {configuration.current_pass_index} is "
                f"out of range for {len(passes)} passes"
            )
        for spray_pass in passes:
            if not spray_pass.trajectories:
                raise EmptyPass(
                    f"Spray pass '{spray_pass.name}' contains no trajectories"
                )

    def encode(self, configuration: Configuration) -> EncodedProgram:
        """Validate and encode a configuration.

        Raises
        ------
        ConfigurationError
            On any structural problem or when the payload exceeds
            ``max_payload_floats``.
        """
        self.validate(configuration)

        # Paths are rebuilt from the primitives; cached points may be stale
        paths = [
            [(t, trajectory_points(t)) for t in spray_pass.trajectories]
            for spray_pass in configuration.passes
        ]
        counts = tuple(
            sum(primitive_count(t, points) for t, points in pass_paths)
            for pass_paths in paths
        )

        payload: list[float] = []
        index = 1
        for pass_paths in paths:
            for trajectory, points in pass_paths:
                floats = self._encode_trajectory(trajectory, index, points)
                index += len(floats) // FLOATS_PER_PRIMITIVE
                payload.extend(floats)

        if len(payload) > self._protocol.max_payload_floats:
            raise PayloadTooLarge(
                f"Payload of {len(payload)} floats exceeds the limit of "
                f"{self._protocol.max_payload_floats}"
            )

        control = [self._protocol.writing_marker, len(counts), *counts]
        control.extend([0] * (self._protocol.control_slots - len(control)))

        logger.debug(
            "Encoded %d passes, %d primitives, %d floats",
            len(counts), sum(counts), len(payload),
        )
        return EncodedProgram(
            control_words=tuple(control),
            payload=tuple(payload),
            primitive_counts=counts,
        )

    # -- per trajectory --------------------------------------------------------

    def _encode_trajectory(
        self, trajectory: Trajectory, index: int, points: list[Point3D]
    ) -> list[float]:
        primitive = effective_primitive(trajectory)
        nozzle = float(nozzle_status_code(trajectory))

        if isinstance(primitive, Polygon):
            return self._encode_polygon(trajectory, index, nozzle, points)

        header = [
            float(index),
            float(PRIMITIVE_TYPE_CODES[type(primitive)]),
            nozzle,
            trajectory_speed(trajectory, points),
            0.0,
            0.0,
        ]
        if isinstance(primitive, Line):
            return header + _xyz(primitive.start) + [0.0, 0.0, 0.0] + _xyz(primitive.end)
        if isinstance(primitive, (Arc, Circle)):
            return header + _xyz(primitive.p1) + _xyz(primitive.p2) + _xyz(primitive.p3)
        raise TypeError(f"Unsupported primitive type: {type(primitive).__name__}")

    def _encode_polygon(
        self, trajectory: Trajectory, index: int, nozzle: float, points: list[Point3D]
    ) -> list[float]:
        z = trajectory.polygon_z if trajectory.polygon_z is not None else 0.0
        speed = polygon_speed(trajectory, points)

        segments = list(zip(points, points[1:]))
        if trajectory.is_closed and len(points) > 2:
            segments.append((points[-1], points[0]))

        floats: list[float] = []
        for offset, (start, end) in enumerate(segments):
            floats.extend([
                float(index + offset), float(PRIMITIVE_TYPE_CODES[Line]), nozzle, speed, 0.0, 0.0,
                start.x, start.y, z,
                0.0, 0.0, 0.0,
                end.x, end.y, z,
            ])
        return floats
